import asyncio
import json

import pytest

from cache import envelope
from cache.maintenance import main
from cache.store import FileStore


@pytest.fixture
def data_dir(tmp_path):
    store = FileStore(str(tmp_path))
    old = envelope.now_ms() - 600000

    async def seed():
        await store.write("holders", "fresh", envelope.wrap([1], 300000))
        await store.write("holders", "stale", envelope.wrap([2], 30000, now=old))

    asyncio.run(seed())
    return str(tmp_path)


def test_list(data_dir, capsys):
    assert main(["--data-dir", data_dir, "list", "holders"]) == 0
    assert capsys.readouterr().out.split() == ["fresh", "stale"]


def test_stats(data_dir, capsys):
    assert main(["--data-dir", data_dir, "stats", "holders"]) == 0

    stats = json.loads(capsys.readouterr().out)
    assert stats == {"collection": "holders", "records": 2, "fresh": 1, "expired": 1}


def test_purge(data_dir, capsys):
    assert main(["--data-dir", data_dir, "purge", "holders"]) == 0
    assert "Purged 1" in capsys.readouterr().out

    assert main(["--data-dir", data_dir, "list", "holders"]) == 0
    assert capsys.readouterr().out.split() == ["fresh"]


def test_invalidate(data_dir, capsys):
    assert main(["--data-dir", data_dir, "invalidate", "holders", "fresh"]) == 0
    assert "Invalidated holders/fresh" in capsys.readouterr().out

    assert main(["--data-dir", data_dir, "list", "holders"]) == 0
    assert capsys.readouterr().out.split() == ["stale"]
