from .logging import configure_logging, log_error
from .settings import CacheSettings, get_settings

__all__ = [
    'configure_logging',
    'log_error',
    'CacheSettings',
    'get_settings'
]
