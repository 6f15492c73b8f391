from setuptools import setup, find_packages

setup(
    name="market-cache",
    version="0.1.0",
    packages=find_packages(include=["cache", "cache.*", "config", "config.*",
                                    "monitoring", "monitoring.*",
                                    "error_handling", "error_handling.*"]),
    install_requires=[
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "structlog",
        "redis>=5.0.1",
        "prometheus-client"
    ],
    extras_require={
        "test": [
            "pytest"
        ]
    },
    python_requires=">=3.9",
    entry_points={
        "console_scripts": [
            "market-cache=cache.maintenance:main",
        ],
    }
)
