"""
Default cache durations for the token-market proxy.

Durations are in milliseconds and are passed by each call site; the cache
never binds a duration to a collection. The same collection is read with
different durations in different code paths.
"""

# General purpose duration used by most endpoints
CACHE_DURATION = 30000  # 30 seconds

TOKENS_DURATION = 30000  # 30 seconds
TOKEN_DATA_DURATION = 60000  # 1 minute
HOLDERS_DURATION = 30000  # 30 seconds
TRADES_DURATION = 60000  # 1 minute
USER_DATA_DURATION = 120000  # 2 minutes
USER_CREATED_DURATION = 120000  # 2 minutes

# Memory tier
MEMORY_CACHE_DURATION = 60000  # 1 minute
MEMORY_CACHE_MAX_ENTRIES = 1000
MEMORY_EVICTION_INTERVAL = 300  # seconds
MEMORY_EVICTION_FRACTION = 0.2

# Keys longer than this are hashed by cache_key()
MAX_KEY_LENGTH = 100

# Separator between collection and key in the memory tier
MEMORY_KEY_SEPARATOR = ":"
