"""
Session validation cache.

Tracks whether each logical session is authenticated against the trading
platform, revalidating through the external verifier only when the cached
validation is missing, stale or no longer active.
"""
