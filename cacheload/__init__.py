"""
cacheload - staged-concurrency load generator for the cache service HTTP API.
"""

__version__ = "0.1.0"
