"""
Shared infrastructure for the inbox services.

Settings, logging, database sessions and the Redis client live here so the
webhook, the worker and the CLI all configure themselves the same way.
"""
