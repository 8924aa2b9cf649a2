"""Persistent stores used by the chat core.

Stores:
    - MessageHistoryStore: append-only message log with paginated room queries.
    - UserDirectory: user lookup and presence updates.

Both have a DuckDB implementation; the chat core only depends on the
abstract interfaces in ``base``.
"""
