"""Database schema.

``SCHEMA_VERSION`` is stored in ``PRAGMA user_version``; bump it whenever
``SCHEMA_SQL`` changes. The DDL only uses IF NOT EXISTS so it can be replayed
on an older database.
"""

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    conversation_id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    model TEXT NOT NULL,
    document TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_conversations_updated_at ON conversations(updated_at);
"""
