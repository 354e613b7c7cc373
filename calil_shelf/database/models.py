"""SQLite database schema and initialization."""

from __future__ import annotations

import aiosqlite

SCHEMA = """
CREATE TABLE IF NOT EXISTS bibliographic_info (
    isbn TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    title_kana TEXT,
    link TEXT,
    authors TEXT DEFAULT '[]',
    authors_kana TEXT DEFAULT '[]',
    publisher TEXT,
    pub_year TEXT,
    issued TEXT,
    extent TEXT,
    price TEXT,
    ndc10 TEXT,
    ndlc TEXT,
    ndl_bib_id TEXT,
    jpno TEXT,
    tohan_marc_no TEXT,
    subjects TEXT DEFAULT '[]',
    categories TEXT DEFAULT '[]',
    see_also TEXT DEFAULT '[]',
    description TEXT,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_bibliographic_updated_at ON bibliographic_info(updated_at);
CREATE INDEX IF NOT EXISTS idx_bibliographic_publisher ON bibliographic_info(publisher);
"""


async def initialize_db(db: aiosqlite.Connection):
    """Create tables and indexes if they don't exist."""
    await db.executescript(SCHEMA)
    await db.commit()
