"""SQLite schema for the shared content store."""

SCHEMA_VERSION = 1

PRAGMAS = [
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA busy_timeout=5000",
]

SCHEMA = """
CREATE TABLE IF NOT EXISTS canonical_articles (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    normalized_url     TEXT NOT NULL UNIQUE,
    url                TEXT NOT NULL,
    title              TEXT NOT NULL,
    body               TEXT NOT NULL DEFAULT '',
    author             TEXT,
    image_url          TEXT,
    published_at       TEXT,
    word_count         INTEGER NOT NULL DEFAULT 0,
    source_domain      TEXT NOT NULL DEFAULT '',
    content_checksum   TEXT NOT NULL,
    first_seen_at      TEXT NOT NULL,
    last_seen_at       TEXT NOT NULL,
    content_updated_at TEXT,
    sightings          INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS sources (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    name                 TEXT NOT NULL,
    feed_url             TEXT NOT NULL,
    scraping_method      TEXT NOT NULL,
    success_rate         REAL,
    consecutive_failures INTEGER NOT NULL DEFAULT 0,
    is_active            INTEGER NOT NULL DEFAULT 1,
    is_critical          INTEGER NOT NULL DEFAULT 0,
    last_scraped_at      TEXT,
    last_error           TEXT,
    last_probe_ok        INTEGER,
    articles_scraped     INTEGER NOT NULL DEFAULT 0,
    success_count        INTEGER NOT NULL DEFAULT 0,
    failure_count        INTEGER NOT NULL DEFAULT 0,
    updated_at           TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tenant_article_links (
    id                       INTEGER PRIMARY KEY AUTOINCREMENT,
    canonical_article_id     INTEGER NOT NULL REFERENCES canonical_articles(id) ON DELETE CASCADE,
    tenant_id                TEXT NOT NULL,
    source_id                INTEGER REFERENCES sources(id),
    regional_relevance_score INTEGER NOT NULL DEFAULT 0,
    content_quality_score    INTEGER NOT NULL DEFAULT 0,
    keyword_matches          TEXT NOT NULL DEFAULT '[]',
    processing_status        TEXT NOT NULL DEFAULT 'new'
                             CHECK (processing_status IN ('new', 'processed', 'discarded')),
    import_metadata          TEXT,
    revision                 INTEGER NOT NULL DEFAULT 1,
    created_at               TEXT NOT NULL,
    updated_at               TEXT NOT NULL,
    UNIQUE (canonical_article_id, tenant_id)
);

CREATE INDEX IF NOT EXISTS idx_links_tenant_status
    ON tenant_article_links (tenant_id, processing_status);

CREATE TABLE IF NOT EXISTS source_audit_log (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id  INTEGER NOT NULL REFERENCES sources(id),
    action     TEXT NOT NULL,
    before     TEXT NOT NULL,
    after      TEXT NOT NULL,
    reason     TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS stories (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id            TEXT NOT NULL,
    canonical_article_id INTEGER REFERENCES canonical_articles(id) ON DELETE SET NULL,
    title                TEXT NOT NULL,
    is_published         INTEGER NOT NULL DEFAULT 0,
    status               TEXT NOT NULL DEFAULT 'draft',
    created_at           TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_stories_tenant ON stories (tenant_id, status);

CREATE TABLE IF NOT EXISTS kv_entries (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    expires_at TEXT
);
"""
