# SQL schema for the Spares database

SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Parsers (one row per registered note syntax)
CREATE TABLE IF NOT EXISTS parser (
    id INTEGER PRIMARY KEY NOT NULL,
    name TEXT UNIQUE NOT NULL
);

-- Tags (tree; a tag with a query is a filtered tag)
CREATE TABLE IF NOT EXISTS tag (
    id INTEGER PRIMARY KEY NOT NULL,
    name TEXT UNIQUE NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    parent_id INTEGER,
    query TEXT,
    auto_delete INTEGER NOT NULL DEFAULT 1,
    FOREIGN KEY (parent_id) REFERENCES tag (id) ON DELETE SET NULL
);

-- Notes
CREATE TABLE IF NOT EXISTS note (
    id INTEGER PRIMARY KEY NOT NULL,
    data TEXT NOT NULL,
    keywords TEXT NOT NULL DEFAULT '',
    created_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now')),
    updated_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now')),
    custom_data TEXT NOT NULL DEFAULT '{}', -- JSON object
    parser_id INTEGER NOT NULL,
    FOREIGN KEY (parser_id) REFERENCES parser (id)
);

-- Cards (FSRS memory state)
CREATE TABLE IF NOT EXISTS card (
    id INTEGER PRIMARY KEY NOT NULL,
    note_id INTEGER NOT NULL,
    "order" INTEGER NOT NULL,
    back_type INTEGER NOT NULL,
    created_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now')),
    updated_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now')),
    due INTEGER NOT NULL,
    stability REAL NOT NULL DEFAULT 0,
    difficulty REAL NOT NULL DEFAULT 0,
    desired_retention REAL NOT NULL DEFAULT 0.9,
    special_state INTEGER CHECK(special_state IS NULL OR special_state IN (1, 2, 3)),
    state INTEGER NOT NULL DEFAULT 0,
    custom_data TEXT NOT NULL DEFAULT '{}', -- JSON object
    FOREIGN KEY (note_id) REFERENCES note (id) ON DELETE CASCADE
);

-- Links between notes found through keyword references
CREATE TABLE IF NOT EXISTS note_link (
    id INTEGER PRIMARY KEY NOT NULL,
    parent_note_id INTEGER NOT NULL,
    linked_note_id INTEGER,
    "order" INTEGER NOT NULL,
    searched_keyword TEXT NOT NULL,
    matched_keyword TEXT,
    FOREIGN KEY (parent_note_id) REFERENCES note (id) ON DELETE CASCADE,
    FOREIGN KEY (linked_note_id) REFERENCES note (id) ON DELETE SET NULL
);

-- Manual note tags
CREATE TABLE IF NOT EXISTS note_tag (
    id INTEGER PRIMARY KEY NOT NULL,
    note_id INTEGER NOT NULL,
    tag_id INTEGER NOT NULL,
    UNIQUE (note_id, tag_id),
    FOREIGN KEY (note_id) REFERENCES note (id) ON DELETE CASCADE,
    FOREIGN KEY (tag_id) REFERENCES tag (id) ON DELETE CASCADE
);

-- Filtered tag membership
CREATE TABLE IF NOT EXISTS card_tag (
    id INTEGER PRIMARY KEY NOT NULL,
    card_id INTEGER NOT NULL,
    tag_id INTEGER NOT NULL,
    UNIQUE (card_id, tag_id),
    FOREIGN KEY (card_id) REFERENCES card (id) ON DELETE CASCADE,
    FOREIGN KEY (tag_id) REFERENCES tag (id) ON DELETE CASCADE
);

-- Review history (append only)
CREATE TABLE IF NOT EXISTS review_log (
    id INTEGER PRIMARY KEY NOT NULL,
    card_id INTEGER NOT NULL,
    reviewed_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now')),
    rating INTEGER NOT NULL,
    scheduler_name TEXT NOT NULL,
    scheduled_time INTEGER NOT NULL,
    duration INTEGER NOT NULL,
    previous_state INTEGER NOT NULL,
    custom_data TEXT NOT NULL DEFAULT '{}', -- JSON object
    FOREIGN KEY (card_id) REFERENCES card (id) ON DELETE CASCADE
);
"""

INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_card_note ON card(note_id, "order");
CREATE INDEX IF NOT EXISTS idx_card_due ON card(due);
CREATE INDEX IF NOT EXISTS idx_note_parser ON note(parser_id);
CREATE INDEX IF NOT EXISTS idx_note_link_parent ON note_link(parent_note_id);
CREATE INDEX IF NOT EXISTS idx_note_tag_tag ON note_tag(tag_id);
CREATE INDEX IF NOT EXISTS idx_card_tag_tag ON card_tag(tag_id);
CREATE INDEX IF NOT EXISTS idx_review_log_card ON review_log(card_id, reviewed_at);
"""
