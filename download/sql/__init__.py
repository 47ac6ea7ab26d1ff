# SPDX-License-Identifier: MIT
# Copyright (c) 2025 deltaota contributors

"""SQL schema definitions."""

# Embedded SQL schemas for reliable packaging
PREFS_SCHEMA = """
-- Durable updater state, one row per key
CREATE TABLE IF NOT EXISTS prefs (
  key          TEXT PRIMARY KEY,
  value        TEXT,
  updated_at   TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE TRIGGER IF NOT EXISTS trg_prefs_updated_at
AFTER UPDATE ON prefs
FOR EACH ROW
BEGIN
  UPDATE prefs SET updated_at = strftime('%Y-%m-%dT%H:%M:%SZ','now') WHERE key = OLD.key;
END;
"""

CHECK_LOG_SCHEMA = """
-- Update check cycles log table
CREATE TABLE IF NOT EXISTS check_log (
  id               INTEGER PRIMARY KEY,
  session_id       TEXT NOT NULL,
  user_initiated   INTEGER NOT NULL DEFAULT 0,
  mode             TEXT NOT NULL DEFAULT 'check'
                      CHECK (mode IN ('check','download')),
  current_build    TEXT,
  latest_build     TEXT,
  strategy         TEXT NOT NULL DEFAULT 'unknown'
                      CHECK (strategy IN ('delta','full','none','ready','unknown')),
  state            TEXT NOT NULL DEFAULT 'action_checking',
  download_size    INTEGER NOT NULL DEFAULT -1,
  started_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
  finished_at      TEXT
);

CREATE INDEX IF NOT EXISTS idx_check_log__started_at
ON check_log (started_at DESC);

CREATE INDEX IF NOT EXISTS idx_check_log__session
ON check_log (session_id, started_at DESC);
"""
