from __future__ import annotations

CREATE_SUBMISSIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS submissions (
  id TEXT PRIMARY KEY,
  mode TEXT NOT NULL,
  lat DOUBLE,
  lon DOUBLE,
  selected_slots_json TEXT,
  address TEXT,
  created_ms BIGINT NOT NULL,
  submitter_id TEXT NOT NULL,
  spatial_key TEXT NOT NULL
);
"""

CREATE_INDEXES_SQL = (
    "CREATE INDEX IF NOT EXISTS submissions_spatial_key_idx ON submissions (spatial_key);",
    "CREATE INDEX IF NOT EXISTS submissions_submitter_idx ON submissions (submitter_id);",
)

INSERT_SUBMISSION_SQL = """
INSERT INTO submissions
  (id, mode, lat, lon, selected_slots_json, address, created_ms, submitter_id, spatial_key)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_SELECT_COLUMNS = """
SELECT id, mode, lat, lon, selected_slots_json, address, created_ms, submitter_id, spatial_key
  FROM submissions
"""

QUERY_RANGE_SQL = (
    _SELECT_COLUMNS
    + """
 WHERE spatial_key >= ?
   AND spatial_key <= ?
   AND created_ms >= ?
 ORDER BY spatial_key ASC, created_ms DESC
 LIMIT ?
"""
)

HISTORY_FOR_SUBMITTER_SQL = (
    _SELECT_COLUMNS
    + """
 WHERE submitter_id = ?
 ORDER BY created_ms DESC
"""
)
