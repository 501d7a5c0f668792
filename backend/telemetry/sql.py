from __future__ import annotations

CREATE_EVENTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS events (
  ts_ms BIGINT,
  endpoint TEXT,
  session_id TEXT,
  generation BIGINT,
  status TEXT,
  vp_min_lon DOUBLE,
  vp_min_lat DOUBLE,
  vp_max_lon DOUBLE,
  vp_max_lat DOUBLE,
  stats_json TEXT
);
"""

INSERT_EVENTS_SQL = """
INSERT INTO events
  (ts_ms, endpoint, session_id, generation, status, vp_min_lon, vp_min_lat, vp_max_lon, vp_max_lat, stats_json)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

# Per (endpoint, status): count, latency mean/p50/p95, mean fetched rows and clusters.
SUMMARY_SQL_TEMPLATE = """
WITH e AS (
  SELECT
    endpoint,
    status,
    try_cast(json_extract(stats_json, '$.timingsMs.total') AS DOUBLE) AS total_ms,
    try_cast(json_extract(stats_json, '$.fetched') AS DOUBLE) AS fetched,
    try_cast(json_extract(stats_json, '$.clusters') AS DOUBLE) AS clusters
  FROM events
  {where_sql}
)
SELECT
  endpoint,
  status,
  COUNT(*) AS n,
  AVG(total_ms),
  quantile_cont(total_ms, 0.50),
  quantile_cont(total_ms, 0.95),
  AVG(fetched),
  AVG(clusters)
FROM e
GROUP BY endpoint, status
ORDER BY endpoint, status
"""
