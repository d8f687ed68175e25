from __future__ import annotations

import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from healthwatch.errors import PersistenceFailure
from healthwatch.models import Alert, CheckResult, Tenant, UptimeRecord


SCHEMA_VERSION = 2


def _utc_ts() -> float:
    return float(time.time())


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000;")
    # Best-effort: WAL lets the scheduler write while queries read.
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.Error:
        pass
    return conn


@contextmanager
def session(db_path: str) -> Iterator[sqlite3.Connection]:
    """Open a short-lived connection with the schema in place; sqlite errors surface as PersistenceFailure."""
    conn = None
    try:
        conn = _connect(db_path)
        _ensure_schema_conn(conn)
        yield conn
    except sqlite3.Error as e:
        raise PersistenceFailure(f"{type(e).__name__}: {e}") from e
    finally:
        if conn is not None:
            conn.close()


def ensure_schema(db_path: str) -> None:
    with session(db_path):
        pass


def ping(db_path: str, *, timeout: float = 10.0) -> None:
    """
    Connectivity check against an existing database file. Raises sqlite3.Error when unreachable.
    Opens read-write without creating, so a missing or unreadable store reports as down.
    """
    p = str(db_path or "").strip()
    if p == ":memory:":
        uri = "file::memory:"
    else:
        uri = f"file:{Path(p).as_posix()}?mode=rw"
    conn = sqlite3.connect(uri, uri=True, timeout=timeout)
    try:
        conn.execute("SELECT 1").fetchone()
    finally:
        conn.close()


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    if cur == 0:
        _apply_v1(conn)
        _apply_v2(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return

    if cur == 1:
        _apply_v2(conn)
        conn.execute("UPDATE schema_meta SET v=? WHERE k='version'", (str(SCHEMA_VERSION),))
        return

    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS tenants (
          id TEXT PRIMARY KEY,
          company_name TEXT NOT NULL,
          status TEXT NOT NULL DEFAULT 'active', -- active|inactive|suspended
          connectivity_flag INTEGER NOT NULL DEFAULT 0,
          updated_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS monitoring_alerts (
          id TEXT PRIMARY KEY,
          type TEXT NOT NULL,
          service_id TEXT,
          tenant_id TEXT,
          message TEXT NOT NULL,
          severity TEXT NOT NULL, -- info|warning|critical
          ts REAL NOT NULL,
          acknowledged INTEGER NOT NULL DEFAULT 0,
          acknowledged_by TEXT,
          acknowledged_at_ts REAL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS uptime_records (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          tenant_id TEXT NOT NULL,
          service_type TEXT NOT NULL DEFAULT 'external-channel',
          status TEXT NOT NULL, -- up|down
          ts REAL NOT NULL
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_ts ON monitoring_alerts(ts DESC);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_uptime_tenant_ts ON uptime_records(tenant_id, ts);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_uptime_ts ON uptime_records(ts);")


def _apply_v2(conn: sqlite3.Connection) -> None:
    """
    v2 persists individual probe results so service history survives restarts.
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS check_results (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          target_id TEXT NOT NULL,
          ts REAL NOT NULL,
          status TEXT NOT NULL, -- healthy|unhealthy|offline
          response_time_ms REAL NOT NULL,
          http_status_code INTEGER,
          error TEXT
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_check_results_target ON check_results(target_id, id DESC);")


# --- tenants ---


def _row_to_tenant(row: sqlite3.Row) -> Tenant:
    return Tenant(
        id=str(row["id"]),
        company_name=str(row["company_name"]),
        status=str(row["status"]),
        connectivity_flag=bool(row["connectivity_flag"]),
    )


def upsert_tenant(db_path: str, tenant: Tenant) -> None:
    with session(db_path) as conn:
        conn.execute(
            """
            INSERT INTO tenants (id, company_name, status, connectivity_flag, updated_at_ts)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              company_name=excluded.company_name,
              status=excluded.status,
              connectivity_flag=excluded.connectivity_flag,
              updated_at_ts=excluded.updated_at_ts
            """,
            (tenant.id, tenant.company_name, tenant.status, 1 if tenant.connectivity_flag else 0, _utc_ts()),
        )


def get_tenant(db_path: str, tenant_id: str) -> Tenant | None:
    with session(db_path) as conn:
        row = conn.execute("SELECT * FROM tenants WHERE id=?", (str(tenant_id),)).fetchone()
        return _row_to_tenant(row) if row else None


def list_tenants(db_path: str, *, status: str | None = None) -> list[Tenant]:
    with session(db_path) as conn:
        if status is None:
            rows = conn.execute("SELECT * FROM tenants ORDER BY id").fetchall()
        else:
            rows = conn.execute("SELECT * FROM tenants WHERE status=? ORDER BY id", (status,)).fetchall()
        return [_row_to_tenant(r) for r in rows]


def count_tenants(db_path: str, *, status: str) -> int:
    with session(db_path) as conn:
        row = conn.execute("SELECT COUNT(*) AS n FROM tenants WHERE status=?", (status,)).fetchone()
        return int(row["n"] or 0)


def set_connectivity_flag(db_path: str, tenant_id: str, flag: bool) -> bool:
    with session(db_path) as conn:
        res = conn.execute(
            "UPDATE tenants SET connectivity_flag=?, updated_at_ts=? WHERE id=?",
            (1 if flag else 0, _utc_ts(), str(tenant_id)),
        )
        return int(res.rowcount or 0) > 0


# --- alerts ---


def _row_to_alert(row: sqlite3.Row) -> Alert:
    return Alert(
        id=str(row["id"]),
        type=str(row["type"]),
        service_id=row["service_id"],
        tenant_id=row["tenant_id"],
        message=str(row["message"]),
        severity=str(row["severity"]),
        timestamp=float(row["ts"]),
        acknowledged=bool(row["acknowledged"]),
        acknowledged_by=row["acknowledged_by"],
        acknowledged_at=float(row["acknowledged_at_ts"]) if row["acknowledged_at_ts"] is not None else None,
    )


def insert_alert(db_path: str, alert: Alert) -> None:
    with session(db_path) as conn:
        conn.execute(
            """
            INSERT INTO monitoring_alerts (
              id, type, service_id, tenant_id, message, severity, ts, acknowledged, acknowledged_by, acknowledged_at_ts
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.id,
                alert.type,
                alert.service_id,
                alert.tenant_id,
                alert.message,
                alert.severity,
                float(alert.timestamp),
                1 if alert.acknowledged else 0,
                alert.acknowledged_by,
                alert.acknowledged_at,
            ),
        )


def get_alert(db_path: str, alert_id: str) -> Alert | None:
    with session(db_path) as conn:
        row = conn.execute("SELECT * FROM monitoring_alerts WHERE id=?", (str(alert_id),)).fetchone()
        return _row_to_alert(row) if row else None


def acknowledge_alert(db_path: str, alert_id: str, *, user_id: str, at_ts: float) -> bool:
    with session(db_path) as conn:
        res = conn.execute(
            "UPDATE monitoring_alerts SET acknowledged=1, acknowledged_by=?, acknowledged_at_ts=? WHERE id=?",
            (user_id, float(at_ts), str(alert_id)),
        )
        return int(res.rowcount or 0) > 0


def list_recent_alerts(db_path: str, *, limit: int) -> list[Alert]:
    with session(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM monitoring_alerts ORDER BY ts DESC, rowid DESC LIMIT ?",
            (max(0, int(limit)),),
        ).fetchall()
        return [_row_to_alert(r) for r in rows]


def count_unacknowledged_alerts(db_path: str) -> int:
    with session(db_path) as conn:
        row = conn.execute("SELECT COUNT(*) AS n FROM monitoring_alerts WHERE acknowledged=0").fetchone()
        return int(row["n"] or 0)


# --- uptime records ---


def insert_uptime_record(db_path: str, record: UptimeRecord) -> None:
    with session(db_path) as conn:
        conn.execute(
            "INSERT INTO uptime_records (tenant_id, service_type, status, ts) VALUES (?, ?, ?, ?)",
            (record.tenant_id, record.service_type, record.status, float(record.timestamp)),
        )


def uptime_counts(db_path: str, *, since_ts: float, tenant_id: str | None = None) -> tuple[int, int]:
    """
    Returns (total, up_count) for records at or after since_ts; all tenants when tenant_id is None.
    """
    sql = "SELECT COUNT(*) AS total, SUM(CASE WHEN status='up' THEN 1 ELSE 0 END) AS up FROM uptime_records WHERE ts>=?"
    params: list[Any] = [float(since_ts)]
    if tenant_id is not None:
        sql += " AND tenant_id=?"
        params.append(str(tenant_id))
    with session(db_path) as conn:
        row = conn.execute(sql, tuple(params)).fetchone()
        return int(row["total"] or 0), int(row["up"] or 0)


def uptime_by_day(db_path: str, *, tenant_id: str, since_ts: float) -> list[dict[str, Any]]:
    with session(db_path) as conn:
        rows = conn.execute(
            """
            SELECT
              date(ts, 'unixepoch') AS day,
              COUNT(*) AS total,
              SUM(CASE WHEN status='up' THEN 1 ELSE 0 END) AS up
            FROM uptime_records
            WHERE tenant_id=? AND ts>=?
            GROUP BY day
            ORDER BY day ASC
            """,
            (str(tenant_id), float(since_ts)),
        ).fetchall()
        return [{"day": str(r["day"]), "total": int(r["total"] or 0), "up": int(r["up"] or 0)} for r in rows]


def down_counts_by_day(db_path: str, *, since_ts: float) -> list[dict[str, Any]]:
    with session(db_path) as conn:
        rows = conn.execute(
            """
            SELECT date(ts, 'unixepoch') AS day, COUNT(*) AS n
            FROM uptime_records
            WHERE status='down' AND ts>=?
            GROUP BY day
            ORDER BY day ASC
            """,
            (float(since_ts),),
        ).fetchall()
        return [{"day": str(r["day"]), "count": int(r["n"] or 0)} for r in rows]


def top_down_tenants(db_path: str, *, since_ts: float, limit: int) -> list[dict[str, Any]]:
    # Secondary order on tenant id only keeps equal counts in a stable order.
    with session(db_path) as conn:
        rows = conn.execute(
            """
            SELECT ur.tenant_id AS tenant_id, t.company_name AS company_name, COUNT(*) AS down_count
            FROM uptime_records ur
            JOIN tenants t ON ur.tenant_id = t.id
            WHERE ur.status='down' AND ur.ts>=?
            GROUP BY ur.tenant_id, t.company_name
            ORDER BY down_count DESC, ur.tenant_id ASC
            LIMIT ?
            """,
            (float(since_ts), max(0, int(limit))),
        ).fetchall()
        return [dict(r) for r in rows]


def recent_down_records(db_path: str, *, tenant_id: str, since_ts: float, limit: int) -> list[UptimeRecord]:
    with session(db_path) as conn:
        rows = conn.execute(
            """
            SELECT tenant_id, service_type, status, ts
            FROM uptime_records
            WHERE tenant_id=? AND status='down' AND ts>=?
            ORDER BY ts DESC, id DESC
            LIMIT ?
            """,
            (str(tenant_id), float(since_ts), max(0, int(limit))),
        ).fetchall()
        return [
            UptimeRecord(tenant_id=str(r["tenant_id"]), service_type=str(r["service_type"]), status=str(r["status"]), timestamp=float(r["ts"]))
            for r in rows
        ]


def delete_uptime_before(db_path: str, *, before_ts: float) -> int:
    with session(db_path) as conn:
        res = conn.execute("DELETE FROM uptime_records WHERE ts<?", (float(before_ts),))
        return int(res.rowcount or 0)


def count_uptime_records(db_path: str) -> int:
    with session(db_path) as conn:
        row = conn.execute("SELECT COUNT(*) AS n FROM uptime_records").fetchone()
        return int(row["n"] or 0)


# --- check results ---


def insert_check_result(db_path: str, *, target_id: str, result: CheckResult) -> None:
    with session(db_path) as conn:
        conn.execute(
            """
            INSERT INTO check_results (target_id, ts, status, response_time_ms, http_status_code, error)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                target_id,
                float(result.timestamp),
                result.status,
                float(result.response_time_ms),
                result.http_status_code,
                result.error,
            ),
        )


def recent_check_results(db_path: str, *, target_id: str, limit: int) -> list[CheckResult]:
    """Most recent results for a target, oldest first."""
    with session(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM check_results WHERE target_id=? ORDER BY id DESC LIMIT ?",
            (target_id, max(0, int(limit))),
        ).fetchall()
    out = [
        CheckResult(
            timestamp=float(r["ts"]),
            status=str(r["status"]),
            response_time_ms=float(r["response_time_ms"]),
            http_status_code=int(r["http_status_code"]) if r["http_status_code"] is not None else None,
            error=r["error"],
        )
        for r in rows
    ]
    out.reverse()
    return out


def delete_check_results_before(db_path: str, *, before_ts: float) -> int:
    with session(db_path) as conn:
        res = conn.execute("DELETE FROM check_results WHERE ts<?", (float(before_ts),))
        return int(res.rowcount or 0)
