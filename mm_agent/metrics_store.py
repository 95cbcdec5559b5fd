"""Durable SQLite store for tool-execution and session analytics.

Three tables:

    tool_executions      one row per tool invocation (append-only; the single
                         allowed update stamps completion on an open row)
    agent_sessions       one row per session id (insert-if-absent on start,
                         update on end)
    workflow_executions  one row per batch-workflow run

All timestamps are integer epoch milliseconds. Durations are derived from
start/complete timestamps at write time. The database runs in WAL mode so
dashboards reading from other connections see a consistent snapshot while
the analytics listener writes; inside one process a lock serializes use of
the shared connection.

Usage:
    with MetricsStore("data/analytics.db") as store:
        store.record_session_start("sess_1", "file")
        metrics = store.get_tool_metrics()
        print(metrics.success_rate, metrics.average_duration_ms)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, get_args

from mm_agent.models import now_ms

logger = logging.getLogger(__name__)

ToolStatus = Literal["success", "error", "timeout"]
_TERMINAL_STATUSES: frozenset[str] = frozenset(get_args(ToolStatus))
RUNNING = "running"

DEFAULT_TOP_TOOLS_LIMIT = 10
DEFAULT_POPULAR_TOOLS_LIMIT = 5
DEFAULT_SESSION_HISTORY_LIMIT = 50
DEFAULT_RECENT_EXECUTIONS_LIMIT = 100


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeRange:
    """Inclusive window over ``started_at`` (epoch ms)."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"TimeRange end ({self.end}) precedes start ({self.start})")

    @classmethod
    def last(cls, *, days: float = 0, hours: float = 0) -> "TimeRange":
        end = now_ms()
        span = int((days * 86_400 + hours * 3_600) * 1000)
        return cls(start=end - span, end=end)


@dataclass
class ToolExecutionRecord:
    """One tool invocation to persist. ``duration_ms`` is derived, never supplied."""

    session_id: str
    agent_key: str
    tool_name: str
    started_at: int
    status: ToolStatus
    completed_at: int | None = None
    error_message: str | None = None
    input_size: int | None = None
    output_size: int | None = None
    request_id: str | None = None


@dataclass
class SessionMetrics:
    total_tools: int
    success_count: int
    error_count: int
    final_result: Any = None


@dataclass
class ToolUsage:
    name: str
    count: int
    success_rate: float
    average_duration_ms: float


@dataclass
class ToolMetrics:
    total_executions: int
    success_rate: float
    average_duration_ms: float
    error_count: int
    most_used_tools: list[ToolUsage] = field(default_factory=list)


@dataclass
class AgentMetrics:
    agent_key: str
    total_sessions: int
    total_executions: int
    average_tools_per_session: float
    success_rate: float
    average_duration_ms: float
    popular_tools: list[ToolUsage] = field(default_factory=list)


@dataclass
class WorkflowMetrics:
    workflow_name: str
    total_executions: int
    success_rate: float
    average_duration_ms: float
    last_executed: int | None


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS tool_executions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    request_id TEXT,
    session_id TEXT NOT NULL,
    agent_key TEXT NOT NULL,
    tool_name TEXT NOT NULL,
    started_at INTEGER NOT NULL,
    completed_at INTEGER,
    duration_ms INTEGER,
    status TEXT NOT NULL DEFAULT 'running'
        CHECK (status IN ('running', 'success', 'error', 'timeout')),
    error_message TEXT,
    input_size INTEGER,
    output_size INTEGER
);

CREATE TABLE IF NOT EXISTS agent_sessions (
    session_id TEXT PRIMARY KEY,
    agent_key TEXT NOT NULL,
    started_at INTEGER NOT NULL,
    completed_at INTEGER,
    total_tools INTEGER NOT NULL DEFAULT 0,
    success_count INTEGER NOT NULL DEFAULT 0,
    error_count INTEGER NOT NULL DEFAULT 0,
    final_result TEXT
);

CREATE TABLE IF NOT EXISTS workflow_executions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    workflow_name TEXT NOT NULL,
    workflow_version TEXT,
    started_at INTEGER NOT NULL,
    completed_at INTEGER NOT NULL,
    duration_ms INTEGER NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('success', 'error', 'timeout')),
    inputs TEXT,
    outputs TEXT,
    error_message TEXT
);
"""

_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_exec_session ON tool_executions(session_id);
CREATE INDEX IF NOT EXISTS idx_exec_agent ON tool_executions(agent_key);
CREATE INDEX IF NOT EXISTS idx_exec_tool ON tool_executions(tool_name);
CREATE INDEX IF NOT EXISTS idx_exec_started ON tool_executions(started_at);
CREATE INDEX IF NOT EXISTS idx_exec_status ON tool_executions(status);
CREATE INDEX IF NOT EXISTS idx_sess_agent ON agent_sessions(agent_key);
CREATE INDEX IF NOT EXISTS idx_sess_started ON agent_sessions(started_at);
CREATE INDEX IF NOT EXISTS idx_wf_name ON workflow_executions(workflow_name);
"""


def _rate(part: int | None, total: int | None) -> float:
    if not total:
        return 0.0
    return float(part or 0) / float(total)


def _dumps_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _loads_or_raw(value: str | None) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _window(
    clauses: list[str],
    params: list[Any],
    time_range: TimeRange | None,
    column: str = "started_at",
) -> None:
    if time_range is not None:
        clauses.append(f"{column} >= ? AND {column} <= ?")
        params.extend([time_range.start, time_range.end])


def _where(clauses: list[str]) -> str:
    return ("WHERE " + " AND ".join(clauses)) if clauses else ""


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class MetricsStore:
    """SQLite-backed analytics store. Safe to share across threads and tasks."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    # -- connection ---------------------------------------------------------

    def _get_db(self) -> sqlite3.Connection:
        """Lazy connection. Creates tables on first use. Caller holds the lock."""
        if self._conn is not None:
            return self._conn
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.executescript(_TABLES_SQL)
        conn.executescript(_INDEXES_SQL)
        conn.commit()
        self._conn = conn
        logger.info("Metrics store opened at %s", self.db_path)
        return conn

    def _write(self, sql: str, params: tuple[Any, ...] | list[Any]) -> sqlite3.Cursor:
        with self._lock:
            db = self._get_db()
            try:
                cur = db.execute(sql, params)
                db.commit()
            except Exception:
                db.rollback()
                raise
            return cur

    def _read(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._get_db().execute(sql, params).fetchall()

    def _read_one(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> sqlite3.Row:
        rows = self._read(sql, params)
        return rows[0]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "MetricsStore":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -- tool executions ----------------------------------------------------

    def record_tool_start(
        self,
        session_id: str,
        agent_key: str,
        tool_name: str,
        *,
        started_at: int | None = None,
        request_id: str | None = None,
    ) -> int:
        """Insert an open (``running``) execution row and return its id."""
        cur = self._write(
            """INSERT INTO tool_executions
               (request_id, session_id, agent_key, tool_name, started_at, status)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (request_id, session_id, agent_key, tool_name,
             started_at if started_at is not None else now_ms(), RUNNING),
        )
        return int(cur.lastrowid)

    def complete_tool_execution(
        self,
        execution_id: int,
        *,
        status: ToolStatus,
        completed_at: int | None = None,
        error_message: str | None = None,
        input_size: int | None = None,
        output_size: int | None = None,
    ) -> bool:
        """Stamp completion on an open row. Returns False if no open row matched.

        A row that already has a terminal status is never modified.
        """
        if status not in _TERMINAL_STATUSES:
            raise ValueError(f"Invalid terminal status: {status!r}")
        completed = completed_at if completed_at is not None else now_ms()
        cur = self._write(
            """UPDATE tool_executions
               SET completed_at = ?,
                   duration_ms = MAX(? - started_at, 0),
                   status = ?,
                   error_message = ?,
                   input_size = ?,
                   output_size = ?
               WHERE id = ? AND completed_at IS NULL AND status = 'running'""",
            (completed, completed, status, error_message, input_size, output_size, execution_id),
        )
        return cur.rowcount > 0

    def record_tool_execution(self, record: ToolExecutionRecord) -> int:
        """Insert a finished execution record in one write. Returns its id.

        The record must carry a terminal status and ``completed_at``; open
        rows go through ``record_tool_start`` instead.
        """
        if record.status not in _TERMINAL_STATUSES:
            raise ValueError(f"Invalid status: {record.status!r}")
        if record.completed_at is None:
            raise ValueError(f"Finished execution of {record.tool_name} has no completed_at")
        duration_ms = max(record.completed_at - record.started_at, 0)
        cur = self._write(
            """INSERT INTO tool_executions
               (request_id, session_id, agent_key, tool_name, started_at, completed_at,
                duration_ms, status, error_message, input_size, output_size)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                record.request_id, record.session_id, record.agent_key, record.tool_name,
                record.started_at, record.completed_at, duration_ms, record.status,
                record.error_message, record.input_size, record.output_size,
            ),
        )
        return int(cur.lastrowid)

    # -- sessions -----------------------------------------------------------

    def record_session_start(
        self,
        session_id: str,
        agent_key: str,
        *,
        started_at: int | None = None,
    ) -> bool:
        """Insert-if-absent. Returns False when the session id already existed."""
        cur = self._write(
            """INSERT OR IGNORE INTO agent_sessions (session_id, agent_key, started_at)
               VALUES (?, ?, ?)""",
            (session_id, agent_key, started_at if started_at is not None else now_ms()),
        )
        return cur.rowcount > 0

    def record_session_end(
        self,
        session_id: str,
        metrics: SessionMetrics,
        *,
        agent_key: str | None = None,
        completed_at: int | None = None,
    ) -> None:
        """Update the session row; upsert when the start was never recorded."""
        completed = completed_at if completed_at is not None else now_ms()
        self._write(
            """INSERT INTO agent_sessions
               (session_id, agent_key, started_at, completed_at,
                total_tools, success_count, error_count, final_result)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(session_id) DO UPDATE SET
                   completed_at = excluded.completed_at,
                   total_tools = excluded.total_tools,
                   success_count = excluded.success_count,
                   error_count = excluded.error_count,
                   final_result = excluded.final_result""",
            (
                session_id, agent_key or "unknown", completed, completed,
                metrics.total_tools, metrics.success_count, metrics.error_count,
                _dumps_or_none(metrics.final_result),
            ),
        )

    # -- workflows ----------------------------------------------------------

    def record_workflow_execution(
        self,
        workflow_name: str,
        *,
        started_at: int,
        completed_at: int,
        status: ToolStatus,
        workflow_version: str | None = None,
        inputs: Any = None,
        outputs: Any = None,
        error_message: str | None = None,
    ) -> int:
        if status not in _TERMINAL_STATUSES:
            raise ValueError(f"Invalid status: {status!r}")
        cur = self._write(
            """INSERT INTO workflow_executions
               (workflow_name, workflow_version, started_at, completed_at, duration_ms,
                status, inputs, outputs, error_message)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                workflow_name, workflow_version, started_at, completed_at,
                max(completed_at - started_at, 0), status,
                _dumps_or_none(inputs), _dumps_or_none(outputs), error_message,
            ),
        )
        return int(cur.lastrowid)

    # -- queries ------------------------------------------------------------

    def _tool_usage(
        self,
        clauses: list[str],
        params: list[Any],
        limit: int,
    ) -> list[ToolUsage]:
        rows = self._read(
            f"""SELECT tool_name,
                       COUNT(*) AS total,
                       SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS successes,
                       AVG(duration_ms) AS avg_duration
                FROM tool_executions
                {_where(clauses)}
                GROUP BY tool_name
                ORDER BY total DESC, tool_name ASC
                LIMIT ?""",  # noqa: S608
            [*params, limit],
        )
        return [
            ToolUsage(
                name=r["tool_name"],
                count=r["total"],
                success_rate=_rate(r["successes"], r["total"]),
                average_duration_ms=float(r["avg_duration"] or 0.0),
            )
            for r in rows
        ]

    def get_tool_metrics(self, time_range: TimeRange | None = None) -> ToolMetrics:
        """Aggregate success rate and mean duration over finished executions."""
        clauses = ["status != 'running'"]
        params: list[Any] = []
        _window(clauses, params, time_range)
        row = self._read_one(
            f"""SELECT COUNT(*) AS total,
                       SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS successes,
                       SUM(CASE WHEN status != 'success' THEN 1 ELSE 0 END) AS errors,
                       AVG(duration_ms) AS avg_duration
                FROM tool_executions
                {_where(clauses)}""",  # noqa: S608
            params,
        )
        return ToolMetrics(
            total_executions=row["total"],
            success_rate=_rate(row["successes"], row["total"]),
            average_duration_ms=float(row["avg_duration"] or 0.0),
            error_count=row["errors"] or 0,
            most_used_tools=self._tool_usage(clauses, params, DEFAULT_TOP_TOOLS_LIMIT),
        )

    def get_top_tools(
        self,
        limit: int = DEFAULT_TOP_TOOLS_LIMIT,
        time_range: TimeRange | None = None,
    ) -> list[ToolUsage]:
        """Top-N tools by invocation count, with per-tool success rate."""
        clauses = ["status != 'running'"]
        params: list[Any] = []
        _window(clauses, params, time_range)
        return self._tool_usage(clauses, params, limit)

    def get_agent_metrics(self, agent_key: str, time_range: TimeRange | None = None) -> AgentMetrics:
        """Per-agent rollup: sessions, executions, tools per session, success rate."""
        session_clauses = ["agent_key = ?"]
        session_params: list[Any] = [agent_key]
        _window(session_clauses, session_params, time_range)
        sessions = self._read_one(
            f"SELECT COUNT(*) AS total FROM agent_sessions {_where(session_clauses)}",  # noqa: S608
            session_params,
        )["total"]

        exec_clauses = ["agent_key = ?", "status != 'running'"]
        exec_params: list[Any] = [agent_key]
        _window(exec_clauses, exec_params, time_range)
        row = self._read_one(
            f"""SELECT COUNT(*) AS total,
                       SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS successes,
                       AVG(duration_ms) AS avg_duration
                FROM tool_executions
                {_where(exec_clauses)}""",  # noqa: S608
            exec_params,
        )
        executions = row["total"]
        return AgentMetrics(
            agent_key=agent_key,
            total_sessions=sessions,
            total_executions=executions,
            average_tools_per_session=_rate(executions, sessions),
            success_rate=_rate(row["successes"], executions),
            average_duration_ms=float(row["avg_duration"] or 0.0),
            popular_tools=self._tool_usage(exec_clauses, exec_params, DEFAULT_POPULAR_TOOLS_LIMIT),
        )

    def get_error_rate(self, time_range: TimeRange | None = None) -> float:
        """Fraction of finished executions that ended in error or timeout."""
        clauses = ["status != 'running'"]
        params: list[Any] = []
        _window(clauses, params, time_range)
        row = self._read_one(
            f"""SELECT COUNT(*) AS total,
                       SUM(CASE WHEN status != 'success' THEN 1 ELSE 0 END) AS errors
                FROM tool_executions
                {_where(clauses)}""",  # noqa: S608
            params,
        )
        return _rate(row["errors"], row["total"])

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        rows = self._read("SELECT * FROM agent_sessions WHERE session_id = ?", (session_id,))
        if not rows:
            return None
        return self._session_row(rows[0])

    def get_session_history(self, limit: int = DEFAULT_SESSION_HISTORY_LIMIT) -> list[dict[str, Any]]:
        """Most recent sessions first. ``completed_at`` is None for unfinished ones."""
        rows = self._read(
            "SELECT * FROM agent_sessions ORDER BY started_at DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        return [self._session_row(r) for r in rows]

    @staticmethod
    def _session_row(row: sqlite3.Row) -> dict[str, Any]:
        data = dict(row)
        data["final_result"] = _loads_or_raw(data.get("final_result"))
        return data

    def get_recent_executions(self, limit: int = DEFAULT_RECENT_EXECUTIONS_LIMIT) -> list[dict[str, Any]]:
        """Most recent tool executions first, including still-running ones."""
        rows = self._read(
            "SELECT * FROM tool_executions ORDER BY started_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [dict(r) for r in rows]

    def get_session_executions(self, session_id: str) -> list[dict[str, Any]]:
        rows = self._read(
            "SELECT * FROM tool_executions WHERE session_id = ? ORDER BY started_at, id",
            (session_id,),
        )
        return [dict(r) for r in rows]

    def get_workflow_metrics(self, workflow_name: str | None = None) -> list[WorkflowMetrics]:
        clauses: list[str] = []
        params: list[Any] = []
        if workflow_name is not None:
            clauses.append("workflow_name = ?")
            params.append(workflow_name)
        rows = self._read(
            f"""SELECT workflow_name,
                       COUNT(*) AS total,
                       SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS successes,
                       AVG(duration_ms) AS avg_duration,
                       MAX(started_at) AS last_executed
                FROM workflow_executions
                {_where(clauses)}
                GROUP BY workflow_name
                ORDER BY last_executed DESC""",  # noqa: S608
            params,
        )
        return [
            WorkflowMetrics(
                workflow_name=r["workflow_name"],
                total_executions=r["total"],
                success_rate=_rate(r["successes"], r["total"]),
                average_duration_ms=float(r["avg_duration"] or 0.0),
                last_executed=r["last_executed"],
            )
            for r in rows
        ]
