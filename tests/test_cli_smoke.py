from __future__ import annotations

import json
import subprocess
import sys

import pytest

from mm_agent.__main__ import main
from mm_agent.metrics_store import MetricsStore, SessionMetrics, ToolExecutionRecord


CLI_CMDS = [
    ["--help"],
    ["tools", "--help"],
    ["agent", "--help"],
    ["errors", "--help"],
    ["sessions", "--help"],
    ["executions", "--help"],
    ["workflows", "--help"],
]


def test_cli_help_smoke() -> None:
    for cmd in CLI_CMDS:
        proc = subprocess.run(
            [sys.executable, "-m", "mm_agent", *cmd],
            capture_output=True,
            text=True,
            check=False,
        )
        assert proc.returncode == 0, f"command failed: {cmd}\nstdout={proc.stdout}\nstderr={proc.stderr}"
        assert "usage:" in proc.stdout.lower()


@pytest.fixture
def seeded_db(tmp_path):
    db_path = tmp_path / "analytics.db"
    with MetricsStore(db_path) as store:
        store.record_session_start("s1", "file", started_at=1_000)
        store.record_tool_execution(ToolExecutionRecord(
            session_id="s1", agent_key="file", tool_name="list_files",
            started_at=1_000, completed_at=1_200, status="success",
        ))
        store.record_tool_execution(ToolExecutionRecord(
            session_id="s1", agent_key="file", tool_name="read_file",
            started_at=1_300, completed_at=1_400, status="error", error_message="missing",
        ))
        store.record_session_end("s1", SessionMetrics(2, 1, 1, "done"), completed_at=1_500)
        store.record_workflow_execution("nightly", started_at=0, completed_at=10, status="success")
    return db_path


class TestCommands:
    def test_tools_json(self, seeded_db, capsys) -> None:
        main(["tools", "--db", str(seeded_db), "--format", "json"])
        data = json.loads(capsys.readouterr().out)
        assert data["total_executions"] == 2
        assert data["success_rate"] == 0.5
        assert {t["name"] for t in data["top_tools"]} == {"list_files", "read_file"}

    def test_agent_table(self, seeded_db, capsys) -> None:
        main(["agent", "file", "--db", str(seeded_db)])
        out = capsys.readouterr().out
        assert "Agent: file" in out
        assert "Popular Tools" in out

    def test_errors_all_time(self, seeded_db, capsys) -> None:
        main(["errors", "--days", "0", "--db", str(seeded_db), "--format", "json"])
        assert json.loads(capsys.readouterr().out)["error_rate"] == 0.5

    def test_sessions_and_executions(self, seeded_db, capsys) -> None:
        main(["sessions", "--db", str(seeded_db), "--format", "json"])
        sessions = json.loads(capsys.readouterr().out)
        assert sessions[0]["final_result"] == "done"

        main(["executions", "--db", str(seeded_db)])
        out = capsys.readouterr().out
        assert "Recent Executions" in out
        assert "read_file" in out

    def test_workflows(self, seeded_db, capsys) -> None:
        main(["workflows", "--db", str(seeded_db)])
        assert "nightly" in capsys.readouterr().out

    def test_missing_db_exits(self, tmp_path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["tools", "--db", str(tmp_path / "absent.db")])
        assert exc_info.value.code == 1
