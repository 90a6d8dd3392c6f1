"""Tests for the event sinks and the click entrypoint (shadow_audit/events.py, shadow_audit/cli.py)."""

import io
import json

import pytest
from click.testing import CliRunner
from rich.console import Console

from shadow_audit import __version__, cli
from shadow_audit.auth import load_config
from shadow_audit.events import ConsoleSink, JsonLineSink

from conftest import FakeGraph, make_grant, make_sp, make_user


def _events(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


# ── Sinks ──────────────────────────────────────────────────────────────────────


class TestJsonLineSink:
    def test_progress_rounds_percent(self):
        buf = io.StringIO()
        JsonLineSink(buf).progress("Processing delegated grants: 10/24", 45.0 + 1 / 3)
        assert json.loads(buf.getvalue()) == {
            "type": "progress",
            "message": "Processing delegated grants: 10/24",
            "percent": 45.3,
        }

    def test_progress_without_percent(self):
        buf = io.StringIO()
        JsonLineSink(buf).progress("Revoked App (Delegated)")
        assert "percent" not in json.loads(buf.getvalue())

    def test_success_and_error(self):
        buf = io.StringIO()
        sink = JsonLineSink(buf)
        sink.success({"message": "done"})
        sink.error("boom")
        first, second = [json.loads(line) for line in buf.getvalue().splitlines()]
        assert first == {"type": "success", "data": {"message": "done"}}
        assert second == {"type": "error", "message": "boom"}


class TestConsoleSink:
    def _sink(self):
        buf = io.StringIO()
        return ConsoleSink(Console(file=buf, width=200, color_system=None)), buf

    def test_renders_table_and_message(self):
        sink, buf = self._sink()
        sink.success({"message": "=== Shadow IT Audit Summary ===", "table": {"headers": ["Risk", "App Name"], "rows": [["90 Critical", "[bold]Sync"]]}})
        out = buf.getvalue()
        assert "App Name" in out
        assert "[bold]Sync" in out
        assert "Shadow IT Audit Summary" in out

    def test_progress_with_markup_in_message(self):
        sink, buf = self._sink()
        sink.progress("Revoked Evil [/] App (Delegated)", 97)
        sink.progress("Failed to revoke [bold]x: [/red]")
        out = buf.getvalue()
        assert " 97.0% Revoked Evil [/] App (Delegated)" in out
        assert "Failed to revoke [bold]x: [/red]" in out

    def test_renders_error(self):
        sink, buf = self._sink()
        sink.error("Graph API access denied (403)")
        assert "Graph API access denied (403)" in buf.getvalue()


# ── CLI ────────────────────────────────────────────────────────────────────────


@pytest.fixture
def fake_graph(monkeypatch):
    graph = FakeGraph()
    graph.sps["sp-1"] = make_sp("sp-1", displayName="Mail Sync")
    graph.users["u1"] = make_user("u1")
    graph.grants.append(make_grant("g-1", "sp-1", "u1", "Mail.Read"))
    monkeypatch.setattr(cli, "GraphClient", lambda access_token: graph)
    monkeypatch.setenv("GRAPH_TOKEN", "test-token")
    return graph


@pytest.fixture
def run(tmp_path):
    def _run(*args, **kwargs):
        base = ["--config", str(tmp_path / "absent.json"), "--output", str(tmp_path / "out")]
        return CliRunner().invoke(cli.main, [*base, *args], **kwargs)

    return _run


class TestCli:
    def test_dry_run_emits_success(self, fake_graph, run):
        result = run("--no-export-csv")
        assert result.exit_code == 0, result.output
        events = _events(result.stdout)
        assert events[0] == {"type": "progress", "message": "Starting Shadow IT audit...", "percent": 0}
        successes = [e for e in events if e["type"] == "success"]
        assert len(successes) == 1
        assert successes[0]["data"]["stats"]["total"] == 1
        assert fake_graph.deleted == []

    def test_export_written(self, fake_graph, run, tmp_path):
        result = run()
        assert result.exit_code == 0, result.output
        exported = list((tmp_path / "out").glob("shadow_it_*.csv"))
        assert len(exported) == 1

    def test_allow_app_excludes(self, fake_graph, run):
        result = run("--no-export-csv", "--allow-app", "APP-SP-1")
        success = [e for e in _events(result.stdout) if e["type"] == "success"][0]
        assert success["data"] == {"message": "No risky Shadow IT detected. Tenant is clean!"}

    def test_remediate_with_yes(self, fake_graph, run):
        result = run("--no-export-csv", "--remediate", "--yes")
        assert result.exit_code == 0, result.output
        assert fake_graph.deleted == [("oauth2PermissionGrant", "g-1")]
        success = [e for e in _events(result.stdout) if e["type"] == "success"][0]
        assert success["data"]["remediation"]["revoked"] == 1

    def test_table_mode_remediation_declined(self, fake_graph, run):
        result = run("--no-export-csv", "--remediate", "--format", "table", input="n\n")
        assert result.exit_code == 0
        assert fake_graph.deleted == []
        assert fake_graph.calls == []

    def test_missing_credentials_is_fatal(self, run, monkeypatch):
        monkeypatch.delenv("GRAPH_TOKEN", raising=False)
        result = run()
        assert result.exit_code == 1
        [event] = _events(result.stdout)
        assert event["type"] == "error"
        assert "not found" in event["message"]

    def test_graph_failure_is_fatal(self, fake_graph, run, monkeypatch):
        def denied():
            raise PermissionError("Graph API access denied (403): Insufficient privileges")

        monkeypatch.setattr(fake_graph, "get_oauth2_permission_grants", denied)
        result = run("--no-export-csv")
        assert result.exit_code == 1
        assert _events(result.stdout)[-1] == {
            "type": "error",
            "message": "Graph API access denied (403): Insufficient privileges",
        }

    def test_bad_policy_file_is_fatal(self, fake_graph, run, tmp_path):
        bad = tmp_path / "policy.json"
        bad.write_text("{}", encoding="utf-8")
        result = run("--policy", str(bad))
        assert result.exit_code == 1
        assert "missing required key" in _events(result.stdout)[-1]["message"]

    def test_version(self, run):
        result = run("--version")
        assert result.exit_code == 0
        assert __version__ in result.output


class TestLoadConfig:
    def test_default_file_follows_working_directory(self, tmp_path, monkeypatch):
        first, second = tmp_path / "a", tmp_path / "b"
        for folder, tenant in ((first, "tenant-a"), (second, "tenant-b")):
            folder.mkdir()
            (folder / "shadow_audit_config.json").write_text(json.dumps({"tenant_id": tenant}), encoding="utf-8")

        monkeypatch.chdir(first)
        assert load_config()["tenant_id"] == "tenant-a"
        monkeypatch.chdir(second)
        assert load_config()["tenant_id"] == "tenant-b"

    def test_missing_optional_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert load_config(required=False) == {}
