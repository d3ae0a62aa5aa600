"""Tests for the kbeads command line."""

import json
from unittest.mock import patch

import pytest

from kbeads.cli import EXIT_BLOCKED, main


@pytest.fixture(autouse=True)
def isolated_home(tmp_kbeads_dir, monkeypatch):
    monkeypatch.delenv("KBEADS_ADVICE_FILE", raising=False)
    return tmp_kbeads_dir


def test_no_command_prints_help(capsys):
    assert main([]) == 0
    assert "run-hooks" in capsys.readouterr().out


# ============================================================================
# subscriptions / match
# ============================================================================

def test_subscriptions(capsys):
    assert main(["subscriptions", "beads/polecats/nux"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out == ["global", "agent:beads/polecats/nux", "rig:beads", "role:polecats", "role:polecat"]


def test_subscriptions_json(capsys):
    main(["subscriptions", "beads/crew/x", "--json"])
    assert "rig:beads" in json.loads(capsys.readouterr().out)


def test_match(capsys):
    assert main(["match", "beads/polecats/nux", "g0:role:polecat", "g0:rig:beads"]) == 0
    assert capsys.readouterr().out.strip() == "match"


def test_no_match(capsys):
    assert main(["match", "beads/polecats/nux", "rig:gastown"]) == 1
    assert capsys.readouterr().out.strip() == "no match"


# ============================================================================
# run-hooks
# ============================================================================

class TestRunHooks:

    def _args(self, advice_path, *extra):
        return ["run-hooks", "--agent", "beads/crew/x", "--trigger", "session-end", "--advice", str(advice_path), *extra]

    def test_no_advice_file_is_ok(self, capsys, tmp_path):
        assert main(self._args(tmp_path / "missing.json")) == 0
        assert "OK" in capsys.readouterr().out

    def test_blocked_exit_code(self, capsys, advice_file):
        path = advice_file([{
            "id": "kd-1", "title": "must pass", "labels": ["global"],
            "fields": {"hook_command": "echo failing; exit 1", "hook_trigger": "session-end", "hook_on_failure": "block"},
        }])
        assert main(self._args(path)) == EXIT_BLOCKED
        out = capsys.readouterr().out
        assert "[BLOCKED] Advice hook blocked: must pass" in out
        assert "failing" in out

    def test_warning_json(self, capsys, advice_file):
        path = advice_file([{
            "id": "kd-1", "title": "lint", "labels": ["role:crew"],
            "fields": {"hook_command": "exit 3", "hook_trigger": "session-end", "hook_on_failure": "warn"},
        }])
        assert main(self._args(path, "--json")) == 0
        data = json.loads(capsys.readouterr().out)
        assert data == {"warnings": ["Advice hook warning: lint -  (exit: exit status 3)"]}

    def test_advice_file_from_env(self, capsys, advice_file, monkeypatch):
        path = advice_file([{
            "id": "kd-1", "title": "env advice", "labels": ["global"],
            "fields": {"hook_command": "exit 1", "hook_trigger": "session-end", "hook_on_failure": "block"},
        }])
        monkeypatch.setenv("KBEADS_ADVICE_FILE", str(path))
        args = ["run-hooks", "--agent", "beads/crew/x", "--trigger", "session-end"]
        assert main(args) == EXIT_BLOCKED

    def test_unreadable_advice_file(self, capsys, tmp_path):
        path = tmp_path / "advice.json"
        path.write_text("{broken")
        assert main(self._args(path)) == 1
        assert "cannot load advice" in capsys.readouterr().err

    def test_invalid_trigger(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["run-hooks", "--agent", "a", "--trigger", "whenever"])


def test_serve_uses_cli_overrides(capsys):
    with patch("kbeads.server.http_server.run_http") as run_http, patch("asyncio.run") as arun:
        assert main(["serve", "--host", "0.0.0.0", "--port", "9999"]) == 0
    settings = run_http.call_args.args[0]
    assert settings.host == "0.0.0.0"
    assert settings.port == 9999
    arun.assert_called_once()
