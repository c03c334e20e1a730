"""Tests for the shellgate command line."""

import json
import os

import pytest

from shellgate import cli
from shellgate.gate.models import ExecutionResult, SafetyMode
from tests.conftest import FakeProbe, ScriptedInput


@pytest.fixture
def cli_env(monkeypatch, spy_adapter):
    """Run main() as a non-root user with the spy adapter and a fake probe."""
    monkeypatch.setattr(os, "geteuid", lambda: 1000)
    monkeypatch.setattr(
        "shellgate.gate.gate.ExecutionAdapter", lambda shell=None, limits=None: spy_adapter
    )
    monkeypatch.setattr("shellgate.gate.context.run_probe", FakeProbe(containers={"web": (True, "app")}))
    return spy_adapter


class TestBuildParser:
    def test_yolo_count(self):
        args = cli.build_parser().parse_args(["-yy", "ls"])

        assert args.yolo == 2
        assert args.command == ["ls"]

    def test_command_keeps_its_own_flags(self):
        args = cli.build_parser().parse_args(["--", "ls", "-la"])

        assert cli.command_text(args.command) == "ls -la"

    def test_targets_are_mutually_exclusive(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["-d", "dev", "--docker", "web", "ls"])


class TestSettingsOverrides:
    def test_modes(self):
        parser = cli.build_parser()

        assert cli.settings_overrides(parser.parse_args(["ls"]))["safety_mode"] is None
        assert (
            cli.settings_overrides(parser.parse_args(["-yyy", "ls"]))["safety_mode"]
            == SafetyMode.FULL_YOLO
        )

    def test_target_flag_clears_other_targets(self):
        overrides = cli.settings_overrides(cli.build_parser().parse_args(["--podman", "db", "ls"]))

        assert overrides["podman"] == "db"
        assert overrides["distrobox"] == ""
        assert overrides["docker"] == ""

    def test_verbosity(self):
        parser = cli.build_parser()

        assert cli.settings_overrides(parser.parse_args(["-v", "ls"]))["log_level"] == "info"
        assert cli.settings_overrides(parser.parse_args(["-vvv", "ls"]))["log_level"] == "debug"


class TestMain:
    """Tests for main() exit codes and output."""

    def test_runs_safe_command(self, cli_env, capsys):
        code = cli.main(["--no-audit", "ls"])

        assert code == 0
        assert cli_env.calls[0][0] == "ls"
        assert capsys.readouterr().out == "ok\n"

    def test_exit_code_is_passed_through(self, cli_env):
        cli_env.result = ExecutionResult(exit_code=7)

        assert cli.main(["--no-audit", "false"]) == 7

    def test_too_many_yolo_flags(self, cli_env, capsys):
        assert cli.main(["-yyyy", "ls"]) == 2
        assert "Configuration error" in capsys.readouterr().err
        assert cli_env.calls == []

    def test_missing_config_file(self, cli_env, tmp_path):
        assert cli.main(["--config", str(tmp_path / "nope.yaml"), "ls"]) == 2

    def test_missing_command(self, cli_env):
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 2

    def test_rejected(self, cli_env, capsys):
        code = cli.main(["--no-audit", "git", "reset", "--hard"], input_func=ScriptedInput("n"))

        assert code == 102
        assert cli_env.calls == []
        err = capsys.readouterr().err
        assert "Command rejected" in err
        assert "history-rewrite" in err

    def test_approved(self, cli_env):
        code = cli.main(["--no-audit", "git", "reset", "--hard"], input_func=ScriptedInput("y"))

        assert code == 0
        assert len(cli_env.calls) == 1

    def test_blocked_as_root(self, cli_env, monkeypatch, capsys):
        monkeypatch.setattr(os, "geteuid", lambda: 0)

        code = cli.main(["--no-audit", "-y", "rm", "-rf", "/"])

        assert code == 100
        assert cli_env.calls == []
        assert "Command blocked" in capsys.readouterr().err

    def test_warning_under_safe_yolo(self, cli_env, capsys):
        code = cli.main(["--no-audit", "-y", "sudo", "apt", "update"])

        assert code == 0
        assert "Warning" in capsys.readouterr().err

    def test_target_unavailable(self, cli_env):
        assert cli.main(["--no-audit", "--docker", "gone", "ls"]) == 101
        assert cli_env.calls == []

    def test_container_target(self, cli_env):
        assert cli.main(["--no-audit", "--docker", "web", "ls"]) == 0
        assert cli_env.calls[0][1].describe() == "docker:web"

    def test_dry_run(self, cli_env, capsys):
        code = cli.main(["--no-audit", "--dry-run", "rm", "-rf", "/"])

        assert code == 0
        assert cli_env.calls == []
        assert capsys.readouterr().out == "rm -rf /\n"

    def test_check_prints_json(self, cli_env, capsys):
        code = cli.main(["--check", "rm", "-rf", "/"])

        assert code == 0
        assert cli_env.calls == []
        data = json.loads(capsys.readouterr().out)
        assert data["decision"] == "prompt_user"
        assert data["severity"] == "critical"
        assert data["rules"][0]["id"] == "fs.rm-root"

    def test_audit_written(self, cli_env, isolated_env):
        cli.main(["ls"])

        audit_dir = isolated_env / ".local" / "share" / "shellgate" / "audit"
        assert len(list(audit_dir.glob("shell_audit_*.jsonl"))) == 1
