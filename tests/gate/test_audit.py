"""Tests for the audit log."""

import json
from datetime import datetime, timedelta

from shellgate.gate.audit import AuditConfig, AuditEntry, AuditLogger
from shellgate.gate.classifier import RiskClassifier
from shellgate.gate.models import (
    Backend,
    ExecutionResult,
    ExecutionTarget,
    SafetyMode,
    Severity,
)
from shellgate.gate.policy import decide

HOST = ExecutionTarget.host()


def log_request(logger, command, status="executed", result=None, target=HOST):
    classification = RiskClassifier().classify(command)
    decision = decide(classification, SafetyMode.CONFIRM)
    return logger.log_evaluation(
        command=command,
        target=target,
        mode=SafetyMode.CONFIRM,
        status=status,
        decision=decision,
        classification=classification,
        result=result,
    )


class TestAuditEntry:
    def test_to_dict_drops_empty_fields(self):
        entry = AuditEntry(
            timestamp="2024-01-01T00:00:00",
            session_id="s1",
            command="ls",
            target="host",
            mode="confirm",
            status="executed",
        )

        data = entry.to_dict()

        assert "reason" not in data
        assert "rule_ids" not in data
        assert data["uses_root"] is False

    def test_from_dict(self):
        entry = AuditEntry.from_dict(
            {
                "timestamp": "t",
                "session_id": "s1",
                "command": "rm -rf /",
                "target": "docker:web",
                "mode": "safe_yolo",
                "status": "blocked",
                "rule_ids": ["fs.rm-root"],
            }
        )

        assert entry.rule_ids == ["fs.rm-root"]
        assert not entry.executed


class TestAuditLogger:
    """Tests for writing and querying the log."""

    def test_log_evaluation_writes_jsonl(self, audit_logger):
        result = ExecutionResult(exit_code=0, stdout="x" * 1000, duration_ms=12)

        entry = log_request(audit_logger, "rm -rf /", result=result)

        files = list(audit_logger.config.get_log_dir().glob("shell_audit_*.jsonl"))
        assert len(files) == 1
        data = json.loads(files[0].read_text().splitlines()[0])
        assert data["command"] == "rm -rf /"
        assert data["session_id"] == "test0001"
        assert data["severity"] == "critical"
        assert data["rule_ids"] == ["fs.rm-root"]
        assert data["decision"] == "prompt_user"
        assert len(data["stdout_preview"]) == 500
        assert entry.executed

    def test_container_target_recorded(self, audit_logger):
        target = ExecutionTarget.container(Backend.PODMAN, "db")

        entry = log_request(audit_logger, "ls", target=target)

        assert entry.target == "podman:db"

    def test_disabled_writes_nothing(self, tmp_path):
        logger = AuditLogger(AuditConfig(enabled=False, log_dir=str(tmp_path / "audit")))

        log_request(logger, "ls")

        assert not (tmp_path / "audit").exists()

    def test_unwritable_directory_is_not_raised(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        logger = AuditLogger(AuditConfig(log_dir=str(blocker / "audit")))

        entry = log_request(logger, "ls")

        assert entry.command == "ls"

    def test_query_filters(self, audit_logger):
        log_request(audit_logger, "ls", result=ExecutionResult(exit_code=0))
        log_request(audit_logger, "rm -rf /", status="blocked")
        log_request(audit_logger, "git reset --hard", status="rejected")

        assert [e.command for e in audit_logger.query(status="blocked")] == ["rm -rf /"]
        assert [e.command for e in audit_logger.query(executed_only=True)] == ["ls"]
        assert [e.command for e in audit_logger.query(severity=Severity.LOW)] == ["git reset --hard"]
        assert [e.command for e in audit_logger.query(command_pattern="git")] == ["git reset --hard"]
        assert len(list(audit_logger.query(limit=2))) == 2

    def test_query_skips_malformed_lines(self, audit_logger):
        log_request(audit_logger, "ls")
        log_file = audit_logger._get_log_file()
        with open(log_file, "a", encoding="utf-8") as f:
            f.write("not json\n")

        assert len(list(audit_logger.query())) == 1

    def test_cleanup_old_logs(self, audit_logger):
        log_dir = audit_logger.config.get_log_dir()
        log_dir.mkdir(parents=True)
        old = datetime.now() - timedelta(days=60)
        (log_dir / f"shell_audit_{old.strftime('%Y-%m-%d')}.jsonl").write_text("{}\n")
        log_request(audit_logger, "ls")

        assert audit_logger.cleanup_old_logs() == 1
        assert len(list(log_dir.glob("*.jsonl"))) == 1

    def test_cleanup_skipped_when_disabled(self, tmp_path):
        log_dir = tmp_path / "audit"
        log_dir.mkdir()
        old = log_dir / "shell_audit_2000-01-01.jsonl"
        old.write_text("{}\n")
        logger = AuditLogger(AuditConfig(enabled=False, log_dir=str(log_dir)))

        assert logger.cleanup_old_logs() == 0
        assert old.exists()
