"""Tests for the confirmation subsystem."""

import pytest

from shellgate.gate.classifier import RiskClassifier
from shellgate.gate.confirmation import PROMPT, ConfirmationManager, fingerprint
from shellgate.gate.models import (
    ApprovalOutcome,
    Backend,
    ExecutionTarget,
    SafetyMode,
)
from shellgate.gate.policy import decide
from tests.conftest import ScriptedInput

HOST = ExecutionTarget.host()


def prompt_for(command, mode=SafetyMode.CONFIRM):
    classification = RiskClassifier().classify(command)
    return decide(classification, mode), classification


@pytest.fixture
def manager_with(quiet_console):
    def _make(*answers):
        scripted = ScriptedInput(*answers)
        return ConfirmationManager(console=quiet_console, input_func=scripted), scripted

    return _make


class TestResolve:
    """Tests for reading the user's answer."""

    @pytest.mark.parametrize(
        "answer, expected",
        [
            ("y", ApprovalOutcome.APPROVED),
            ("YES", ApprovalOutcome.APPROVED),
            (" n ", ApprovalOutcome.REJECTED),
            ("no", ApprovalOutcome.REJECTED),
            ("a", ApprovalOutcome.APPROVED_FOR_SESSION),
            ("always", ApprovalOutcome.APPROVED_FOR_SESSION),
        ],
    )
    def test_answers(self, manager_with, answer, expected):
        manager, _ = manager_with(answer)
        decision, classification = prompt_for("git reset --hard")

        assert manager.resolve("git reset --hard", decision, classification, HOST) == expected

    def test_empty_answer_rejects(self, manager_with):
        manager, _ = manager_with("")
        decision, classification = prompt_for("git reset --hard")

        assert manager.resolve("git reset --hard", decision, classification) == ApprovalOutcome.REJECTED

    @pytest.mark.parametrize("error", [EOFError(), KeyboardInterrupt()])
    def test_interrupted_prompt_rejects(self, manager_with, error):
        manager, _ = manager_with(error)
        decision, classification = prompt_for("rm -rf /")

        assert manager.resolve("rm -rf /", decision, classification) == ApprovalOutcome.REJECTED

    def test_unknown_answer_asks_again(self, manager_with):
        manager, scripted = manager_with("maybe", "y")
        decision, classification = prompt_for("git clean -fdx")

        outcome = manager.resolve("git clean -fdx", decision, classification)

        assert outcome == ApprovalOutcome.APPROVED
        assert scripted.prompts == [PROMPT, PROMPT]

    def test_panel_shows_command_and_rule(self, manager_with, quiet_console):
        manager, _ = manager_with("n")
        decision, classification = prompt_for("rm -rf /")

        manager.resolve("rm -rf /", decision, classification)

        rendered = quiet_console.file.getvalue()
        assert "rm -rf /" in rendered
        assert "fs.rm-root" in rendered
        assert "Confirm command" in rendered

    def test_urgent_panel_title(self, manager_with, quiet_console):
        manager, _ = manager_with("n")
        decision, classification = prompt_for("dd if=/dev/zero of=/dev/sda", SafetyMode.SAFE_YOLO)

        manager.resolve("dd if=/dev/zero of=/dev/sda", decision, classification)

        assert "Dangerous command" in quiet_console.file.getvalue()


class TestSessionOverrides:
    """Tests for 'always' approvals."""

    def test_always_records_fingerprint(self, manager_with):
        manager, _ = manager_with("a")
        decision, classification = prompt_for("git reset --hard")

        manager.resolve("git reset --hard", decision, classification, HOST)

        assert manager.is_approved_for_session("git reset --hard", HOST, classification)
        assert len(manager.session_overrides) == 1

    def test_plain_yes_does_not_persist(self, manager_with):
        manager, _ = manager_with("y")
        decision, classification = prompt_for("git reset --hard")

        manager.resolve("git reset --hard", decision, classification, HOST)

        assert not manager.is_approved_for_session("git reset --hard", HOST, classification)

    def test_override_is_specific_to_command_and_target(self, manager_with):
        manager, _ = manager_with("a")
        decision, classification = prompt_for("git reset --hard")
        manager.resolve("git reset --hard", decision, classification, HOST)

        other = RiskClassifier().classify("git reset --hard HEAD~3")
        box = ExecutionTarget.container(Backend.DOCKER, "web")

        assert not manager.is_approved_for_session("git reset --hard HEAD~3", HOST, other)
        assert not manager.is_approved_for_session("git reset --hard", box, classification)

    def test_clear_session(self, manager_with):
        manager, _ = manager_with("a")
        decision, classification = prompt_for("git reset --hard")
        manager.resolve("git reset --hard", decision, classification, HOST)

        manager.clear_session()

        assert manager.session_overrides == frozenset()


class TestFingerprint:
    """Tests for approval fingerprints."""

    def test_whitespace_and_case_insensitive(self):
        classification = RiskClassifier().classify("git reset --hard")

        assert fingerprint("git reset --hard", HOST, classification) == fingerprint(
            "GIT  reset   --hard", HOST, classification
        )

    def test_privilege_changes_fingerprint(self):
        classifier = RiskClassifier()
        plain = classifier.classify("git reset --hard")
        as_root = classifier.classify("git reset --hard", uses_root=True)

        assert fingerprint("git reset --hard", HOST, plain) != fingerprint(
            "git reset --hard", HOST, as_root
        )
