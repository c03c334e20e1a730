"""Tests for the context resolver.

Container runtimes are replaced by FakeProbe; nothing here starts a
container.
"""

import pytest

from shellgate.errors import ConfigurationError
from shellgate.gate.context import ContextResolver, resolve_target, uses_sudo
from shellgate.gate.models import Backend, ExecutionTarget
from tests.conftest import FakeProbe

HOST = ExecutionTarget.host()


class TestResolveTarget:
    """Tests for picking the execution target."""

    def test_default_is_host(self):
        assert resolve_target() == HOST

    def test_single_container(self):
        target = resolve_target(docker="web")

        assert target.backend == Backend.DOCKER
        assert target.describe() == "docker:web"

    def test_conflicting_targets(self):
        with pytest.raises(ConfigurationError, match="Only one execution target"):
            resolve_target(distrobox="dev", podman="db")


class TestUsesSudo:
    @pytest.mark.parametrize(
        "command",
        ["sudo apt update", "ls && doas reboot", "echo $(sudo cat /etc/shadow)", "pkexec bash"],
    )
    def test_escalation_detected(self, command):
        assert uses_sudo(command)

    @pytest.mark.parametrize("command", ["ls -la", "echo sudo", "grep -r sudo /etc"])
    def test_no_escalation(self, command):
        assert not uses_sudo(command)


class TestCheckTarget:
    """Tests for target reachability."""

    def test_host_always_available(self):
        resolver = ContextResolver(probe=FakeProbe(installed=False))

        assert resolver.check_target(HOST).available

    def test_distrobox_exists(self):
        resolver = ContextResolver(probe=FakeProbe(distroboxes=["dev"]))

        status = resolver.check_target(ExecutionTarget.container(Backend.DISTROBOX, "dev"))

        assert status.available

    def test_distrobox_missing(self):
        resolver = ContextResolver(probe=FakeProbe(distroboxes=["other"]))

        status = resolver.check_target(ExecutionTarget.container(Backend.DISTROBOX, "dev"))

        assert not status.available
        assert "does not exist" in status.detail

    def test_runtime_not_installed(self):
        resolver = ContextResolver(probe=FakeProbe(installed=False))

        status = resolver.check_target(ExecutionTarget.container(Backend.PODMAN, "db"))

        assert not status.available
        assert "not installed" in status.detail

    def test_container_stopped(self):
        resolver = ContextResolver(probe=FakeProbe(containers={"web": (False, "")}))

        status = resolver.check_target(ExecutionTarget.container(Backend.DOCKER, "web"))

        assert not status.available
        assert "not running" in status.detail

    def test_container_running(self):
        resolver = ContextResolver(probe=FakeProbe(containers={"web": (True, "app")}))

        assert resolver.check_target(ExecutionTarget.container(Backend.DOCKER, "web")).available


class TestRunsAsRoot:
    """Tests for root detection."""

    def test_host_uses_euid(self):
        assert ContextResolver(geteuid=lambda: 0).runs_as_root(HOST)
        assert not ContextResolver(geteuid=lambda: 1000).runs_as_root(HOST)

    def test_distrobox_follows_host_user(self):
        box = ExecutionTarget.container(Backend.DISTROBOX, "dev")

        assert not ContextResolver(probe=FakeProbe(), geteuid=lambda: 1000).runs_as_root(box)

    @pytest.mark.parametrize(
        "user, expected",
        [("", True), ("root", True), ("0", True), ("0:0", True), ("app", False), ("1000:1000", False)],
    )
    def test_container_user(self, user, expected):
        resolver = ContextResolver(probe=FakeProbe(containers={"web": (True, user)}))

        assert resolver.runs_as_root(ExecutionTarget.container(Backend.DOCKER, "web")) is expected

    def test_unknown_user_is_root(self):
        resolver = ContextResolver(probe=FakeProbe(installed=False))

        assert resolver.runs_as_root(ExecutionTarget.container(Backend.PODMAN, "db"))

    def test_container_user_is_cached(self):
        probe = FakeProbe(containers={"web": (True, "app")})
        resolver = ContextResolver(probe=probe)
        target = ExecutionTarget.container(Backend.DOCKER, "web")

        resolver.runs_as_root(target)
        resolver.runs_as_root(target)

        assert len(probe.calls) == 1


class TestAnnotate:
    def test_available_target(self):
        resolver = ContextResolver(probe=FakeProbe(), geteuid=lambda: 1000)

        context = resolver.annotate("sudo apt update", HOST)

        assert context.status.available
        assert context.uses_sudo
        assert not context.uses_root

    def test_unavailable_target_skips_privilege_probe(self):
        probe = FakeProbe()
        resolver = ContextResolver(probe=probe)
        target = ExecutionTarget.container(Backend.DOCKER, "gone")

        context = resolver.annotate("sudo ls", target)

        assert not context.status.available
        assert not context.uses_root
        assert not context.uses_sudo
        assert len(probe.calls) == 1
