"""Unit tests for host probes and the capability report."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from dify_repackager.capabilities import derive_recommendation, detect_capabilities, is_inside_container
from dify_repackager.capabilities.probes import ProbeSet
from dify_repackager.tasks import ALL_KINDS, TaskKind

ALL_TOOLS = {"python3.12": 0, "pip3": 0, "unzip": 0, "ping": 0}


class TestProbes:
    """Test individual probes."""

    def test_engine_binary_prefers_explicit_path(self):
        probes = ProbeSet(
            explicit_binary=Path("/custom/docker"),
            exists=lambda path: path == "/custom/docker",
            which=lambda name: "/usr/bin/docker",
            platform="linux",
        )

        assert probes.engine_binary() == "/custom/docker"

    def test_engine_binary_checks_well_known_paths(self):
        probes = ProbeSet(
            exists=lambda path: path == "/snap/bin/docker",
            which=lambda name: None,
            platform="linux",
        )

        assert probes.engine_binary() == "/snap/bin/docker"

    def test_engine_binary_missing(self):
        probes = ProbeSet(exists=lambda path: False, which=lambda name: None, platform="linux")

        assert probes.engine_binary() is None

    def test_plugin_containers_filters_by_name(self):
        def runner(argv, **kwargs):
            return subprocess.CompletedProcess(
                argv, 0, stdout="docker-plugin_daemon-1\nnginx\nMy-Plugin-Runner\n", stderr=""
            )

        probes = ProbeSet(runner=runner, platform="linux")

        assert probes.plugin_containers("/usr/bin/docker") == (
            "docker-plugin_daemon-1",
            "My-Plugin-Runner",
        )

    def test_probe_timeout_degrades_to_false(self):
        """Test that a hanging probe is reported as unavailable."""

        def runner(argv, **kwargs):
            raise subprocess.TimeoutExpired(argv, kwargs.get("timeout"))

        probes = ProbeSet(runner=runner, platform="linux")

        assert probes.daemon_running("/usr/bin/docker").ok is False
        assert probes.archive_tool().ok is False
        assert probes.network().ok is False

    def test_runtime_reports_version(self, probe_factory):
        probes = probe_factory(commands={"python3": 0})

        result = probes.runtime()

        assert result.ok is True
        assert result.version == "Python 3.12.4"
        assert result.ideal is True

    def test_network_retries_until_success(self):
        attempts = []

        def runner(argv, **kwargs):
            attempts.append(argv)
            return subprocess.CompletedProcess(argv, 0 if len(attempts) == 3 else 1, "", "")

        probes = ProbeSet(runner=runner, platform="linux", network_attempts=3)

        assert probes.network().ok is True
        assert len(attempts) == 3
        assert attempts[0] == ["ping", "-c", "1", "-W", "1", "pypi.org"]

    def test_network_uses_windows_ping_flags(self):
        seen = []

        def runner(argv, **kwargs):
            seen.append(argv)
            return subprocess.CompletedProcess(argv, 0, "", "")

        ProbeSet(runner=runner, platform="win32").network()

        assert seen[0] == ["ping", "-n", "1", "-w", "1000", "pypi.org"]


class TestInsideContainer:
    """Test container self-detection."""

    def test_dockerenv_marker(self, tmp_path):
        marker = tmp_path / ".dockerenv"
        marker.touch()

        assert is_inside_container(marker, tmp_path / "cgroup") is True

    def test_cgroup_mentions_docker(self, tmp_path):
        cgroup = tmp_path / "cgroup"
        cgroup.write_text("0::/system.slice/docker-abc123.scope\n")

        assert is_inside_container(tmp_path / "absent", cgroup) is True

    def test_plain_host(self, tmp_path):
        assert is_inside_container(tmp_path / "absent", tmp_path / "absent-cgroup") is False


FLAG_NAMES = (
    "docker_available",
    "docker_running",
    "runtime_available",
    "package_manager_available",
    "archive_tool_available",
    "network_available",
)


def _all_flag_combinations():
    for mask in range(2 ** len(FLAG_NAMES)):
        yield {name: bool(mask & (1 << i)) for i, name in enumerate(FLAG_NAMES)}


class TestRecommendation:
    """Test the strategy recommendation table."""

    @pytest.mark.parametrize("flags", list(_all_flag_combinations()))
    def test_recommended_and_disabled_partition_all_kinds(self, flags):
        recommended, disabled, _messages = derive_recommendation(**flags)

        assert recommended.isdisjoint(disabled)
        assert recommended | disabled == set(ALL_KINDS)
        assert TaskKind.LOCAL in recommended

    def test_daemon_running_recommends_everything(self):
        recommended, disabled, _ = derive_recommendation(
            docker_available=True,
            docker_running=True,
            runtime_available=False,
            package_manager_available=False,
            archive_tool_available=False,
            network_available=False,
        )

        assert recommended == set(ALL_KINDS)
        assert disabled == set()

    def test_full_toolchain_offline_disables_network_kinds(self):
        recommended, disabled, messages = derive_recommendation(
            docker_available=False,
            docker_running=False,
            runtime_available=True,
            package_manager_available=True,
            archive_tool_available=True,
            network_available=False,
        )

        assert recommended == {TaskKind.LOCAL}
        assert disabled == {TaskKind.MARKET, TaskKind.GITHUB}
        assert any("Network" in m for m in messages)

    def test_missing_tools_name_each_gap(self):
        _, disabled, messages = derive_recommendation(
            docker_available=True,
            docker_running=False,
            runtime_available=False,
            package_manager_available=True,
            archive_tool_available=False,
            network_available=True,
        )

        assert disabled == {TaskKind.MARKET, TaskKind.GITHUB}
        text = " ".join(messages)
        assert "Python" in text
        assert "unzip" in text
        assert "start the Docker service" in text


class TestDetectCapabilities:
    """Test report assembly from probes."""

    def test_daemon_unreachable_with_local_toolchain(self, probe_factory):
        """Daemon down, toolchain and network present: everything recommended."""
        probes = probe_factory(docker="/usr/bin/docker", commands=dict(ALL_TOOLS, docker=1))

        report = detect_capabilities(probes=probes)

        assert report.docker_available is True
        assert report.docker_running is False
        assert report.recommended_strategies == set(ALL_KINDS)
        assert report.disabled_strategies == set()

    def test_nothing_available(self, probe_factory):
        report = detect_capabilities(probes=probe_factory())

        assert report.docker_available is False
        assert report.runtime_available is False
        assert report.recommended_strategies == {TaskKind.LOCAL}
        assert report.to_dict()["disabledModes"] == ["market", "github"]

    def test_report_dict_uses_camel_case(self, probe_factory):
        probes = probe_factory(docker="/usr/bin/docker", commands=dict(ALL_TOOLS, docker=0))

        data = detect_capabilities(probes=probes).to_dict()

        assert data["dockerRunning"] is True
        assert data["pythonVersion"] == "Python 3.12.4"
        assert data["recommendedModes"] == ["local", "market", "github"]
