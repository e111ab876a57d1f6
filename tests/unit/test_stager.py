"""Unit tests for ArtifactStager and helper discovery."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from dify_repackager.container.interface import InMemoryLogSink
from dify_repackager.errors import (
    ArchitectureMismatch,
    FailureKind,
    RetrievalFailure,
    StagingFailure,
    TaskExecutionFailed,
)
from dify_repackager.staging import ArtifactStager
from dify_repackager.staging.helpers import ScriptNotFound, find_script, helper_binary_name
from dify_repackager.tasks import TaskSpec


@pytest.fixture
def package_file(tmp_path):
    path = tmp_path / "My Plugin (v2).difypkg"
    path.write_bytes(b"PK\x03\x04")
    return path


class TestHelperBinaryName:
    """Test helper_binary_name()."""

    @pytest.mark.parametrize(
        "os_name,arch,expected",
        [
            ("Linux", "x86_64", "dify-plugin-linux-amd64-5g"),
            ("Linux", "aarch64", "dify-plugin-linux-arm64-5g"),
            ("Darwin", "arm64", "dify-plugin-darwin-arm64-5g"),
        ],
    )
    def test_supported(self, os_name, arch, expected):
        assert helper_binary_name(os_name, arch) == expected

    def test_unsupported_os(self):
        with pytest.raises(ArchitectureMismatch, match="FreeBSD"):
            helper_binary_name("FreeBSD", "amd64")


class TestFindScript:
    """Test find_script()."""

    def test_first_existing_location_wins(self, tmp_path):
        second = tmp_path / "b" / "plugin_repackaging.sh"
        second.parent.mkdir()
        second.write_text("#!/bin/sh\n")

        found = find_script(
            "plugin_repackaging.sh",
            locations=[tmp_path / "a" / "plugin_repackaging.sh", second],
        )

        assert found == second.resolve()

    def test_missing_script_lists_locations(self, tmp_path):
        with pytest.raises(ScriptNotFound, match="plugin_repackaging.sh") as excinfo:
            find_script("plugin_repackaging.sh", locations=[tmp_path / "plugin_repackaging.sh"])

        assert str(tmp_path) in str(excinfo.value)


class TestArtifactStager:
    """Test the stage, run and retrieve protocol."""

    def test_stage_local_task(self, fake_daemon_factory, repackage_script, package_file):
        daemon = fake_daemon_factory()
        stager = ArtifactStager(daemon, repackage_script, InMemoryLogSink())

        staged = stager.stage("c1", TaskSpec.local(package_file))

        assert [a.container_path for a in staged] == [
            "/tmp/repackage/plugin_repackaging.sh",
            "/tmp/repackage/dify-plugin-linux-amd64-5g",
            "/tmp/repackage/My_Plugin_v2.difypkg",
        ]
        assert staged[-1].original_name == "My Plugin (v2).difypkg"
        assert daemon.commands[0] == ["mkdir", "-p", "/tmp/repackage"]
        assert ["chmod", "+x", "/tmp/repackage/dify-plugin-linux-amd64-5g"] in daemon.commands

    def test_stage_picks_helper_for_container_arch(self, fake_daemon_factory, repackage_script):
        (repackage_script.parent / "dify-plugin-linux-arm64-5g").write_bytes(b"\x7fELF")
        daemon = fake_daemon_factory(uname=("Linux", "aarch64"))
        stager = ArtifactStager(daemon, repackage_script, InMemoryLogSink())

        staged = stager.stage("c1", TaskSpec.market("langgenius", "openai", "0.0.8"))

        assert [a.sanitized_name for a in staged] == [
            "plugin_repackaging.sh",
            "dify-plugin-linux-arm64-5g",
        ]

    def test_missing_helper_is_architecture_mismatch(self, fake_daemon_factory, repackage_script):
        daemon = fake_daemon_factory(uname=("Linux", "aarch64"))
        stager = ArtifactStager(daemon, repackage_script, InMemoryLogSink())

        with pytest.raises(ArchitectureMismatch, match="dify-plugin-linux-arm64-5g") as excinfo:
            stager.stage("c1", TaskSpec.market("langgenius", "openai", "0.0.8"))

        assert excinfo.value.kind is FailureKind.ARCHITECTURE

    def test_copy_failure_is_staging_failure(self, fake_daemon_factory, repackage_script, package_file):
        daemon = fake_daemon_factory(fail_copy_to=True)
        stager = ArtifactStager(daemon, repackage_script, InMemoryLogSink())

        with pytest.raises(StagingFailure, match="plugin_repackaging.sh"):
            stager.stage("c1", TaskSpec.local(package_file))

    def test_container_arguments_use_sanitized_path(self, fake_daemon_factory, repackage_script, package_file):
        stager = ArtifactStager(fake_daemon_factory(), repackage_script, InMemoryLogSink())

        args = stager.container_arguments(TaskSpec.local(package_file))

        assert args == ["local", "/tmp/repackage/My_Plugin_v2.difypkg"]

    def test_run_non_zero_exit(self, fake_daemon_factory, repackage_script):
        daemon = fake_daemon_factory(script_exit=2)
        sink = InMemoryLogSink()
        stager = ArtifactStager(daemon, repackage_script, sink)

        with pytest.raises(TaskExecutionFailed, match="exited with code 2") as excinfo:
            stager.run("c1", ["market", "a", "b", "1.0"])

        assert excinfo.value.kind is FailureKind.EXECUTION
        assert b"pip install failed" in sink.stderr

    def test_retrieve_single_match(self, fake_daemon_factory, repackage_script, tmp_path):
        daemon = fake_daemon_factory()
        daemon.files["/tmp/repackage/acme-tool_v12-offline.difypkg"] = b"old"
        daemon.files["/tmp/repackage/acme-tool_v1-offline.difypkg"] = b"new"
        stager = ArtifactStager(daemon, repackage_script, InMemoryLogSink())
        out_dir = tmp_path / "out"

        artifact = stager.retrieve("c1", TaskSpec.market("acme", "tool", "v1"), out_dir)

        assert artifact.resolved_container_path == "/tmp/repackage/acme-tool_v1-offline.difypkg"
        assert artifact.local_destination == out_dir / "acme-tool_v1-offline.difypkg"
        assert artifact.local_destination.read_bytes() == b"new"

    def test_retrieve_several_matches_uses_first(
        self, fake_daemon_factory, repackage_script, tmp_path, caplog
    ):
        daemon = fake_daemon_factory()
        daemon.files["/tmp/repackage/acme-tool_v1-linux-offline.difypkg"] = b"linux"
        daemon.files["/tmp/repackage/acme-tool_v1-darwin-offline.difypkg"] = b"darwin"
        stager = ArtifactStager(daemon, repackage_script, InMemoryLogSink())

        with caplog.at_level(logging.WARNING, logger="dify_repackager.staging.stager"):
            artifact = stager.retrieve("c1", TaskSpec.market("acme", "tool", "v1"), tmp_path / "out")

        assert artifact.resolved_container_path == "/tmp/repackage/acme-tool_v1-linux-offline.difypkg"
        assert artifact.local_destination.read_bytes() == b"linux"
        assert "multiple matching files" in caplog.text
        assert "acme-tool_v1-linux-offline.difypkg" in caplog.text

    def test_retrieve_without_match(self, fake_daemon_factory, repackage_script, tmp_path):
        stager = ArtifactStager(fake_daemon_factory(), repackage_script, InMemoryLogSink())

        with pytest.raises(RetrievalFailure, match=r"openai\*0.0.8") as excinfo:
            stager.retrieve("c1", TaskSpec.market("langgenius", "openai", "0.0.8"), tmp_path)

        assert excinfo.value.kind is FailureKind.RETRIEVAL

    def test_custom_workdir(self, fake_daemon_factory, repackage_script):
        stager = ArtifactStager(
            fake_daemon_factory(), repackage_script, InMemoryLogSink(), workdir="/work/"
        )

        assert stager.entry_point == "/work/plugin_repackaging.sh"
