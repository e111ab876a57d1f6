"""Shared fixtures: an in-memory container daemon and host probe doubles."""

from __future__ import annotations

import fnmatch
import subprocess
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Sequence

import pytest

from dify_repackager.capabilities.probes import ProbeSet
from dify_repackager.container.interface import ContainerError, ContainerSummary, ImageSummary


class FakeDaemon:
    """ContainerDaemon double keeping container files in a dict.

    Running the staged ``.sh`` entry point "produces" every path listed
    in ``outputs`` and writes one line of output to the sink.
    """

    def __init__(
        self,
        running: Sequence[ContainerSummary] = (),
        stopped: Sequence[ContainerSummary] = (),
        images: Sequence[ImageSummary] = (),
        uname: Sequence[str] = ("Linux", "x86_64"),
        outputs: Sequence[str] = (),
        script_exit: int = 0,
        fail_copy_to: bool = False,
    ) -> None:
        self.running = list(running)
        self.stopped = list(stopped)
        self.image_list = list(images)
        self.uname = tuple(uname)
        self.outputs = list(outputs)
        self.script_exit = script_exit
        self.fail_copy_to = fail_copy_to
        self.files: Dict[str, bytes] = {}
        self.commands: List[List[str]] = []
        self.copies: List[tuple] = []

    def info(self) -> bool:
        return True

    def ps(self, all: bool = False) -> List[ContainerSummary]:
        return list(self.running) + (list(self.stopped) if all else [])

    def images(self) -> List[ImageSummary]:
        return list(self.image_list)

    def copy_to(self, container_id: str, src_path: Path, dest_path: str) -> None:
        if self.fail_copy_to:
            raise ContainerError(f"failed to copy file to container: {src_path} -> {dest_path}")
        self.copies.append((container_id, Path(src_path).name, dest_path))
        self.files[dest_path] = Path(src_path).read_bytes()

    def copy_from(self, container_id: str, src_path: str, dest_dir: Path) -> Path:
        if src_path not in self.files:
            raise ContainerError(f"no such file in container: {src_path}")
        Path(dest_dir).mkdir(parents=True, exist_ok=True)
        target = Path(dest_dir) / PurePosixPath(src_path).name
        target.write_bytes(self.files[src_path])
        return target

    def exec(self, container_id: str, command: Sequence[str], sink) -> int:
        self.commands.append(list(command))
        if command[0].endswith(".sh"):
            sink.write_stdout(b"Repackaging plugin...\n")
            if self.script_exit == 0:
                for path in self.outputs:
                    self.files[path] = b"repackaged"
            else:
                sink.write_stderr(b"pip install failed\n")
            return self.script_exit
        return 0

    def exec_output(self, container_id: str, command: Sequence[str]) -> str:
        self.commands.append(list(command))
        if list(command) == ["uname"]:
            return self.uname[0] + "\n"
        if list(command) == ["uname", "-m"]:
            return self.uname[1] + "\n"
        if command[0] == "find":
            root, pattern = command[1], command[3]
            found = [
                p
                for p in self.files
                if p.startswith(root) and fnmatch.fnmatchcase(PurePosixPath(p).name, pattern)
            ]
            return "".join(f"{p}\n" for p in found)
        return ""


def make_runner(results: Dict[str, int]):
    """Build a ``subprocess.run`` double keyed by the command name.

    Commands missing from ``results`` raise FileNotFoundError like an
    absent binary would.
    """

    def run(argv, **kwargs):
        name = Path(argv[0]).name
        if name not in results:
            raise FileNotFoundError(argv[0])
        returncode = results[name]
        stdout = ""
        if name.startswith("python"):
            stdout = "Python 3.12.4\n"
        return subprocess.CompletedProcess(argv, returncode, stdout=stdout, stderr="")

    return run


@pytest.fixture
def fake_daemon_factory():
    return FakeDaemon


@pytest.fixture
def probe_factory():
    """Build a ProbeSet over fake commands.

    ``docker`` is the engine path to report (None when not installed);
    ``commands`` maps command names to exit codes.
    """

    def build(docker: Optional[str] = None, commands: Optional[Dict[str, int]] = None, **kwargs) -> ProbeSet:
        return ProbeSet(
            runner=make_runner(commands or {}),
            platform="linux",
            which=lambda name: docker,
            exists=lambda path: False,
            network_attempts=kwargs.pop("network_attempts", 1),
            **kwargs,
        )

    return build


@pytest.fixture
def repackage_script(tmp_path):
    """A stub repackaging script plus the Linux amd64 helper beside it."""
    script_dir = tmp_path / "scripts"
    script_dir.mkdir()
    script = script_dir / "plugin_repackaging.sh"
    script.write_text("#!/bin/sh\necho repackaging \"$@\"\n")
    script.chmod(0o755)
    helper = script_dir / "dify-plugin-linux-amd64-5g"
    helper.write_bytes(b"\x7fELF")
    return script
