"""
Command line front end.

Usage:
    dify-repackager local ./my-plugin.difypkg        # Repackage a local file
    dify-repackager market langgenius openai 0.0.8   # Download from the marketplace
    dify-repackager github owner/repo v1.0 x.difypkg # Download a GitHub release asset
    dify-repackager capabilities --json              # Show detected host capabilities
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .capabilities import detect_capabilities
from .config import load_config
from .errors import InvalidTask
from .execution import AlwaysConfirm, ConsoleConfirmation, ExecutionPreference
from .runner import TaskRunner
from .sinks import FileLogSink
from .tasks import TaskSpec

logger = logging.getLogger(__name__)

EXECUTION_CHOICES = ("auto", "local", "docker", "new-docker")


def _print_line(stream: str, line: str) -> None:
    print(line, file=sys.stderr if stream == "stderr" else sys.stdout, flush=True)


def _output_logger() -> logging.Logger:
    output_logger = logging.getLogger(f"{__name__}.output")
    # Task output already reaches the terminal through _print_line.
    output_logger.propagate = False
    if not output_logger.handlers:
        output_logger.addHandler(logging.NullHandler())
    return output_logger


def _build_config(args: argparse.Namespace):
    config = load_config(config_file=args.config)
    overrides = {}
    if args.output_dir:
        overrides["output_dir"] = Path(args.output_dir).expanduser().resolve()
    if args.yes:
        overrides["assume_yes"] = True
    if getattr(args, "interactive", False):
        overrides["inherit_streams"] = True
    return config.with_overrides(**overrides) if overrides else config


def cmd_capabilities(args: argparse.Namespace) -> int:
    """Print the capability report."""
    report = detect_capabilities(_build_config(args))

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    def mark(flag: bool) -> str:
        return "[OK]" if flag else "[--]"

    print(f"{mark(report.docker_available)} docker installed")
    print(f"{mark(report.docker_running)} docker running")
    print(f"{mark(report.plugin_container_running)} plugin container running"
          + (f" ({', '.join(report.matching_containers)})" if report.matching_containers else ""))
    print(f"{mark(report.runtime_available)} python {report.runtime_version}".rstrip())
    print(f"{mark(report.package_manager_available)} pip")
    print(f"{mark(report.archive_tool_available)} unzip")
    print(f"{mark(report.network_available)} network")
    summary = report.to_dict()
    print("Recommended: %s" % (", ".join(summary["recommendedModes"]) or "-"))
    if summary["disabledModes"]:
        print("Disabled: %s" % ", ".join(summary["disabledModes"]))
    for message in report.messages:
        print(f"  NOTE: {message}")
    return 0


def cmd_task(args: argparse.Namespace) -> int:
    """Run one repackaging task."""
    try:
        task = TaskSpec.from_mode(args.command, *args.params)
        preference = ExecutionPreference.parse(args.execution)
    except (InvalidTask, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    config = _build_config(args)
    confirmation = AlwaysConfirm() if config.assume_yes else ConsoleConfirmation()
    if args.log_file:
        with FileLogSink(_output_logger(), Path(args.log_file)) as file_sink:
            runner = TaskRunner(
                config, confirmation=confirmation, on_line=_print_line, extra_sink=file_sink
            )
            result = runner.execute(task, preference)
    else:
        runner = TaskRunner(config, confirmation=confirmation, on_line=_print_line)
        result = runner.execute(task, preference)
    if not result.success:
        print(f"Error ({result.failure.value}): {result.error}", file=sys.stderr)
        return 1

    for artifact in result.artifacts:
        print(f"Repackaged: {artifact}")
    return 0


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", "-c", help="INI configuration file ([repackager] section)")
    parser.add_argument("--output-dir", "-o", help="Directory receiving the repackaged file")
    parser.add_argument("--yes", "-y", action="store_true", help="Confirm local fallback without asking")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="dify-repackager",
        description="Repackage Dify plugins with their dependencies for offline installation",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    task_help = {
        "local": ("Repackage a local .difypkg file", ["package"]),
        "market": ("Download and repackage a marketplace plugin", ["author", "name", "version"]),
        "github": ("Download and repackage a GitHub release asset", ["repository", "release", "asset"]),
    }
    for mode, (help_text, metavars) in task_help.items():
        task_parser = subparsers.add_parser(mode, help=help_text)
        task_parser.add_argument("params", nargs=len(metavars), metavar=tuple(metavars))
        task_parser.add_argument(
            "--execution",
            "-e",
            choices=EXECUTION_CHOICES,
            default="auto",
            help="Where to run the task (default: auto)",
        )
        task_parser.add_argument(
            "--interactive",
            "-i",
            action="store_true",
            help="Attach the terminal to local runs instead of capturing output",
        )
        task_parser.add_argument("--log-file", help="Also append the task output to this file")
        _add_common_arguments(task_parser)
        task_parser.set_defaults(handler=cmd_task)

    capabilities_parser = subparsers.add_parser("capabilities", help="Show detected host capabilities")
    capabilities_parser.add_argument("--json", "-j", action="store_true", help="Output the report as JSON")
    _add_common_arguments(capabilities_parser)
    capabilities_parser.set_defaults(handler=cmd_capabilities)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
