"""Command-line entry point: run a command in a sandbox built from a directory."""

import argparse
import logging
import shlex
import sys
from pathlib import Path

from docker.errors import DockerException

from shellbox.config import ShellboxConfig
from shellbox.exceptions import ExecutionTimeoutError, ShellboxError
from shellbox.models import DirectoryFileSet
from shellbox.sandbox.context import DOCKERFILE_NAME
from shellbox.sandbox.executor import Executor
from shellbox.security.containers import SECCOMP_UNCONFINED

# Same status coreutils timeout(1) uses
TIMEOUT_EXIT_STATUS = 124
ERROR_EXIT_STATUS = 1


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="shellbox",
        description="Run a shell command in a disposable sandbox container",
    )
    subparsers = parser.add_subparsers(dest="command_name", required=True)

    run_parser = subparsers.add_parser(
        "run",
        help="Build an image from a directory and run a command",
        epilog="The command to run follows a '--' separator.",
    )
    run_parser.add_argument("context", type=Path, help="Directory copied into the build context")
    run_parser.add_argument(
        "--dockerfile",
        type=Path,
        help="Dockerfile to build with (default: CONTEXT/Dockerfile)",
    )
    run_parser.add_argument("--timeout", type=float, help="Seconds before the command is killed")
    run_parser.add_argument("--network", choices=["bridge", "none"], help="Container network mode")
    run_parser.add_argument(
        "--seccomp",
        help=f"Seccomp profile JSON file, or '{SECCOMP_UNCONFINED}'",
    )
    run_parser.add_argument("--runtime", help="Container runtime (default: runsc)")
    run_parser.add_argument("--config", type=Path, help="YAML or JSON config file")
    run_parser.add_argument("--verbose", action="store_true", help="Log engine activity to stderr")

    if argv is None:
        argv = sys.argv[1:]
    # Split by hand so options in the command are never parsed as ours
    cmd: list[str] = []
    if "--" in argv:
        split = argv.index("--")
        argv, cmd = argv[:split], argv[split + 1 :]
    args = parser.parse_args(argv)
    if not cmd:
        run_parser.error("a command to run is required after '--'")
    args.cmd = cmd
    return args


def _read_seccomp(value: str | None) -> str | None:
    if value is None or value == SECCOMP_UNCONFINED:
        return value
    return Path(value).read_text()


def run(args: argparse.Namespace) -> int:
    """Execute the run subcommand and return the process exit status."""
    dockerfile_path = args.dockerfile or args.context / DOCKERFILE_NAME
    try:
        config = ShellboxConfig.load(
            config_path=args.config,
            runtime=args.runtime,
            network=args.network,
            timeout=args.timeout,
            seccomp=_read_seccomp(args.seccomp),
        )
        dockerfile = dockerfile_path.read_text()
        # The build context always gets its own Dockerfile entry
        files = DirectoryFileSet(args.context, exclude=(DOCKERFILE_NAME,))
    except (OSError, ValueError) as e:
        print(f"shellbox: {e}", file=sys.stderr)
        return ERROR_EXIT_STATUS

    executor = Executor(
        dockerfile=dockerfile,
        files=files,
        cmd=shlex.join(args.cmd) if len(args.cmd) > 1 else args.cmd[0],
        timeout=config.timeout,
        network=config.network_mode,
        seccomp=config.seccomp,
        stdout=sys.stdout.buffer,
        stderr=sys.stderr.buffer,
        runtime=config.runtime,
        remove_container=config.remove_container,
        engine_timeout=config.engine_timeout,
    )
    try:
        result = executor.execute()
    except ExecutionTimeoutError as e:
        executor.wait_output()
        print(f"shellbox: {e}", file=sys.stderr)
        return TIMEOUT_EXIT_STATUS
    except (ShellboxError, DockerException) as e:
        print(f"shellbox: {e}", file=sys.stderr)
        return ERROR_EXIT_STATUS
    executor.wait_output()
    return result.exit_code


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return run(args)


def entry_point() -> None:
    """Console script wrapper."""
    sys.exit(main())
