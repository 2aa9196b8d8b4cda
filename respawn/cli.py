"""
Command-line front end for respawn.

Resolves the target file, merges the JSON config file with command-line
flags into a CommandSpec, configures logging and runs the supervisor loop
against a directory watcher on the target's parent directory.
"""

import argparse
import asyncio
import logging
import signal
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from . import __version__
from .command import CommandSpec, build, load_spec
from .config import config
from .errors import ConfigurationError, WatchError
from .process import StreamMode
from .supervisor import SupervisorLoop
from .watcher import watch

logger = logging.getLogger(__name__)


def configure_logging(level: str = None, log_file: Path = None):
    """Send log records to the console and, optionally, a rotating file."""
    log_formatter = logging.Formatter("[respawn] %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    handlers = [console_handler]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, (level or config.log_level).upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )


def _stream_mode(value: str):
    """argparse type for --stdin/--stdout/--stderr: a mode name or a descriptor."""
    if value.isdigit():
        return int(value)
    try:
        return StreamMode(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"invalid stream mode {value!r} (choose inherit, piped, null or a descriptor number)"
        ) from None


def _exe_mapping(value: str) -> tuple[str, str]:
    """argparse type for --exe EXT=COMMAND."""
    ext, sep, command = value.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected EXT=COMMAND, got {value!r}")
    return ext.lstrip("."), command


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="respawn",
        description="Run a file and restart it whenever files next to it change.",
    )
    parser.add_argument("file", nargs="?", help="file to run and watch")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="arguments passed to the file")
    parser.add_argument(
        "--exe",
        action="append",
        type=_exe_mapping,
        default=[],
        metavar="EXT=COMMAND",
        help="command template for files with extension EXT (repeatable)",
    )
    parser.add_argument(
        "--exe-arg",
        action="append",
        dest="exe_args",
        default=[],
        metavar="ARG",
        help="argument substituted for ${exe-args} (repeatable)",
    )
    parser.add_argument("--config", type=Path, help=f"JSON command config (default: {config.config_file})")
    parser.add_argument("--runtime", default=config.runtime, help="runtime used when no --exe matches")
    parser.add_argument("--debounce", type=int, default=config.debounce_ms, metavar="MS")
    parser.add_argument("--stop-timeout", type=float, default=config.stop_timeout, metavar="SECONDS")
    parser.add_argument(
        "--ext",
        action="append",
        dest="extensions",
        default=[],
        help="only restart on changes to files with this extension (repeatable)",
    )
    parser.add_argument("--ignore", action="append", default=[], metavar="PATTERN")
    parser.add_argument("--stdin", type=_stream_mode)
    parser.add_argument("--stdout", type=_stream_mode)
    parser.add_argument("--stderr", type=_stream_mode)
    parser.add_argument("--log-file", type=Path, default=config.log_file)
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def resolve_spec(args: argparse.Namespace) -> CommandSpec:
    """Merge the config file (if any) with command-line flags."""
    config_file = args.config
    if config_file is None and config.config_file.is_file():
        config_file = config.config_file

    base = load_spec(config_file) if config_file else CommandSpec()
    values = base.model_dump()

    values["exe"].update(dict(args.exe))
    if args.exe_args:
        values["exe_args"] = args.exe_args
    if args.args:
        values["file_args"] = args.args
    for stream in ("stdin", "stdout", "stderr"):
        if getattr(args, stream) is not None:
            values[stream] = getattr(args, stream)

    return CommandSpec(**values)


async def _run(loop: SupervisorLoop, root: Path, args: argparse.Namespace):
    stop_watching = asyncio.Event()

    def request_stop():
        stop_watching.set()
        loop.stop()

    event_loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            event_loop.add_signal_handler(sig, request_stop)
        except (NotImplementedError, RuntimeError):
            pass

    changes = watch(
        root,
        debounce_ms=args.debounce,
        extensions=args.extensions,
        ignore=args.ignore,
        stop_event=stop_watching,
    )
    await loop.start(changes)


def main(argv: Optional[list[str]] = None) -> int:
    """Run respawn. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging("DEBUG" if args.verbose else None, args.log_file)

    if not args.file or not Path(args.file).is_file():
        logger.error("Could not start respawn because no file was provided")
        return 1

    target = Path(args.file).resolve()
    root = target.parent

    try:
        spec = resolve_spec(args)
        # Surface configuration problems before anything is spawned
        build(str(target), spec, args.runtime)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    loop = SupervisorLoop(
        str(target),
        spec,
        runtime=args.runtime,
        stop_timeout=args.stop_timeout,
    )

    logger.info(f"Watching {root}, running {target.name}...")
    try:
        asyncio.run(_run(loop, root, args))
    except WatchError as e:
        logger.error(f"Stopped watching: {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0
