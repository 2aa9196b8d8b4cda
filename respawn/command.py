"""
Command resolution for the supervised target.

Maps the target's file extension to an executable invocation and expands
the ${exe-args}, ${file} and ${file-args} placeholders into a concrete
argument vector ready to spawn.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import config
from .errors import ConfigurationError
from .process import StreamMode

logger = logging.getLogger(__name__)

EXE_ARGS = "${exe-args}"
FILE = "${file}"
FILE_ARGS = "${file-args}"

DEFAULT_RUNTIME = "deno"


def default_template(runtime: str = DEFAULT_RUNTIME) -> list[str]:
    """Command template used when no extension mapping matches."""
    return [runtime, "run", EXE_ARGS, FILE, FILE_ARGS]


class CommandSpec(BaseModel):
    """Read-only command configuration, supplied once at startup."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")

    exe: dict[str, Union[str, list[str]]] = Field(default_factory=dict)
    exe_args: list[str] = Field(default_factory=list, alias="exeArgs")
    file: Optional[str] = None
    file_args: list[str] = Field(default_factory=list, alias="fileArgs")

    # Environment overlay and stream modes for the child process
    env: dict[str, str] = Field(default_factory=dict)
    stdin: Union[StreamMode, int] = StreamMode.INHERIT
    stdout: Union[StreamMode, int] = StreamMode.INHERIT
    stderr: Union[StreamMode, int] = StreamMode.INHERIT


def load_spec(path: Union[str, Path]) -> CommandSpec:
    """Load a CommandSpec from a JSON configuration file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e

    try:
        spec = CommandSpec.model_validate_json(text)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config file {path}: {e}") from e

    logger.debug(f"Loaded command configuration from {path}")
    return spec


def extension(target: str) -> str:
    """Return the target's extension without the leading dot ("" if none).

    Follows os.path.splitext, so a dotfile such as ".bashrc" has no extension.
    """
    return os.path.splitext(os.path.basename(target))[1][1:]


def build(target: str, spec: CommandSpec, runtime: str = DEFAULT_RUNTIME) -> list[str]:
    """Resolve the command to run for target.

    Raises ConfigurationError if the resolved command is empty.
    """
    exe = spec.exe.get(extension(target))

    if isinstance(exe, str):
        # split() with no separator collapses whitespace runs
        tokens = exe.split()
    elif exe is None:
        tokens = default_template(runtime)
    else:
        tokens = list(exe)

    values = {
        EXE_ARGS: list(spec.exe_args),
        FILE_ARGS: list(spec.file_args),
        FILE: [spec.file if spec.file is not None else target],
    }

    command = []
    for token in tokens:
        if token in values:
            command.extend(values[token])
        else:
            command.append(token)

    if not command:
        raise ConfigurationError(
            f"No command configured for {target!r} (extension {extension(target)!r})"
        )
    return command


class CommandBuilder:
    """Builds the command for a target from a fixed CommandSpec."""

    def __init__(self, spec: CommandSpec, runtime: str = None):
        self.spec = spec
        self.runtime = runtime or config.runtime

    def build(self, target: str) -> list[str]:
        return build(target, self.spec, self.runtime)
