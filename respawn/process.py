"""
Process handle for the supervised child.

Owns at most one live child process at a time: starts it with the requested
stream bindings, exposes its output as an ordered event sequence ending in a
single exit event, and tears down the whole process tree on close.
"""

import asyncio
import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Optional, Union

import psutil

from .errors import SpawnError

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class StreamMode(str, Enum):
    INHERIT = "inherit"
    PIPED = "piped"
    NULL = "null"


StdFile = Union[StreamMode, int]


def _popen_stream(mode: StdFile):
    """Translate a stream mode to the value subprocess expects."""
    if isinstance(mode, str):
        return {
            StreamMode.INHERIT: None,
            StreamMode.PIPED: subprocess.PIPE,
            StreamMode.NULL: subprocess.DEVNULL,
        }[StreamMode(mode)]
    return mode


@dataclass
class StdoutEvent:
    data: bytes


@dataclass
class StderrEvent:
    data: bytes


@dataclass
class ExitEvent:
    """Final event of a process: its exit status."""

    returncode: int
    pid: int
    runtime_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.returncode == 0


ProcessEvent = Union[StdoutEvent, StderrEvent, ExitEvent]


@dataclass
class _Running:
    process: asyncio.subprocess.Process
    command: list[str]
    stdin: StdFile
    generation: int
    started_at: float = field(default_factory=time.monotonic)
    reading: bool = False


class ProcessHandle:
    """Exclusive ownership slot for one live child process."""

    def __init__(self):
        self._current: Optional[_Running] = None
        self._generation = 0

    @property
    def alive(self) -> bool:
        return self._current is not None

    @property
    def pid(self) -> Optional[int]:
        return self._current.process.pid if self._current else None

    @property
    def command(self) -> Optional[list[str]]:
        return self._current.command if self._current else None

    async def spawn(
        self,
        command: list[str],
        env: Optional[dict[str, str]] = None,
        stdin: StdFile = StreamMode.INHERIT,
        stdout: StdFile = StreamMode.INHERIT,
        stderr: StdFile = StreamMode.INHERIT,
    ) -> int:
        """Start command. Returns the PID of the new process."""
        if self._current is not None:
            raise RuntimeError(f"Process {self._current.process.pid} must be closed before spawning")

        child_env = None
        if env:
            child_env = os.environ.copy()
            child_env.update(env)

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=_popen_stream(stdin),
                stdout=_popen_stream(stdout),
                stderr=_popen_stream(stderr),
                env=child_env,
            )
        except FileNotFoundError:
            raise SpawnError(command, "executable not found") from None
        except PermissionError:
            raise SpawnError(command, "permission denied") from None
        except OSError as e:
            raise SpawnError(command, str(e)) from e

        self._generation += 1
        self._current = _Running(
            process=process,
            command=list(command),
            stdin=stdin,
            generation=self._generation,
        )
        logger.debug(f"Spawned PID {process.pid}: {' '.join(command)}")
        return process.pid

    def events(self) -> AsyncIterator[ProcessEvent]:
        """Yield piped output as it arrives, then a single ExitEvent.

        The sequence is bound to the process alive when this is called.
        Delivery stops as soon as a newer process is spawned on this handle.
        Only one sequence may be read at a time; a second concurrent call
        raises RuntimeError.
        """
        current = self._current
        if current is not None and current.reading:
            raise RuntimeError(f"Output of process {current.process.pid} is already being read")
        return self._events(current)

    async def _events(self, current: Optional[_Running]) -> AsyncIterator[ProcessEvent]:
        if current is None:
            return
        if current.reading:
            raise RuntimeError(f"Output of process {current.process.pid} is already being read")
        current.reading = True
        process = current.process

        queue: asyncio.Queue = asyncio.Queue()
        readers = []
        if process.stdout is not None:
            readers.append(asyncio.create_task(_read_stream(process.stdout, StdoutEvent, queue)))
        if process.stderr is not None:
            readers.append(asyncio.create_task(_read_stream(process.stderr, StderrEvent, queue)))

        try:
            remaining = len(readers)
            while remaining:
                event = await queue.get()
                if event is None:
                    remaining -= 1
                    continue
                if self._generation != current.generation:
                    return
                yield event

            returncode = await process.wait()
            if self._generation != current.generation:
                return
            yield ExitEvent(
                returncode=returncode,
                pid=process.pid,
                runtime_seconds=time.monotonic() - current.started_at,
            )
        finally:
            for reader in readers:
                reader.cancel()
            current.reading = False

    async def close(self, timeout: float = 5.0):
        """Terminate the live process tree and release it. No-op when empty."""
        current = self._current
        if current is None:
            return
        process = current.process

        # Collect descendants before the parent goes away and they get reparented
        try:
            descendants = psutil.Process(process.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            descendants = []

        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
        for child in descendants:
            try:
                child.terminate()
            except psutil.NoSuchProcess:
                pass

        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Process {process.pid} did not stop gracefully, forcing kill")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

        if descendants:
            _, survivors = await asyncio.to_thread(psutil.wait_procs, descendants, timeout=timeout)
            for child in survivors:
                try:
                    child.kill()
                except psutil.NoSuchProcess:
                    pass

        if current.stdin == StreamMode.PIPED and process.stdin is not None:
            process.stdin.close()

        self._current = None
        logger.debug(f"Closed PID {process.pid} (exit code {process.returncode})")


async def _read_stream(stream: asyncio.StreamReader, event_type, queue: asyncio.Queue):
    try:
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            queue.put_nowait(event_type(chunk))
    finally:
        queue.put_nowait(None)
