"""
Supervisor loop.

Runs the target once immediately, then restarts it for every change batch
delivered by the change source: close the old process, wait for its exit to
be observed, rebuild the command and spawn again. Batches are handled one at
a time in arrival order; batches that arrive during a restart are queued.
"""

import asyncio
import logging
import sys
from enum import Enum
from typing import AsyncIterable, Callable, Optional

from .command import CommandBuilder, CommandSpec
from .config import config
from .errors import ConfigurationError, SpawnError
from .process import ExitEvent, ProcessEvent, ProcessHandle, StderrEvent, StdoutEvent
from .watcher import ChangeBatch

logger = logging.getLogger(__name__)

_EXHAUSTED = object()


class LoopState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    RESTARTING = "restarting"
    STOPPED = "stopped"


class SupervisorLoop:
    """Watch -> restart cycle for a single target."""

    def __init__(
        self,
        target: str,
        spec: CommandSpec,
        runtime: str = None,
        stop_timeout: float = None,
        handle: ProcessHandle = None,
        on_event: Callable[[ProcessEvent], None] = None,
    ):
        self.target = target
        self.spec = spec
        self.builder = CommandBuilder(spec, runtime)
        self.stop_timeout = config.stop_timeout if stop_timeout is None else stop_timeout
        self.handle = handle or ProcessHandle()
        self.state = LoopState.IDLE
        self.restarts = 0
        self._on_event = on_event
        self._forwarder: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def stop(self):
        """Request the loop to stop after the current step."""
        self._stop_event.set()

    async def start(self, changes: AsyncIterable[ChangeBatch]):
        """Spawn the target and restart it on every change batch.

        Returns when the change source is exhausted or stop() is called.
        Errors from the change source are re-raised once the live process
        has been closed.
        """
        if self.state != LoopState.IDLE:
            raise RuntimeError(f"Supervisor loop already {self.state.value}")

        queue: asyncio.Queue = asyncio.Queue()
        pump = asyncio.create_task(self._pump(changes, queue))
        stop_wait = asyncio.create_task(self._stop_event.wait())
        get = None

        try:
            await self._spawn()
            self.state = LoopState.RUNNING

            while True:
                get = asyncio.create_task(queue.get())
                await asyncio.wait({get, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
                if self._stop_event.is_set():
                    logger.info("Stop requested")
                    break

                item = get.result()
                if item is _EXHAUSTED:
                    logger.info("Change source finished")
                    break
                if isinstance(item, BaseException):
                    raise item

                logger.info(f"Detected {len(item)} change(s). Restarting...")
                logger.debug(f"Changed paths: {', '.join(item.paths)}")
                await self._restart()
        finally:
            if get is not None:
                get.cancel()
            stop_wait.cancel()
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
            await self._close()
            self.state = LoopState.STOPPED

    async def _pump(self, changes: AsyncIterable[ChangeBatch], queue: asyncio.Queue):
        """Move batches from the change source into the queue, in order."""
        iterator = changes.__aiter__()
        try:
            async for batch in iterator:
                if len(batch):
                    queue.put_nowait(batch)
        except Exception as e:
            queue.put_nowait(e)
        else:
            queue.put_nowait(_EXHAUSTED)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _restart(self):
        self.state = LoopState.RESTARTING
        await self._close()
        await self._spawn()
        self.restarts += 1
        self.state = LoopState.RUNNING

    async def _spawn(self):
        """Build and start the command. Failures are logged, not raised."""
        try:
            command = self.builder.build(self.target)
        except ConfigurationError as e:
            logger.warning(f"Not starting {self.target}: {e}")
            return

        logger.info(f"Starting `{' '.join(command)}`")
        try:
            await self.handle.spawn(
                command,
                env=self.spec.env,
                stdin=self.spec.stdin,
                stdout=self.spec.stdout,
                stderr=self.spec.stderr,
            )
        except SpawnError as e:
            logger.warning(f"{e}. Waiting for changes...")
            return

        self._forwarder = asyncio.create_task(self._forward(self.handle.events()))

    async def _close(self):
        """Close the live process and wait for its exit event to be delivered."""
        await self.handle.close(timeout=self.stop_timeout)

        forwarder, self._forwarder = self._forwarder, None
        if forwarder is None:
            return
        try:
            await asyncio.wait_for(forwarder, timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("Output of the previous process did not drain, discarding it")
        except Exception as e:
            logger.warning(f"Output forwarding for the previous process failed: {e}")

    async def _forward(self, events):
        async for event in events:
            try:
                if isinstance(event, StdoutEvent):
                    _write(sys.stdout, event.data)
                elif isinstance(event, StderrEvent):
                    _write(sys.stderr, event.data)
            except OSError as e:
                logger.warning(f"Could not forward process output: {e}")

            if isinstance(event, ExitEvent):
                if event.success:
                    logger.info(f"Process {event.pid} exited cleanly after {event.runtime_seconds:.1f}s")
                else:
                    logger.info(f"Process {event.pid} exited with code {event.returncode}")

            if self._on_event:
                try:
                    self._on_event(event)
                except Exception as e:
                    logger.warning(f"Event callback failed for {type(event).__name__}: {e}")


def _write(stream, data: bytes):
    buffer = getattr(stream, "buffer", None)
    if buffer is not None:
        buffer.write(data)
    else:
        stream.write(data.decode("utf-8", errors="replace"))
    stream.flush()
