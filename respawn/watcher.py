"""
Directory watching.

Wraps watchfiles so the supervisor sees a plain async sequence of debounced,
non-empty change batches, and subscription failures surface as WatchError.
"""

import asyncio
import fnmatch
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional, Union

from watchfiles import Change, DefaultFilter, awatch

from .errors import WatchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeBatch:
    """One debounced group of filesystem changes, ordered by path."""

    changes: tuple[tuple[Change, str], ...]

    @classmethod
    def from_changes(cls, changes: Iterable[tuple[Change, str]]) -> "ChangeBatch":
        return cls(tuple(sorted(changes, key=lambda c: (c[1], c[0].value))))

    @property
    def paths(self) -> list[str]:
        return [path for _, path in self.changes]

    def __len__(self) -> int:
        return len(self.changes)


class ExtensionFilter(DefaultFilter):
    """Default watchfiles filter, optionally limited to some file extensions."""

    def __init__(self, extensions: Iterable[str] = (), ignore: Iterable[str] = ()):
        self.extensions = tuple("." + ext.lstrip(".") for ext in extensions)
        self.ignore = tuple(ignore)
        super().__init__()

    def __call__(self, change: Change, path: str) -> bool:
        if self.extensions and not path.endswith(self.extensions):
            return False
        name = os.path.basename(path)
        for pattern in self.ignore:
            if fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(path, pattern):
                return False
        return super().__call__(change, path)


async def watch(
    root: Union[str, Path],
    debounce_ms: int = 500,
    extensions: Iterable[str] = (),
    ignore: Iterable[str] = (),
    stop_event: Optional[asyncio.Event] = None,
) -> AsyncIterator[ChangeBatch]:
    """Yield a ChangeBatch whenever files under root change.

    Raises WatchError if root cannot be watched.
    """
    root = Path(root)
    if not root.exists():
        raise WatchError(f"Cannot watch {root}: path does not exist")

    watch_filter = ExtensionFilter(extensions, ignore)
    logger.debug(f"Subscribing to changes under {root} (debounce {debounce_ms}ms)")
    try:
        async for changes in awatch(
            root,
            watch_filter=watch_filter,
            debounce=debounce_ms,
            stop_event=stop_event,
            recursive=True,
        ):
            if changes:
                yield ChangeBatch.from_changes(changes)
    except (OSError, RuntimeError) as e:
        raise WatchError(f"Lost watch on {root}: {e}") from e
