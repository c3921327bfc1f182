"""Append-only file tailing for the Claude Code history file.

Each attached file gets its own TailHandle holding the last observed offset
and a LineBuffer, so several files (or tests) can be tailed side by side.
File-change notifications come from a watchdog observer on the parent
directory; every notification for the path triggers TailHandle.poll().
Handles in the same directory share one watch, and detaching a handle only
removes its own event handler.
"""

import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch
from watchdog.observers.polling import PollingObserver

from history_monitor.services.line_buffer import LineBuffer

logger = logging.getLogger(__name__)

LinesCallback = Callable[["TailHandle", list[str]], None]


class TailHandle:
    """Tail state for one watched file.

    On creation the current file size becomes the offset: existing content
    is never replayed. Use FileTailer.attach() rather than building these
    directly when file events are wanted.
    """

    def __init__(self, path: str | Path, on_lines: LinesCallback, encoding: str = "utf-8"):
        self.path = Path(path)
        self._resolved = self.path.resolve()
        self._on_lines = on_lines
        self._buffer = LineBuffer(encoding)
        self._lock = threading.Lock()
        self._attached = True
        self._offset = self._current_size() or 0
        self.truncation_count = 0
        self._detach_hook: Callable[["TailHandle"], None] | None = None

    @property
    def offset(self) -> int:
        """Byte offset up to which content has been consumed."""
        with self._lock:
            return self._offset

    @property
    def is_attached(self) -> bool:
        return self._attached

    def matches(self, path: str | bytes) -> bool:
        """Check whether an event path refers to this handle's file."""
        return Path(os.fsdecode(path)).resolve() == self._resolved

    def _current_size(self) -> int | None:
        try:
            return self.path.stat().st_size
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Cannot stat {self.path}: {e}")
            return None

    def poll(self) -> list[str]:
        """Consume bytes appended since the last poll.

        A shrunken file is treated as truncated or rotated: the offset is
        re-baselined to 0 and any carried fragment is discarded. A missing
        or unreadable file is a transient condition and delivers nothing.

        Returns:
            Complete lines delivered to the callback, in file order.
        """
        with self._lock:
            if not self._attached:
                return []

            size = self._current_size()
            if size is None:
                return []

            if size < self._offset:
                logger.info(
                    f"{self.path.name} shrank from {self._offset} to {size} bytes, "
                    "re-baselining"
                )
                self._offset = 0
                self._buffer.reset()
                self.truncation_count += 1

            if size <= self._offset:
                return []

            try:
                with open(self.path, "rb") as f:
                    f.seek(self._offset)
                    data = f.read(size - self._offset)
            except OSError as e:
                logger.warning(f"Error reading {self.path}: {e}")
                return []

            lines = self._buffer.feed(data)
            if lines:
                try:
                    self._on_lines(self, lines)
                except Exception:
                    logger.exception(f"Error delivering lines from {self.path}")
            self._offset += len(data)
            return lines

    def detach(self) -> None:
        """Stop delivery. No callback fires after this returns."""
        with self._lock:
            if not self._attached:
                return
            self._attached = False
        if self._detach_hook:
            self._detach_hook(self)
            self._detach_hook = None


class _TailEventHandler(FileSystemEventHandler):
    """Routes watchdog events for one directory to the matching handle."""

    def __init__(self, handle: TailHandle):
        super().__init__()
        self.handle = handle

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        paths = [event.src_path]
        dest = getattr(event, "dest_path", None)
        if dest:
            paths.append(dest)
        if any(self.handle.matches(p) for p in paths):
            self.handle.poll()


class FileTailer:
    """Attaches TailHandles to files and drives them from file events.

    Features:
    - No replay of history on attach
    - Re-baseline on truncation
    - Native file events, or watchdog's polling observer when configured
    """

    def __init__(self, use_polling: bool = False, poll_interval: float = 1.0):
        """Initialize the tailer.

        Args:
            use_polling: Use PollingObserver instead of the native observer.
            poll_interval: Seconds between polls for the polling observer.
        """
        self.use_polling = use_polling
        self.poll_interval = poll_interval
        self._observer = None
        # handle id -> (event handler, watch) it was scheduled under
        self._watches: dict[int, tuple[_TailEventHandler, ObservedWatch]] = {}
        # watch -> number of handles sharing it
        self._watch_refs: dict[ObservedWatch, int] = {}
        self._lock = threading.Lock()

    def _ensure_observer(self):
        if self._observer is None:
            if self.use_polling:
                self._observer = PollingObserver(timeout=self.poll_interval)
            else:
                self._observer = Observer()
            self._observer.daemon = True
            self._observer.start()
        return self._observer

    def attach(self, path: str | Path, on_lines: LinesCallback, watch: bool = True) -> TailHandle:
        """Start tailing a file from its current end.

        Args:
            path: File to tail.
            on_lines: Called with (handle, lines) for each batch of new lines.
            watch: Register for file events. Without it the caller drives
                handle.poll() itself.

        Returns:
            A TailHandle owning the offset for this file.
        """
        handle = TailHandle(path, on_lines)
        logger.info(f"Tailing {handle.path} from offset {handle.offset}")

        if not watch:
            return handle

        directory = handle.path.parent
        if not directory.is_dir():
            logger.warning(f"Cannot watch {handle.path}: {directory} does not exist")
            return handle

        with self._lock:
            observer = self._ensure_observer()
            event_handler = _TailEventHandler(handle)
            # schedule() returns the existing watch when the directory is
            # already observed and adds the handler to it
            watch = observer.schedule(event_handler, str(directory), recursive=False)
            self._watches[id(handle)] = (event_handler, watch)
            self._watch_refs[watch] = self._watch_refs.get(watch, 0) + 1
        handle._detach_hook = self._unschedule
        return handle

    def _unschedule(self, handle: TailHandle) -> None:
        """Remove one handle's event handler; drop the watch with its last handler."""
        with self._lock:
            scheduled = self._watches.pop(id(handle), None)
            if scheduled is not None and self._observer is not None:
                event_handler, watch = scheduled
                remaining = self._watch_refs.get(watch, 1) - 1
                try:
                    if remaining > 0:
                        self._watch_refs[watch] = remaining
                        self._observer.remove_handler_for_watch(event_handler, watch)
                    else:
                        self._watch_refs.pop(watch, None)
                        self._observer.unschedule(watch)
                except (KeyError, ValueError):
                    logger.debug(f"Watch for {handle.path} already removed")
        logger.info(f"Stopped tailing {handle.path}")

    def stop(self) -> None:
        """Stop the observer thread and drop all watches."""
        with self._lock:
            observer = self._observer
            self._observer = None
            self._watches.clear()
            self._watch_refs.clear()
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)
