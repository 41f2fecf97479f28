"""
Local persisted state for Digital Detox.

A small key-value store backed by one JSON file, playing the role of the
extension's local storage. It exists for restart recovery only: the remote
backend is the durable record for cross-session totals, so write failures
are logged and never raised.

Writes are coalesced onto a background writer thread so a slow disk never
stalls the 1-second tracking tick. Call flush() to force a synchronous write.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class LocalStore:
    """
    JSON-file key-value store with atomic, coalesced writes.

    Args:
        path: JSON file holding the state.
        background: If True (default), writes happen on a daemon writer
            thread. If False, every mutation writes synchronously.
    """

    def __init__(self, path: Path, background: bool = True) -> None:
        self.path = path
        self._background = background
        self._lock = threading.Lock()
        self._dirty = threading.Event()
        self._closed = threading.Event()
        self._writer: Optional[threading.Thread] = None
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        """Load state from disk, starting empty if missing or unreadable."""
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                logger.warning(f"Ignoring malformed state file {self.path}")
                return {}
            logger.debug(f"Loaded local state from {self.path}")
            return data
        except (json.JSONDecodeError, IOError, OSError, PermissionError) as e:
            logger.warning(f"Failed to load local state: {e}. Starting fresh.")
            return {}

    def get(self, key: str, default: Any = None) -> Any:
        """Return a deep copy of the stored value so callers cannot mutate state in place."""
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, **values: Any) -> None:
        """Store one or more keys and schedule a write."""
        with self._lock:
            for key, value in values.items():
                self._data[key] = copy.deepcopy(value)
        self._schedule_write()

    def remove(self, keys: Iterable[str]) -> None:
        """Delete keys (missing keys are ignored) and schedule a write."""
        with self._lock:
            for key in keys:
                self._data.pop(key, None)
        self._schedule_write()

    def flush(self) -> bool:
        """
        Write the current state to disk now.

        Returns:
            True if the write succeeded, False otherwise.
        """
        self._dirty.clear()
        with self._lock:
            snapshot = copy.deepcopy(self._data)
        return self._write(snapshot)

    def close(self) -> None:
        """Flush pending state and stop the writer thread."""
        self._closed.set()
        self._dirty.set()
        if self._writer and self._writer.is_alive():
            self._writer.join(timeout=2.0)
        self.flush()

    def _schedule_write(self) -> None:
        # After close() there is no writer thread, so write synchronously
        if not self._background or self._closed.is_set():
            self.flush()
            return
        with self._lock:
            if self._writer is None or not self._writer.is_alive():
                self._writer = threading.Thread(
                    target=self._writer_loop, name="state-writer", daemon=True
                )
                self._writer.start()
        self._dirty.set()

    def _writer_loop(self) -> None:
        while not self._closed.is_set():
            self._dirty.wait()
            if self._closed.is_set():
                break
            self.flush()

    def _write(self, data: Dict[str, Any]) -> bool:
        """
        Save state to the JSON file atomically.

        Uses atomic write (write to temp file, then rename) to prevent
        data corruption if the process dies during save.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)

            temp_fd, temp_path = tempfile.mkstemp(
                suffix='.tmp',
                prefix='detox_state_',
                dir=self.path.parent
            )

            try:
                with os.fdopen(temp_fd, 'w') as f:
                    json.dump(data, f, indent=2)

                try:
                    os.replace(temp_path, self.path)
                except OSError:
                    # Fallback for systems where replace doesn't work
                    if self.path.exists():
                        self.path.unlink()
                    os.rename(temp_path, self.path)

                logger.debug("Saved local state")
                return True
            except Exception:
                # Clean up temp file on error
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise

        except (IOError, OSError, PermissionError, TypeError, ValueError) as e:
            logger.error(f"Failed to save local state: {e}")
            return False
