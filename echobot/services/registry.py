"""
Process-wide registry of running echo job handles, keyed by job identifier.
"""
import logging
import threading
from typing import Dict, List, Optional, Protocol


logger = logging.getLogger(__name__)


class TaskHandle(Protocol):
    def stop(self) -> None: ...


class JobRegistry:
    """
    Identifier -> running task handle.

    The registry owns every handle it holds: replacing or removing an entry
    stops the handle. All access is serialized so guilds loading in parallel
    cannot corrupt the mapping.
    """

    def __init__(self):
        self._handles: Dict[str, TaskHandle] = {}
        self._lock = threading.RLock()

    def register(self, identifier: str, handle: TaskHandle) -> None:
        """Install ``handle``; an existing handle for the identifier is stopped first."""
        with self._lock:
            previous = self._handles.get(identifier)
            if previous is not None and previous is not handle:
                logger.warning(f"[job:{identifier}] Replacing running task")
                previous.stop()
            self._handles[identifier] = handle

    def get(self, identifier: str) -> Optional[TaskHandle]:
        with self._lock:
            return self._handles.get(identifier)

    def unregister(self, identifier: str) -> bool:
        """
        Stop and remove the handle for ``identifier``.

        Returns:
            True if a handle was removed, False if none was registered
        """
        with self._lock:
            handle = self._handles.pop(identifier, None)
            if handle is None:
                return False
            handle.stop()
        logger.info(f"[job:{identifier}] Unregistered")
        return True

    def stop_all(self) -> int:
        """Stop every handle and empty the registry. Returns how many were stopped."""
        with self._lock:
            handles = list(self._handles.items())
            self._handles.clear()
            for identifier, handle in handles:
                try:
                    handle.stop()
                except Exception as e:
                    logger.error(f"[job:{identifier}] Failed to stop task: {e}")
        if handles:
            logger.info(f"Stopped {len(handles)} echo task(s)")
        return len(handles)

    def identifiers(self) -> List[str]:
        with self._lock:
            return list(self._handles)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._handles
