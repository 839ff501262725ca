"""Network reachability tracking with transition notifications."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from fieldsync.common.logging import log_event

logger = logging.getLogger(__name__)

Listener = Callable[[bool], None]


class ConnectivityMonitor:
    """Tracks online/offline state.

    The state is fed either by a platform reachability signal through
    :meth:`update` or by polling ``probe`` through :meth:`refresh`. An
    unavailable signal (``None``) or a failing probe counts as offline.
    """

    def __init__(
        self,
        probe: Callable[[], bool] | None = None,
        *,
        pending_count_source: Callable[[], int] | None = None,
    ) -> None:
        self.probe = probe
        self.pending_count_source = pending_count_source
        self._online = False
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def is_online(self) -> bool:
        return self._online

    def pending_count(self) -> int:
        if self.pending_count_source is None:
            return 0
        return self.pending_count_source()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def update(self, reachable: bool | None) -> bool:
        online = bool(reachable) if reachable is not None else False
        with self._lock:
            changed = online != self._online
            self._online = online
            listeners = list(self._listeners)
        if changed:
            log_event(
                logger,
                "connectivity changed: " + ("online" if online else "offline"),
                component="connectivity",
                event="CONNECTIVITY_CHANGE",
                status="online" if online else "offline",
            )
            for listener in listeners:
                try:
                    listener(online)
                except Exception:
                    logger.exception("connectivity listener failed")
        return online

    def refresh(self) -> bool:
        if self.probe is None:
            return self.update(None)
        try:
            reachable = self.probe()
        except Exception:
            logger.exception("reachability probe failed")
            reachable = None
        return self.update(reachable)
