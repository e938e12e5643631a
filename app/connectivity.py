from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class ConnectivityGate:
    """
    Whether the durable backend is believed reachable.
    Starts offline until probe() succeeds; only the sync layer flips it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._reachable = False

    @property
    def reachable(self) -> bool:
        return self._reachable

    def probe(self, backend) -> bool:
        try:
            ok = bool(backend.probe())
        except Exception as e:
            logger.warning("Backend probe raised: %s", e)
            ok = False
        with self._lock:
            self._reachable = ok
        logger.info("Backend %s", "reachable" if ok else "unreachable, running offline")
        return ok

    def mark_unreachable(self) -> None:
        with self._lock:
            if self._reachable:
                logger.warning("Backend marked unreachable for the rest of the session")
            self._reachable = False
