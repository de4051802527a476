"""
Session recording off the real-time path.

The pipeline pushes one :class:`~ppg_vitals.models.SessionRow` per processed
sample onto a queue; a background thread appends them to the current
:class:`Session`.  Slow consumers therefore never stall frame processing.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .models import SessionRow

logger = logging.getLogger(__name__)

_STOP = object()


def now_ms() -> float:
    return time.time() * 1000.0


@dataclass
class Session:
    id: str
    start_time: float                  # ms since epoch
    end_time: Optional[float] = None
    rows: List[SessionRow] = field(default_factory=list)

    @property
    def duration_ms(self) -> float:
        end = self.end_time if self.end_time is not None else now_ms()
        return end - self.start_time

    def __len__(self) -> int:
        return len(self.rows)


class SessionRecorder:
    """
    Single-producer, append-only session log.

    Usage::

        recorder = SessionRecorder()
        recorder.start()
        pipeline = VitalSignsPipeline(recorder=recorder)
        ...
        session = recorder.stop()
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._thread: threading.Thread | None = None
        self._session: Session | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, start_time: float | None = None) -> Session:
        """Begin a new session and start the consumer thread."""
        if self.is_recording:
            raise RuntimeError("A session is already being recorded.  Call stop() first.")
        start = now_ms() if start_time is None else start_time
        self._session = Session(id=f"session_{int(start)}", start_time=start)
        self._thread = threading.Thread(
            target=self._consume, name="session-recorder", daemon=True
        )
        self._thread.start()
        logger.info("Recording %s", self._session.id)
        return self._session

    def stop(self, end_time: float | None = None) -> Session:
        """Drain pending rows, stamp the end time and return the session."""
        if self._session is None or self._thread is None:
            raise RuntimeError("No session is being recorded.")
        self._queue.put(_STOP)
        self._thread.join()
        self._thread = None
        self._session.end_time = now_ms() if end_time is None else end_time
        logger.info("Stopped %s – %d rows", self._session.id, len(self._session))
        return self._session

    @property
    def is_recording(self) -> bool:
        return self._thread is not None

    @property
    def session(self) -> Session | None:
        return self._session

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def record(self, row: SessionRow) -> None:
        """Enqueue *row*; silently ignored when no session is running."""
        if self.is_recording:
            self._queue.put(row)

    # ------------------------------------------------------------------
    # Consumer thread
    # ------------------------------------------------------------------

    def _consume(self) -> None:
        session = self._session
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            session.rows.append(item)
