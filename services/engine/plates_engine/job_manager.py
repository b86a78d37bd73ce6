from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from .errors import PlatesEngineError
from .models import RenderProps, SessionStatus, SessionSummary
from .simulation_service import SimulationService

logger = logging.getLogger(__name__)


@dataclass
class SessionRun:
    session_id: str
    snapshots: queue.Queue
    stop_event: threading.Event = field(default_factory=threading.Event)
    future: Future | None = None


class SessionWorker:
    """
    Runs sessions on background threads, one run per session at a time.

    The simulation thread shares no live objects with consumers: every step it
    publishes a JSON-ready copy of the model output into a bounded queue, and
    the oldest message is dropped when the consumer falls behind.
    """

    def __init__(self, simulation: SimulationService, max_workers: int = 4, queue_size: int = 8):
        self._simulation = simulation
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="plates-session")
        self._queue_size = queue_size
        self._runs: dict[str, SessionRun] = {}
        self._lock = threading.Lock()

    def start(self, session_id: str, steps: int, props: RenderProps | None = None) -> SessionSummary:
        summary = self._simulation.get_summary(session_id)
        if summary.status == SessionStatus.failed:
            raise PlatesEngineError(f"session {session_id} failed earlier: {summary.error}")
        with self._lock:
            current = self._runs.get(session_id)
            if current is not None and current.future is not None and not current.future.done():
                raise RuntimeError(f"session {session_id} is already running")
            run = SessionRun(session_id=session_id, snapshots=queue.Queue(maxsize=self._queue_size))
            self._runs[session_id] = run
        self._simulation.set_status(session_id, SessionStatus.running)

        def _runner() -> None:
            try:
                self._simulation.advance(
                    session_id,
                    steps,
                    props,
                    on_snapshot=lambda message: self._publish(run, message),
                    should_stop=run.stop_event.is_set,
                )
            except PlatesEngineError:
                # Already recorded on the session summary.
                return
            except Exception as exc:
                logger.exception("Session %s crashed", session_id)
                self._simulation.set_status(session_id, SessionStatus.failed, error=str(exc))
                return
            final = SessionStatus.stopped if run.stop_event.is_set() else SessionStatus.idle
            self._simulation.set_status(session_id, final)

        run.future = self._executor.submit(_runner)
        return self._simulation.get_summary(session_id)

    def _publish(self, run: SessionRun, message: dict[str, Any]) -> None:
        while True:
            try:
                run.snapshots.put_nowait(message)
                return
            except queue.Full:
                try:
                    run.snapshots.get_nowait()
                except queue.Empty:
                    pass

    def stop(self, session_id: str) -> bool:
        with self._lock:
            run = self._runs.get(session_id)
        if run is None or run.future is None or run.future.done():
            return False
        run.stop_event.set()
        return True

    def is_running(self, session_id: str) -> bool:
        with self._lock:
            run = self._runs.get(session_id)
        return run is not None and run.future is not None and not run.future.done()

    def wait(self, session_id: str, timeout: float | None = None) -> bool:
        with self._lock:
            run = self._runs.get(session_id)
        if run is None or run.future is None:
            return True
        run.future.result(timeout=timeout)
        return run.future.done()

    def drain(self, session_id: str) -> list[dict[str, Any]]:
        with self._lock:
            run = self._runs.get(session_id)
        if run is None:
            return []
        messages: list[dict[str, Any]] = []
        while True:
            try:
                messages.append(run.snapshots.get_nowait())
            except queue.Empty:
                return messages

    def forget(self, session_id: str) -> None:
        self.stop(session_id)
        with self._lock:
            self._runs.pop(session_id, None)

    def shutdown(self) -> None:
        with self._lock:
            runs = list(self._runs.values())
        for run in runs:
            run.stop_event.set()
        self._executor.shutdown(wait=True)
