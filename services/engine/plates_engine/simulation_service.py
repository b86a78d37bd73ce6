from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from .errors import AuthoringError, PlatesEngineError, SimulationError
from .models import (
    CrossSectionPoint,
    ExportArtifact,
    HeightmapExportRequest,
    RenderProps,
    SessionStatus,
    SessionSummary,
    SimulationConfig,
    SnapshotSummary,
)
from .modules.plates import FieldType, Model, build_model, export_heightmap, model_output
from .modules.plates.output import cross_section_bundle
from .settings import Settings
from .snapshot_store import SnapshotStore
from .utils import sha256_bytes, stable_hash, to_jsonable

logger = logging.getLogger(__name__)

ENGINE_VERSION = "0.1.0"
# Authoring never turns more than half of a plate into continent.
MAX_CONTINENTAL_CRUST_RATIO = 0.5


@dataclass
class SimulationSession:
    summary: SessionSummary
    model: Model
    # Steps, authoring edits and snapshots never interleave.
    lock: threading.RLock = field(default_factory=threading.RLock)


class SimulationService:
    def __init__(self, settings: Settings, snapshot_store: SnapshotStore):
        self.settings = settings
        self.snapshot_store = snapshot_store
        self._sessions: dict[str, SimulationSession] = {}
        self._lock = threading.Lock()

    # Sessions

    def create_session(self, name: str, config: SimulationConfig) -> SessionSummary:
        model = build_model(config)
        return self._register(name, model)

    def _register(self, name: str, model: Model) -> SessionSummary:
        session_id = str(uuid.uuid4())
        summary = SessionSummary(sessionId=session_id, name=name, config=model.config)
        session = SimulationSession(summary=summary, model=model)
        self._refresh_summary(session)
        with self._lock:
            self._sessions[session_id] = session
        logger.info("Session %s created: %d plates, %d fields", session_id, len(model.plates), model.field_count)
        return summary

    def get_session(self, session_id: str) -> SimulationSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise ValueError(f"Unknown session id: {session_id}")
        return session

    def list_sessions(self) -> list[SessionSummary]:
        with self._lock:
            sessions = list(self._sessions.values())
        return [session.summary for session in sessions]

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise ValueError(f"Unknown session id: {session_id}")

    def get_summary(self, session_id: str) -> SessionSummary:
        # Refreshed by every step, so reading it never waits on a running session.
        return self.get_session(session_id).summary

    def set_status(self, session_id: str, status: SessionStatus, error: str | None = None) -> None:
        session = self.get_session(session_id)
        session.summary.status = status
        if error is not None:
            session.summary.error = error

    def _refresh_summary(self, session: SimulationSession) -> None:
        model = session.model
        session.summary.stepIdx = model.step_idx
        session.summary.plateCount = len(model.plates)
        session.summary.fieldCount = model.field_count

    # Stepping

    def advance(
        self,
        session_id: str,
        steps: int,
        props: RenderProps | None = None,
        on_snapshot: Callable[[dict[str, Any]], None] | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> int:
        """Runs up to `steps` steps and returns how many completed."""
        session = self.get_session(session_id)
        if session.summary.status == SessionStatus.failed:
            raise SimulationError(f"session {session_id} failed earlier: {session.summary.error}")
        props = props or RenderProps()
        done = 0
        for _ in range(steps):
            if should_stop is not None and should_stop():
                break
            # Held per step so readers and stop requests never wait for a whole run.
            with session.lock:
                try:
                    session.model.step()
                except PlatesEngineError as exc:
                    logger.error("Session %s stopped at step %d: %s", session_id, session.model.step_idx, exc)
                    session.summary.status = SessionStatus.failed
                    session.summary.error = str(exc)
                    raise
                finally:
                    self._refresh_summary(session)
                message = to_jsonable(model_output(session.model, props)) if on_snapshot is not None else None
            done += 1
            if message is not None:
                on_snapshot(message)
        logger.debug("Session %s advanced %d steps to step %d", session_id, done, session.model.step_idx)
        return done

    def step(self, session_id: str, steps: int = 1, props: RenderProps | None = None) -> dict[str, Any]:
        self.advance(session_id, steps, props)
        return self.output(session_id, props, forced_update=True)

    def output(self, session_id: str, props: RenderProps | None = None, forced_update: bool = False) -> dict[str, Any]:
        session = self.get_session(session_id)
        with session.lock:
            return to_jsonable(model_output(session.model, props, forced_update=forced_update))

    def cross_section(self, session_id: str, points: list[tuple[float, float]]) -> dict[str, list[CrossSectionPoint]]:
        session = self.get_session(session_id)
        with session.lock:
            bundle = cross_section_bundle(session.model, points)
        return {
            key: [CrossSectionPoint.model_validate(point) for point in samples] for key, samples in bundle.items()
        }

    # Authoring

    def set_field_type(self, session_id: str, plate_id: int, field_id: int, field_type: str) -> dict[str, Any]:
        session = self.get_session(session_id)
        with session.lock:
            field = session.model.get_field(plate_id, field_id)
            new_type = FieldType(field_type)
            if new_type is FieldType.continent and field.is_ocean:
                plate = field.plate
                if plate.continental_ratio() + 1.0 / plate.size > MAX_CONTINENTAL_CRUST_RATIO:
                    raise AuthoringError(
                        f"plate {plate.id} already has {plate.continental_ratio():.0%} continental crust"
                    )
            field.set_type(new_type)
            self._refresh_summary(session)
            return field.serialize()

    # Persistence

    def save_snapshot(self, session_id: str) -> SnapshotSummary:
        session = self.get_session(session_id)
        with session.lock:
            model_payload = session.model.serialize()
            step_idx = session.model.step_idx
        snapshot_id = str(uuid.uuid4())
        summary = SnapshotSummary(
            snapshotId=snapshot_id,
            sessionId=session_id,
            stepIdx=step_idx,
            checksum=stable_hash(model_payload),
        )
        self.snapshot_store.write_snapshot(
            snapshot_id,
            {
                "engineVersion": ENGINE_VERSION,
                "summary": summary.model_dump(mode="json"),
                "model": model_payload,
            },
        )
        logger.info("Snapshot %s saved for session %s at step %d", snapshot_id, session_id, step_idx)
        return summary

    def get_snapshot(self, snapshot_id: str) -> SnapshotSummary:
        payload = self.snapshot_store.read_snapshot(snapshot_id)
        if payload is None:
            raise ValueError(f"Unknown snapshot id: {snapshot_id}")
        return SnapshotSummary.model_validate(payload["summary"])

    def list_snapshots(self) -> list[SnapshotSummary]:
        return [self.get_snapshot(snapshot_id) for snapshot_id in self.snapshot_store.list_snapshot_ids()]

    def restore_session(self, snapshot_id: str, name: str | None = None) -> SessionSummary:
        payload = self.snapshot_store.read_snapshot(snapshot_id)
        if payload is None:
            raise ValueError(f"Unknown snapshot id: {snapshot_id}")
        model = Model.deserialize(payload["model"])
        return self._register(name or f"Restored {snapshot_id[:8]}", model)

    # Exports

    def export_heightmap(self, session_id: str, request: HeightmapExportRequest) -> ExportArtifact:
        session = self.get_session(session_id)
        artifact_id = str(uuid.uuid4())
        with session.lock:
            filename = f"step{session.model.step_idx}_{artifact_id}.png"
            output_path = self.snapshot_store.export_path(session_id, filename)
            export_heightmap(session.model, output_path, request.width, request.height)
        return ExportArtifact(
            artifactId=artifact_id,
            width=request.width,
            height=request.height,
            path=str(output_path),
            checksum=sha256_bytes(output_path.read_bytes()),
        )
