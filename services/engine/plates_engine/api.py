from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncGenerator

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from .errors import PlatesEngineError
from .job_manager import SessionWorker
from .logging_config import setup_logging
from .models import (
    CrossSectionPoint,
    CrossSectionRequest,
    ExportArtifact,
    FieldTypeRequest,
    HeightmapExportRequest,
    OutputResponse,
    RenderProps,
    SessionCreateRequest,
    SessionStatus,
    SessionSummary,
    SnapshotSummary,
    StepRequest,
)
from .settings import Settings, load_settings
from .simulation_service import SimulationService
from .snapshot_store import SnapshotStore


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings)
    snapshot_store = SnapshotStore(settings.data_root)
    simulation = SimulationService(settings, snapshot_store)
    worker = SessionWorker(simulation, max_workers=settings.max_workers, queue_size=settings.snapshot_queue_size)

    app = FastAPI(title="Plates Engine", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.snapshot_store = snapshot_store
    app.state.simulation = simulation
    app.state.worker = worker

    def _session(session_id: str) -> SessionSummary:
        try:
            return simulation.get_summary(session_id)
        except ValueError:
            raise HTTPException(status_code=404, detail="session not found")

    def _ensure_idle(session_id: str) -> None:
        if worker.is_running(session_id):
            raise HTTPException(status_code=409, detail="session is running")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/v1/sessions", response_model=SessionSummary)
    def create_session(request: SessionCreateRequest) -> SessionSummary:
        try:
            return simulation.create_session(request.name, request.config)
        except PlatesEngineError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @app.get("/v1/sessions", response_model=list[SessionSummary])
    def list_sessions() -> list[SessionSummary]:
        return simulation.list_sessions()

    @app.get("/v1/sessions/{session_id}", response_model=SessionSummary)
    def get_session(session_id: str) -> SessionSummary:
        return _session(session_id)

    @app.delete("/v1/sessions/{session_id}")
    def delete_session(session_id: str) -> dict[str, str]:
        _session(session_id)
        worker.forget(session_id)
        simulation.delete_session(session_id)
        return {"status": "deleted"}

    @app.post("/v1/sessions/{session_id}/step", response_model=OutputResponse)
    def step_session(session_id: str, request: StepRequest) -> dict[str, Any]:
        _session(session_id)
        _ensure_idle(session_id)
        try:
            return simulation.step(session_id, request.steps, request.props)
        except PlatesEngineError as exc:
            raise HTTPException(status_code=409, detail=str(exc))

    @app.post("/v1/sessions/{session_id}/run", response_model=SessionSummary)
    def run_session(session_id: str, request: StepRequest) -> SessionSummary:
        _session(session_id)
        try:
            return worker.start(session_id, request.steps, request.props)
        except (PlatesEngineError, RuntimeError) as exc:
            raise HTTPException(status_code=409, detail=str(exc))

    @app.post("/v1/sessions/{session_id}/stop", response_model=SessionSummary)
    def stop_session(session_id: str) -> SessionSummary:
        _session(session_id)
        worker.stop(session_id)
        return _session(session_id)

    @app.post("/v1/sessions/{session_id}/output", response_model=OutputResponse)
    def get_output(session_id: str, props: RenderProps, forced: bool = True) -> dict[str, Any]:
        _session(session_id)
        return simulation.output(session_id, props, forced_update=forced)

    @app.post("/v1/sessions/{session_id}/cross-section", response_model=dict[str, list[CrossSectionPoint]])
    def get_cross_section(session_id: str, request: CrossSectionRequest) -> dict[str, list[CrossSectionPoint]]:
        _session(session_id)
        return simulation.cross_section(session_id, request.points)

    @app.put("/v1/sessions/{session_id}/fields/{plate_id}/{field_id}/type")
    def set_field_type(session_id: str, plate_id: int, field_id: int, request: FieldTypeRequest) -> dict[str, Any]:
        _session(session_id)
        _ensure_idle(session_id)
        try:
            return simulation.set_field_type(session_id, plate_id, field_id, request.type)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        except PlatesEngineError as exc:
            raise HTTPException(status_code=409, detail=str(exc))

    @app.post("/v1/sessions/{session_id}/snapshots", response_model=SnapshotSummary)
    def save_snapshot(session_id: str) -> SnapshotSummary:
        _session(session_id)
        return simulation.save_snapshot(session_id)

    @app.get("/v1/snapshots", response_model=list[SnapshotSummary])
    def list_snapshots() -> list[SnapshotSummary]:
        return simulation.list_snapshots()

    @app.post("/v1/snapshots/{snapshot_id}/sessions", response_model=SessionSummary)
    def restore_snapshot(snapshot_id: str) -> SessionSummary:
        try:
            return simulation.restore_session(snapshot_id)
        except ValueError:
            raise HTTPException(status_code=404, detail="snapshot not found")

    @app.post("/v1/sessions/{session_id}/exports/heightmap", response_model=ExportArtifact)
    def export_heightmap(session_id: str, request: HeightmapExportRequest) -> ExportArtifact:
        _session(session_id)
        return simulation.export_heightmap(session_id, request)

    @app.get("/v1/sessions/{session_id}/events")
    async def stream_session(session_id: str) -> StreamingResponse:
        _session(session_id)

        async def event_gen() -> AsyncGenerator[str, None]:
            while True:
                for message in worker.drain(session_id):
                    yield f"event: snapshot\ndata: {json.dumps(message)}\n\n"
                try:
                    current = simulation.get_summary(session_id)
                except ValueError:
                    yield "event: error\ndata: {\"message\":\"session not found\"}\n\n"
                    return
                if not worker.is_running(session_id):
                    for message in worker.drain(session_id):
                        yield f"event: snapshot\ndata: {json.dumps(message)}\n\n"
                    yield f"event: status\ndata: {json.dumps(current.model_dump(mode='json'))}\n\n"
                    return
                if current.status == SessionStatus.failed:
                    return
                await asyncio.sleep(0.2)

        return StreamingResponse(event_gen(), media_type="text/event-stream")

    return app
