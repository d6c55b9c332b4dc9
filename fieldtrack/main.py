"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Optional

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.responses import JSONResponse

from .config import Settings, settings
from .schemas import (
    CheckInRequest,
    CheckOutRequest,
    ConfirmationResponse,
    ConnectivityRequest,
    FlushResponse,
    MutationResponse,
    PendingResponse,
    SyncView,
    TaskCreate,
    TaskView,
    ValueRequest,
)
from .sync.client import AchievementStoreClient
from .sync.connectivity import ConnectivityMonitor
from .sync.errors import (
    AuthorizationError,
    ConfirmationRequired,
    ConflictError,
    GeolocationError,
    MediaUploadError,
    NetworkError,
    PreconditionError,
    RemoteStoreError,
    UnknownTaskError,
    ValidationError,
)
from .sync.models import SyncState, SyncStatus
from .sync.persistence import AchievementPersistence
from .sync.queue import OfflineQueue
from .sync.storage import SupabaseStorage
from .tracker.evidence import EvidenceManager, EvidenceOutcome
from .tracker.geolocation import FixedGeolocation
from .tracker.ledger import Err, NeedsConfirmation
from .tracker.service import TrackerService
from .tracker.store import TaskStore

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Engine error -> HTTP status
_ERROR_STATUS = [
    (UnknownTaskError, 404),
    (ConfirmationRequired, 409),
    (PreconditionError, 409),
    (ValidationError, 422),
    (GeolocationError, 424),
    (AuthorizationError, 403),
    (ConflictError, 409),
    (NetworkError, 503),
    (MediaUploadError, 502),
    (RemoteStoreError, 502),
]


def _log_sync_status(status: SyncStatus):
    if status.state == SyncState.QUEUED:
        logger.warning(f"Sync {status.key}: {status.message}")
    else:
        logger.info(f"Sync {status.key}: {status.state.value} {status.message}")


def build_service(config: Settings) -> tuple[TrackerService, AchievementStoreClient]:
    """
    Wire the tracker components from settings.

    Returns:
        Tuple of (service, remote client); the client must be disconnected on shutdown
    """
    store = TaskStore()
    client = AchievementStoreClient(
        config.supabase_url,
        config.supabase_key,
        table=config.achievements_table,
        timeout=config.request_timeout,
    )
    persistence = AchievementPersistence(
        client,
        OfflineQueue(config.offline_queue_path),
        store=store,
        connectivity=ConnectivityMonitor(),
        max_attempts=config.max_save_attempts,
        backoff_base=config.backoff_base,
    )
    persistence.subscribe_status(_log_sync_status)
    storage = SupabaseStorage(config.supabase_url, config.supabase_key, bucket=config.storage_bucket)
    evidence = EvidenceManager(storage, persistence, store)
    service = TrackerService(
        store,
        persistence,
        evidence,
        tolerance=config.target_tolerance,
        ceiling=config.value_ceiling,
    )
    return service, client


def create_app(service: Optional[TrackerService] = None) -> FastAPI:
    """
    Create the API application.

    Args:
        service: Pre-built service; built from settings on startup when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = None
        if getattr(app.state, "service", None) is None:
            app.state.service, client = build_service(settings)
            logger.info("Tracker service started")
        try:
            yield
        finally:
            if client is not None:
                await client.disconnect()

    app = FastAPI(
        title="FieldTrack",
        description="Daily achievement tracking and sync engine for field teams",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.service = service

    for error_type, status_code in _ERROR_STATUS:
        app.add_exception_handler(error_type, _error_handler(status_code))

    _register_routes(app)
    return app


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc}")
        content = {"detail": str(exc), "error": type(exc).__name__}
        if isinstance(exc, ConfirmationRequired):
            content.update(headroom=exc.headroom, projected_total=exc.projected_total, limit=exc.limit)
        return JSONResponse(status_code=status_code, content=content)

    return handler


def _service(request: Request) -> TrackerService:
    return request.app.state.service


def _today(service: TrackerService) -> date:
    return service.clock().date()


def _view(service: TrackerService, task_id: str) -> TaskView:
    return TaskView.from_task(service.store.get(task_id), _today(service))


def _evidence_response(service: TrackerService, outcome: EvidenceOutcome) -> MutationResponse:
    return MutationResponse(
        task=TaskView.from_task(outcome.task, _today(service)),
        sync=SyncView.from_result(outcome.save),
        error=str(outcome.error) if outcome.error else None,
        warning=outcome.warning,
    )


def _register_routes(app: FastAPI):
    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "FieldTrack daily achievement tracker",
            "version": VERSION,
            "endpoints": {
                "tasks": "/api/tasks",
                "pending": "/api/sync/pending",
                "flush": "/api/sync/flush",
                "status": "/status",
            },
        }

    @app.get("/status")
    async def status(request: Request):
        """Server status endpoint."""
        service = _service(request)
        connectivity = service.persistence.connectivity
        return {
            "status": "running",
            "version": VERSION,
            "timestamp": datetime.utcnow().isoformat(),
            "online": connectivity.is_online if connectivity else True,
            "pending_offline": service.pending_offline_count(),
        }

    @app.post("/api/tasks", response_model=TaskView, status_code=201)
    async def create_task(body: TaskCreate, request: Request):
        """Register a task snapshot with the tracker."""
        service = _service(request)
        service.store.add(body.to_task(settings.planned_effort_hours))
        logger.info(f"Registered task {body.id}: {body.title}")
        return _view(service, body.id)

    @app.get("/api/tasks/{task_id}", response_model=TaskView)
    async def get_task(task_id: str, request: Request):
        return _view(_service(request), task_id)

    @app.post("/api/tasks/{task_id}/hydrate", response_model=TaskView)
    async def hydrate_task(task_id: str, request: Request):
        """Reload achievements from the remote store."""
        service = _service(request)
        task = await service.hydrate(task_id)
        return TaskView.from_task(task, _today(service))

    @app.post("/api/tasks/{task_id}/start", response_model=TaskView)
    async def start_task(task_id: str, request: Request):
        service = _service(request)
        return TaskView.from_task(service.start_task(task_id), _today(service))

    @app.post("/api/tasks/{task_id}/end", response_model=TaskView)
    async def end_task(task_id: str, request: Request):
        service = _service(request)
        return TaskView.from_task(service.end_task(task_id), _today(service))

    @app.put("/api/tasks/{task_id}/achievements/{on_date}", response_model=MutationResponse)
    async def record_value(task_id: str, on_date: date, body: ValueRequest, request: Request):
        """
        Record the achieved value for a date.

        Returns 409 with the available headroom when the value needs
        confirmation; resend with `override: true` to commit.
        """
        service = _service(request)
        decision = await service.record_value(task_id, on_date, body.value, override=body.override, notes=body.notes)

        if isinstance(decision, NeedsConfirmation):
            confirmation = ConfirmationResponse(
                detail="Value exceeds the task target; confirm to proceed",
                headroom=decision.headroom,
                projected_total=decision.projected_total,
                limit=decision.limit,
            )
            return JSONResponse(status_code=409, content=confirmation.model_dump())
        if isinstance(decision, Err):
            raise decision.error

        return MutationResponse(
            task=TaskView.from_task(decision.task, _today(service)),
            sync=SyncView.from_result(decision.save),
        )

    @app.delete("/api/tasks/{task_id}/achievements/{on_date}", response_model=TaskView)
    async def delete_achievement(task_id: str, on_date: date, request: Request, confirm: bool = False):
        service = _service(request)
        task = await service.delete_achievement(task_id, on_date, confirmed=confirm)
        return TaskView.from_task(task, _today(service))

    @app.post("/api/tasks/{task_id}/achievements/{on_date}/check-in", response_model=MutationResponse)
    async def check_in(task_id: str, on_date: date, body: CheckInRequest, request: Request):
        service = _service(request)
        geolocation = FixedGeolocation(body.latitude, body.longitude)
        task, result = await service.check_in(task_id, on_date, body.members, geolocation)
        return MutationResponse(task=TaskView.from_task(task, _today(service)), sync=SyncView.from_result(result))

    @app.post("/api/tasks/{task_id}/achievements/{on_date}/check-out", response_model=MutationResponse)
    async def check_out(task_id: str, on_date: date, body: CheckOutRequest, request: Request):
        service = _service(request)
        geolocation = FixedGeolocation(body.latitude, body.longitude)
        task, result = await service.check_out(task_id, on_date, geolocation)
        return MutationResponse(task=TaskView.from_task(task, _today(service)), sync=SyncView.from_result(result))

    @app.post("/api/tasks/{task_id}/achievements/{on_date}/media", response_model=MutationResponse)
    async def attach_media(task_id: str, on_date: date, request: Request, file: UploadFile = File(...)):
        service = _service(request)
        data = await file.read()
        outcome = await service.attach_media(
            task_id, on_date, data, file.filename or "upload", file.content_type or "application/octet-stream"
        )
        return _evidence_response(service, outcome)

    @app.delete("/api/tasks/{task_id}/achievements/{on_date}/media/{timestamp}", response_model=MutationResponse)
    async def detach_media(task_id: str, on_date: date, timestamp: datetime, request: Request):
        service = _service(request)
        outcome = await service.detach_media(task_id, on_date, timestamp)
        return _evidence_response(service, outcome)

    @app.post("/api/tasks/{task_id}/achievements/{on_date}/recording", status_code=201)
    async def start_recording(task_id: str, on_date: date, request: Request):
        """Open a voice recording session for the date."""
        session = _service(request).start_recording(task_id, on_date)
        return {"task_id": session.task_id, "date": session.date.isoformat(), "started_at": session.started_at.isoformat()}

    @app.put("/api/tasks/{task_id}/achievements/{on_date}/recording")
    async def append_recording(task_id: str, on_date: date, request: Request):
        """Append a raw audio chunk (request body) to the open recording."""
        service = _service(request)
        chunk = await request.body()
        service.append_recording(task_id, on_date, chunk)
        session = service.evidence.get_recording(task_id, on_date)
        return {"size": session.size, "chunks": len(session.chunks)}

    @app.post("/api/tasks/{task_id}/achievements/{on_date}/recording/stop", response_model=MutationResponse)
    async def stop_recording(task_id: str, on_date: date, request: Request):
        service = _service(request)
        outcome = await service.stop_recording(task_id, on_date)
        return _evidence_response(service, outcome)

    @app.delete("/api/tasks/{task_id}/achievements/{on_date}/recording")
    async def cancel_recording(task_id: str, on_date: date, request: Request):
        _service(request).evidence.cancel_recording(task_id, on_date)
        return {"status": "cancelled"}

    @app.post("/api/tasks/{task_id}/achievements/{on_date}/voice-notes", response_model=MutationResponse)
    async def attach_voice_note(
        task_id: str,
        on_date: date,
        request: Request,
        file: UploadFile = File(...),
        duration: Optional[float] = None,
    ):
        """Attach a complete audio recording made on the client."""
        service = _service(request)
        audio = await file.read()
        outcome = await service.attach_voice_note(
            task_id, on_date, audio, file.content_type or "application/octet-stream", duration
        )
        return _evidence_response(service, outcome)

    @app.delete(
        "/api/tasks/{task_id}/achievements/{on_date}/voice-notes/{timestamp}", response_model=MutationResponse
    )
    async def detach_voice_note(task_id: str, on_date: date, timestamp: datetime, request: Request):
        service = _service(request)
        outcome = await service.detach_voice_note(task_id, on_date, timestamp)
        return _evidence_response(service, outcome)

    @app.get("/api/sync/pending", response_model=PendingResponse)
    async def pending(request: Request):
        """Writes waiting for connectivity."""
        service = _service(request)
        entries = service.persistence.queue.list_pending()
        return PendingResponse(
            pending=len(entries),
            entries=[entry.payload for entry in entries],
            statuses=service.persistence.unsettled_statuses(),
        )

    @app.post("/api/sync/flush", response_model=FlushResponse)
    async def flush(request: Request):
        """Force a sync sweep of the offline queue."""
        service = _service(request)
        report = await service.flush_pending()
        return FlushResponse(synced=report.synced, failed=report.failed, pending=service.pending_offline_count())

    @app.post("/api/sync/connectivity")
    async def connectivity(body: ConnectivityRequest, request: Request):
        """
        Report a connectivity change from the client.

        Coming back online replays the offline queue.
        """
        service = _service(request)
        monitor = service.persistence.connectivity
        if monitor is not None:
            await monitor.set_online(body.online)
        return {"online": body.online, "pending_offline": service.pending_offline_count()}


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=settings.server_host,
        port=settings.server_port,
        log_level=settings.log_level.lower(),
    )
