from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import BackgroundTasks, FastAPI, Header, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.middleware import LoggingMiddleware
from api.schemas import ClustersRequest, SubmissionAccepted, SubmissionRejected, SubmissionRequest
from api.sessions import SessionRegistry
from api.submissions import SubmissionDraft, SubmissionService
from core.env import env_str
from engine.duckdb import DuckDBSubmissionStore
from engine.types import StoreUnavailableError, SubmissionStore
from reports.categories import CategoryCatalog, default_catalog
from reports.types import Mode
from reports.validation import InvalidSubmissionError
from telemetry.logs import configure_logging
from telemetry.singleton import get_store
from viewport.config import ViewportSettings
from viewport.coordinator import ViewportCoordinator

log = structlog.get_logger(__name__)


def cors_origins() -> list[str]:
    raw = env_str("TERRA_CORS_ORIGINS", "http://localhost:3000")
    return [o.strip() for o in raw.split(",") if o.strip()]


async def _refresh_session(coordinator: ViewportCoordinator) -> None:
    result = await coordinator.refresh()
    log.info("session_refreshed", session_id=coordinator.session_id, status=result.status.value)


def create_app(
    store: SubmissionStore | None = None,
    settings: ViewportSettings | None = None,
    *,
    catalog: CategoryCatalog | None = None,
) -> FastAPI:
    configure_logging()

    store = store if store is not None else DuckDBSubmissionStore()
    settings = settings or ViewportSettings.from_env()
    catalog = catalog or default_catalog()
    sessions = SessionRegistry(store, settings, catalog=catalog)
    submissions = SubmissionService(store=store, catalog=catalog)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("app_started", cluster_radius_km=settings.cluster_radius_km, debounce_ms=settings.debounce_ms)
        yield
        close = getattr(store, "close", None)
        if callable(close):
            close()
        log.info("app_stopped")

    app = FastAPI(title="terra-geo-engine", lifespan=lifespan)
    app.state.store = store
    app.state.sessions = sessions
    app.state.submissions = submissions

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidSubmissionError)
    async def _invalid_submission(request: Request, exc: InvalidSubmissionError):
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})

    @app.exception_handler(StoreUnavailableError)
    async def _store_unavailable(request: Request, exc: StoreUnavailableError):
        log.warning("store_unavailable", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "degraded", "detail": str(exc)},
        )

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/categories")
    def categories(mode: Mode = Query(Mode.complaint)):
        return {"mode": mode.value, "categories": catalog.labels(mode)}

    @app.post("/clusters")
    async def clusters(body: ClustersRequest, x_session_id: str | None = Header(default=None)):
        coordinator = sessions.get(x_session_id)
        result = await coordinator.on_viewport_change(body.viewport.to_bbox())
        return result.as_dict()

    @app.post("/submissions", status_code=status.HTTP_201_CREATED)
    async def submit(
        body: SubmissionRequest,
        background: BackgroundTasks,
        x_session_id: str | None = Header(default=None),
    ):
        draft = SubmissionDraft(
            mode=body.mode,
            location=body.location.to_coordinate(),
            selected_slots=body.selected_tiles,
            address=body.address,
            submitter_id=body.user_id,
        )
        outcome = await submissions.submit(draft)
        if not outcome.accepted:
            rejected = SubmissionRejected(
                duplicateCategories=list(outcome.duplicate_categories),
                labels=list(outcome.duplicate_labels),
                message=outcome.message,
            )
            return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=rejected.model_dump())

        coordinator = sessions.peek(x_session_id)
        if coordinator is not None:
            background.add_task(_refresh_session, coordinator)

        accepted = outcome.submission
        if accepted is None:
            raise RuntimeError("accepted outcome without a submission")
        return SubmissionAccepted(
            id=accepted.id,
            spatialKey=accepted.spatial_key,
            message=outcome.message,
        )

    @app.get("/telemetry/summary")
    def telemetry_summary(endpoint: str | None = None, since_ms: int | None = Query(default=None, alias="sinceMs")):
        tstore = get_store()
        if tstore is None:
            return {"enabled": False, "rows": []}
        tstore.flush(timeout_s=1.0)
        return {"enabled": True, "rows": tstore.summary(endpoint=endpoint, since_ms=since_ms)}

    return app


app = create_app()
