"""FastAPI application setup for the Topicboard dashboard."""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.templating import Jinja2Templates

from .config import Settings
from .conversations import (
    MAX_ANALYTICS_DAYS,
    MAX_ROW_ID,
    AnalyticsService,
    ConversationNotFoundError,
    ConversationService,
    ConversationStorageError,
    ConversationStore,
    ConversationValidationError,
)
from .observability import MetricsRecorder

_TEMPLATES_DIR = Path(__file__).resolve().parents[2] / "templates"

logger = logging.getLogger(__name__)


_LOGGING_CONFIGURED = False


def _ensure_logging() -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    topicboard_logger = logging.getLogger("topicboard")
    uvicorn_logger = logging.getLogger("uvicorn.error")

    handlers = list(uvicorn_logger.handlers)
    if handlers:
        topicboard_logger.handlers = []
        for handler in handlers:
            topicboard_logger.addHandler(handler)
    else:
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        topicboard_logger.addHandler(handler)

    if topicboard_logger.level == logging.NOTSET or topicboard_logger.level > logging.INFO:
        topicboard_logger.setLevel(logging.INFO)
    topicboard_logger.propagate = False
    _LOGGING_CONFIGURED = True


class ApplicationState:
    """Container for runtime dependencies used by the FastAPI app."""

    def __init__(
        self,
        *,
        settings: Settings,
        store: ConversationStore,
        conversation_service: ConversationService,
        analytics_service: AnalyticsService,
        metrics: MetricsRecorder | None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.conversation_service = conversation_service
        self.analytics = analytics_service
        self.metrics = metrics


def build_services(
    settings: Settings,
    *,
    metrics: MetricsRecorder | None = None,
) -> ApplicationState:
    """Wire the store and services for ``settings`` without creating an app."""

    store = ConversationStore(settings.database_file())
    conversation_service = ConversationService(
        store,
        rules=settings.load_category_rules(),
        default_language=settings.default_language,
        metrics=metrics,
    )
    analytics_service = AnalyticsService(store, metrics=metrics)
    return ApplicationState(
        settings=settings,
        store=store,
        conversation_service=conversation_service,
        analytics_service=analytics_service,
        metrics=metrics,
    )


def create_app(
    *,
    settings: Settings | None = None,
    metrics: MetricsRecorder | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    _ensure_logging()

    settings = settings or Settings.from_env()
    metrics = metrics or settings.build_metrics_recorder()
    state = build_services(settings, metrics=metrics)
    logger.info(
        "app.start settings_loaded database=%s prometheus=%s",
        state.store.path,
        metrics.prometheus_enabled,
    )

    app = FastAPI(title="Topicboard")
    app.state.services = state

    templates = Jinja2Templates(directory=str(_TEMPLATES_DIR))
    templates.env.globals["settings"] = settings

    def get_conversation_service(request: Request) -> ConversationService:
        return request.app.state.services.conversation_service

    def get_analytics_service(request: Request) -> AnalyticsService:
        return request.app.state.services.analytics

    def get_metrics(request: Request) -> MetricsRecorder | None:
        return request.app.state.services.metrics

    def _error(message: str, status_code: int) -> JSONResponse:
        return JSONResponse({"error": message}, status_code=status_code)

    def _parse_conversation_id(raw) -> int | None:
        if isinstance(raw, bool):
            return None
        try:
            return int(str(raw).strip())
        except (TypeError, ValueError):
            return None

    @app.get("/api/conversations", response_class=JSONResponse)
    async def list_conversations(
        limit: int = Query(settings.page_size, ge=0, le=MAX_ROW_ID),
        offset: int = Query(0, ge=0, le=MAX_ROW_ID),
        service: ConversationService = Depends(get_conversation_service),
    ) -> JSONResponse:
        try:
            page = service.list_records(limit=limit, offset=offset)
        except ConversationStorageError:
            logger.exception("api.conversations.list_failed limit=%s offset=%s", limit, offset)
            return _error("Failed to fetch conversations", 500)
        return JSONResponse(page.to_dict())

    @app.post("/api/conversations", response_class=JSONResponse)
    async def create_conversation(
        request: Request,
        service: ConversationService = Depends(get_conversation_service),
    ) -> JSONResponse:
        try:
            payload = await request.json()
        except ValueError:
            return _error("Request body must be JSON", 400)
        if not isinstance(payload, dict):
            return _error("Request body must be a JSON object", 400)
        if payload.get("questions") in (None, "") or payload.get("answers") in (None, ""):
            return _error("answers and questions are required", 400)
        try:
            record = service.create_record(
                payload.get("questions"),
                payload.get("answers"),
                language=payload.get("language"),
                recorded_at=payload.get("datetime"),
            )
        except ConversationValidationError as exc:
            return _error(str(exc), 400)
        except ConversationStorageError:
            logger.exception("api.conversations.create_failed")
            return _error("Failed to create conversation", 500)
        return JSONResponse(record.to_dict(), status_code=201)

    @app.get("/api/conversations/{conversation_id}", response_class=JSONResponse)
    async def get_conversation(
        conversation_id: int,
        service: ConversationService = Depends(get_conversation_service),
    ) -> JSONResponse:
        try:
            record = service.get_record(conversation_id)
        except ConversationNotFoundError:
            return _error("Conversation not found", 404)
        except ConversationStorageError:
            logger.exception("api.conversations.get_failed id=%s", conversation_id)
            return _error("Failed to fetch conversation", 500)
        return JSONResponse(record.to_dict())

    @app.delete("/api/conversations/{conversation_id}", response_class=JSONResponse)
    async def delete_conversation(
        conversation_id: int,
        service: ConversationService = Depends(get_conversation_service),
    ) -> JSONResponse:
        try:
            service.delete_record(conversation_id)
        except ConversationNotFoundError:
            return _error("Conversation not found", 404)
        except ConversationStorageError:
            logger.exception("api.conversations.delete_failed id=%s", conversation_id)
            return _error("Failed to delete conversation", 500)
        return JSONResponse({"success": True})

    @app.post("/api/analyze-topic", response_class=JSONResponse)
    async def analyze_conversation_topic(
        request: Request,
        service: ConversationService = Depends(get_conversation_service),
    ) -> JSONResponse:
        try:
            payload = await request.json()
        except ValueError:
            return _error("Request body must be JSON", 400)
        raw_id = payload.get("id") if isinstance(payload, dict) else None
        if raw_id is None or raw_id == "":
            return _error("Conversation ID is required", 400)
        conversation_id = _parse_conversation_id(raw_id)
        if conversation_id is None:
            return _error("Conversation ID must be an integer", 400)
        try:
            record = service.analyze_record(conversation_id)
        except ConversationNotFoundError:
            return _error("Conversation not found", 404)
        except ConversationStorageError:
            logger.exception("api.analyze.failed id=%s", conversation_id)
            return _error("Failed to analyze topic", 500)
        return JSONResponse({"success": True, "topic": record.topic, "conversation": record.to_dict()})

    @app.get("/api/analyze-topic", response_class=JSONResponse)
    async def analyze_missing_topics(
        service: ConversationService = Depends(get_conversation_service),
    ) -> JSONResponse:
        try:
            results = service.reanalyze_missing()
        except ConversationStorageError:
            logger.exception("api.analyze.batch_failed")
            return _error("Failed to analyze topics", 500)
        return JSONResponse(
            {
                "success": True,
                "analyzed": len(results),
                "results": [{"id": conversation_id, "topic": topic} for conversation_id, topic in results],
            }
        )

    @app.get("/api/analytics", response_class=JSONResponse)
    async def analytics_summary(
        days: int = Query(settings.analytics_days, ge=1, le=MAX_ANALYTICS_DAYS),
        analytics_service: AnalyticsService = Depends(get_analytics_service),
    ) -> JSONResponse:
        try:
            summary = analytics_service.build_summary(days=days, top_limit=settings.analytics_top_topics)
        except ConversationStorageError:
            logger.exception("api.analytics.failed days=%s", days)
            return _error("Failed to fetch analytics", 500)
        return JSONResponse(summary)

    @app.get("/", response_class=HTMLResponse)
    async def dashboard(
        request: Request,
        days: int = Query(settings.analytics_days, ge=1, le=MAX_ANALYTICS_DAYS),
    ) -> HTMLResponse:
        analytics_service = get_analytics_service(request)
        service = get_conversation_service(request)
        try:
            summary = analytics_service.build_summary(days=days, top_limit=settings.analytics_top_topics)
            recent = service.list_records(limit=settings.dashboard_recent_limit, offset=0)
        except ConversationStorageError:
            logger.exception("dashboard.render_failed days=%s", days)
            return HTMLResponse("Failed to load dashboard", status_code=500)
        peak = max((item["count"] for item in summary["interactionsOverTime"]), default=0)
        context = {
            "request": request,
            "summary": summary,
            "recent": recent.records,
            "days": days,
            "peak": peak,
        }
        return templates.TemplateResponse(request, "dashboard.html", context)

    @app.get("/metrics")
    async def metrics_endpoint(metrics: MetricsRecorder | None = Depends(get_metrics)) -> Response:
        if metrics is None or not metrics.prometheus_enabled:
            return _error("Metrics export disabled", 404)
        return Response(content=metrics.render_prometheus(), media_type=metrics.prometheus_content_type)

    return app


__all__ = ["ApplicationState", "build_services", "create_app"]
