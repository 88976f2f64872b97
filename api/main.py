"""Event Map API."""

import logging
from contextlib import asynccontextmanager
from datetime import date

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ingestion.geocoding import NominatimGeocoder
from ingestion.models import EventBatch, EventCreate, IngestionStatus
from ingestion.normalizer import EventNormalizer
from ingestion.orchestrator import IngestionOrchestrator
from ingestion.ticketmaster import TicketmasterClient

from .database import EventStore, StoreError, init_db
from .deps import DbDep, SettingsDep
from .logging import configure_logging
from .profiles import router as profiles_router
from .queries import (
    Bounds,
    EventFilters,
    InvalidBoundsError,
    InvalidIdentifierError,
    find_events,
    get_event,
    get_events,
    parse_ids,
)
from .settings import Settings

log = logging.getLogger(__name__)


def build_source(settings: Settings) -> TicketmasterClient | None:
    if not settings.ticketmaster_api_key:
        return None
    return TicketmasterClient(
        settings.ticketmaster_api_key,
        base_url=settings.ticketmaster_base_url,
        page_size=settings.page_size,
        max_retries=settings.source_max_retries,
        retry_backoff=settings.source_retry_backoff,
    )


def build_geocoder(settings: Settings) -> NominatimGeocoder:
    return NominatimGeocoder(
        base_url=settings.geocoder_base_url, user_agent=settings.geocoder_user_agent
    )


def create_app(
    settings: Settings | None = None,
    *,
    source=None,
    geocoder=None,
    configure_logs: bool = True,
) -> FastAPI:
    """Build the application; *source* and *geocoder* replace the real clients."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logs:
            configure_logging(settings.log_level)
        await init_db(settings.database_path)
        yield
        for client in (app.state.source, app.state.geocoder):
            if client is not None and hasattr(client, "aclose"):
                await client.aclose()

    app = FastAPI(title="Event Map", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.source = source if source is not None else build_source(settings)
    app.state.geocoder = geocoder if geocoder is not None else build_geocoder(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    app.include_router(profiles_router)
    _register_event_routes(app)
    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "message": "Invalid request",
                "errors": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(InvalidIdentifierError)
    @app.exception_handler(InvalidBoundsError)
    async def bad_input(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"message": str(exc)})

    @app.exception_handler(StoreError)
    async def store_error(request: Request, exc: StoreError):
        log.error("Store error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"message": "Error storing events"})


def _register_event_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/events")
    async def list_events(
        db: DbDep,
        min_lat: float = Query(...),
        max_lat: float = Query(...),
        min_lng: float = Query(...),
        max_lng: float = Query(...),
        type: str | None = None,
        genre: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ):
        """Events inside a bounding box, optionally filtered by segment, genre and dates."""
        bounds = Bounds(min_lat, max_lat, min_lng, max_lng)
        filters = EventFilters(
            event_type=type, genre=genre, start_date=start_date, end_date=end_date
        )
        events = await find_events(db, bounds, filters)
        if not events:
            return {"events": [], "total": 0, "message": "No events found"}
        return {"events": events, "total": len(events)}

    @app.get("/api/events/batch")
    async def batch_events(db: DbDep, ids: str = Query(...)):
        """Several events by a comma-separated id list; unknown ids are skipped."""
        events = await get_events(db, parse_ids(ids))
        return {"events": events, "total": len(events)}

    @app.get("/api/events/{event_id}")
    async def event_by_id(event_id: str, db: DbDep):
        ids = parse_ids(event_id)
        if len(ids) != 1:
            raise HTTPException(status_code=400, detail=f"Invalid id: {event_id!r}")
        event = await get_event(db, ids[0])
        if not event:
            raise HTTPException(status_code=404, detail="Event not found")
        return event

    @app.post("/api/events", status_code=201)
    async def create_event(body: EventCreate, db: DbDep):
        store = EventStore(db)
        draft = await EventNormalizer(store).resolve(body)
        [event_id] = await store.insert_events([draft])
        return await get_event(db, event_id)

    @app.post("/api/uploadEvents", status_code=201)
    async def upload_events(body: EventBatch, db: DbDep):
        store = EventStore(db)
        normalizer = EventNormalizer(store)
        drafts = [await normalizer.resolve(event) for event in body.events]
        ids = await store.insert_events(drafts)
        events = await get_events(db, ids)
        return {"events": events, "total": len(events)}

    @app.get("/api/fetchTicketmasterEvents")
    async def fetch_ticketmaster_events(
        request: Request,
        db: DbDep,
        settings: SettingsDep,
        countryCode: str | None = None,
        city: str | None = None,
        type: str | None = None,
        clearDatabase: bool = False,
    ):
        """Backfill the coming weeks of listings for one city and event type."""
        if not countryCode or not city or not type:
            raise HTTPException(
                status_code=400,
                detail="countryCode, city, and type are required parameters.",
            )
        source = request.app.state.source
        if source is None:
            raise HTTPException(
                status_code=503, detail="TICKETMASTER_API_KEY is not configured."
            )

        store = EventStore(db)
        if clearDatabase:
            await store.clear()

        orchestrator = IngestionOrchestrator(
            source,
            EventNormalizer(store, request.app.state.geocoder),
            store,
            max_pages=settings.max_pages,
            max_concurrency=settings.max_concurrency,
        )
        reports = await orchestrator.backfill(
            countryCode, city, type, weeks=settings.backfill_weeks
        )

        failed = [r for r in reports if r.status == IngestionStatus.FAILED]
        content = {
            "message": (
                f"Ticketmaster events fetch completed for {len(reports)} weeks."
                if not failed
                else f"Failed to fetch events from Ticketmaster for {len(failed)} "
                f"of {len(reports)} weeks."
            ),
            "persisted": sum(r.persisted for r in reports),
            "weeks": [r.model_dump(mode="json") for r in reports],
        }
        return JSONResponse(status_code=500 if failed else 200, content=content)


app = create_app()
