"""FastAPI application entry point."""
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from jamqueue.config import settings
from jamqueue.database import Base, engine
from jamqueue.exceptions import JamQueueError
from jamqueue.services.broadcaster import JamBroadcaster

# Import routers
from jamqueue.routers import candidates, guests, jams, queue, ratings, songs, suggestions

# Import all models so Base.metadata knows about them
from jamqueue.models.jam import Jam                        # noqa: F401
from jamqueue.models.song import Song                      # noqa: F401
from jamqueue.models.instrument_slot import InstrumentSlot  # noqa: F401
from jamqueue.models.candidate import Candidate            # noqa: F401
from jamqueue.models.rating import Rating                  # noqa: F401
from jamqueue.models.guest import Guest                    # noqa: F401
from jamqueue.models.suggestion import Suggestion, SuggestionParticipant  # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Jam Session Queue",
    description="Live jam-session song queue: instrument slots, candidate lineups and ratings",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(guests.router, prefix="/api/events", tags=["Guests"])
app.include_router(jams.router, prefix="/api/events", tags=["Jams"])
app.include_router(songs.router, prefix="/api/events", tags=["Songs"])
app.include_router(candidates.router, prefix="/api/events", tags=["Candidates"])
app.include_router(ratings.router, prefix="/api/events", tags=["Ratings"])
app.include_router(queue.router, prefix="/api/events", tags=["Queue"])
app.include_router(suggestions.router, prefix="/api/events", tags=["Suggestions"])


@app.exception_handler(JamQueueError)
async def jam_queue_error_handler(request: Request, exc: JamQueueError):
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.on_event("startup")
def on_startup():
    """Create database tables (SQLite dev mode) and the process-wide broadcaster."""
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
    app.state.broadcaster = JamBroadcaster(heartbeat_interval=settings.JAM_HEARTBEAT_INTERVAL_SECONDS)


@app.on_event("shutdown")
def on_shutdown():
    broadcaster = getattr(app.state, "broadcaster", None)
    if broadcaster is not None:
        broadcaster.shutdown()


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
