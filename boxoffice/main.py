import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from boxoffice.core.config import settings
from boxoffice.core.logger_config import configure_logging
from boxoffice.api.v1.api import api_router
from boxoffice.db.session import SessionLocal
from boxoffice.services.errors import BookingError
from boxoffice.services.sweeper import HoldSweeper

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if settings.SWEEPER_IN_PROCESS:
        sweeper = HoldSweeper(SessionLocal, settings.SWEEPER_INTERVAL_SECONDS)
        sweeper.start()
    app.state.sweeper = sweeper
    try:
        yield
    finally:
        if sweeper:
            sweeper.stop()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# CORS: use CORS_ORIGINS from env in production; default to localhost for dev
_default_origins = [
    "http://127.0.0.1:8081", "http://localhost:8081",
    "http://127.0.0.1:19006", "http://localhost:19006",
]
_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] if settings.CORS_ORIGINS else _default_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s -> %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


app.include_router(api_router)


@app.get("/health")
def health():
    return {"status": "ok"}
