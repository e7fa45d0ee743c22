"""CourtSlot API application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from courtslot.core.config import settings
from courtslot.routes import auto_approval, bookings, owner
from courtslot.services.errors import BookingError, InvalidRequest, NotFound, QuotaExceeded, SlotUnavailable

# Most specific first: InvalidTransition is an InvalidRequest
ERROR_STATUS_CODES: list[tuple[type[BookingError], int]] = [
    (SlotUnavailable, status.HTTP_409_CONFLICT),
    (QuotaExceeded, status.HTTP_403_FORBIDDEN),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidRequest, status.HTTP_422_UNPROCESSABLE_ENTITY),
]


def status_code_for(exc: BookingError) -> int:
    for error_cls, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_cls):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    yield


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    docs_url=f"{settings.api_prefix}/docs",
    openapi_url=f"{settings.api_prefix}/openapi.json",
    lifespan=lifespan,
)

# CORS - permissive in dev, lock down in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Business errors use the same detail shape as rule violations."""
    detail = {"rule": exc.rule, "message": exc.message}
    if isinstance(exc, SlotUnavailable) and exc.slot_ids:
        detail["slot_ids"] = exc.slot_ids
    return JSONResponse(status_code=status_code_for(exc), content={"detail": [detail]})


# Mount routes
app.include_router(bookings.router, prefix=settings.api_prefix)
app.include_router(owner.router, prefix=settings.api_prefix)
app.include_router(auto_approval.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
