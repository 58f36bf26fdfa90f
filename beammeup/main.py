"""FastAPI application entry point."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from beammeup.audit.routes import router as audit_router
from beammeup.auth.routes import router as auth_router
from beammeup.auth.routes import setup_router
from beammeup.beammp.routes import router as config_router
from beammeup.config import get_settings
from beammeup.db.session import get_session, init_db
from beammeup.diagnostics.routes import router as diagnostics_router
from beammeup.errors import BeamMeUpError
from beammeup.limiter import limiter
from beammeup.mods.routes import router as mods_router
from beammeup.server.routes import router as server_router
from beammeup.users.routes import router as users_router
from beammeup.users.service import ensure_owner_exists

log = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 5.0


def _setup_logging() -> None:
    """Configure logging from settings (stderr always; optional file)."""
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root = logging.getLogger("beammeup")
    root.setLevel(level)
    root.handlers.clear()
    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root.addHandler(sh)
    if settings.log_file and settings.log_file.strip():
        try:
            fh = logging.FileHandler(settings.log_file, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(fmt)
            root.addHandler(fh)
            root.info("Logging to file %s", settings.log_file)
        except OSError as e:
            root.warning("Could not open log file %s: %s", settings.log_file, e)


_setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and bootstrap the owner on startup."""
    log.info("Startup: initializing database")
    await init_db()
    async with get_session() as session:
        await ensure_owner_exists(session)
    log.info("Startup complete")
    yield
    log.info("Shutdown")


app = FastAPI(title="BeamMeUp API", version="0.1.0", lifespan=lifespan)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses and log slow requests."""
    started = time.monotonic()
    response = await call_next(request)
    elapsed = time.monotonic() - started
    if elapsed > SLOW_REQUEST_SECONDS:
        log.warning("Slow request %s %s took %.1fs", request.method, request.url.path, elapsed)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    return response


@app.exception_handler(BeamMeUpError)
async def beammeup_error_handler(request: Request, exc: BeamMeUpError):
    """Render service errors as {detail, code[, errors]}; 5xx details stay generic outside development."""
    body = exc.to_dict()
    if exc.status_code >= 500:
        log.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        if not get_settings().is_development:
            body["detail"] = "An internal error occurred"
    else:
        log.warning("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and params are 400 VALIDATION_ERROR with per-field issues."""
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        message = str(err.get("msg", "Invalid value")).removeprefix("Value error, ")
        errors.append({"field": ".".join(loc) or "body", "message": message})
    return JSONResponse(
        status_code=400,
        content={"detail": "Validation failed", "code": "VALIDATION_ERROR", "errors": errors},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Return generic 500 without leaking stack trace or internals."""
    if isinstance(exc, HTTPException):
        raise exc
    log.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(auth_router)
app.include_router(setup_router)
app.include_router(users_router)
app.include_router(audit_router)
app.include_router(config_router)
app.include_router(mods_router)
app.include_router(server_router)
app.include_router(diagnostics_router)


@app.get("/health")
@limiter.exempt
def health() -> JSONResponse:
    """Health check for Docker. Exempt from rate limiting."""
    return JSONResponse(content={"status": "ok"})
