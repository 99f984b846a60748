import asyncio
import logging
import os
import signal
import sys
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.staticfiles import StaticFiles

import config
import database
import errors
from database import ensure_indexes, get_db
from ratelimit import RateLimiter, RateLimitMiddleware
from routers import bookings, reviews, tours, users, views

config.configure_logging()
logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": (
        "default-src 'self' https: http: data: ws:; base-uri 'self'; "
        "font-src 'self' https: http: data:; script-src 'self' https: http: blob:; "
        "style-src 'self' 'unsafe-inline' https: http:"
    ),
}


def _exit_on_loop_fault(loop, context):
    logger.critical(
        "UNHANDLED REJECTION! Shutting down... %s", context.get("message"), exc_info=context.get("exception")
    )
    app.state.faulted = True
    # uvicorn drains open connections on SIGTERM
    os.kill(os.getpid(), signal.SIGTERM)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = app.dependency_overrides.get(get_db, get_db)()
    ensure_indexes(db)
    logger.info("DB connection successful!")
    if app.state.exit_on_fault:
        asyncio.get_running_loop().set_exception_handler(_exit_on_loop_fault)
    yield
    database.close()
    logger.info("Server stopped")


# App and middleware
app = FastAPI(title="Tours API", lifespan=lifespan)
app.state.exit_on_fault = False
app.state.faulted = False
app.state.limiter = RateLimiter()

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    if config.is_production():
        return await call_next(request)
    start = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s %s %.1f ms", request.method, request.url.path, response.status_code, (time.perf_counter() - start) * 1000
    )
    return response


app.add_middleware(RateLimitMiddleware, limiter=app.state.limiter)

app.mount("/static", StaticFiles(directory=config.STATIC_DIR, check_dir=False), name="static")

errors.register(app)

# Routes
app.include_router(views.router)
app.include_router(tours.router)
app.include_router(reviews.tour_router)
for router in users.routers:
    app.include_router(router)
app.include_router(reviews.router)
app.include_router(bookings.router)


def run() -> None:
    import uvicorn

    app.state.exit_on_fault = True
    try:
        uvicorn.run(app, host="0.0.0.0", port=config.PORT)
    except Exception:
        logger.critical("UNCAUGHT EXCEPTION! Shutting down...", exc_info=True)
        sys.exit(1)
    if app.state.faulted:
        sys.exit(1)


if __name__ == "__main__":
    run()
