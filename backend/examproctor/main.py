from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
import logging
import time

from examproctor.core.config import settings
from examproctor.core.database import create_db_and_tables
from examproctor.core.cache import cache
from examproctor.core.exceptions import ProctorError
from examproctor.api.v1.api import api_router
from examproctor.middleware.performance import PerformanceMiddleware
from examproctor.middleware.timezone import TimezoneMiddleware
from examproctor.services.realtime_notifier import manager

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.project_name,
    description="Proctored online exams: session lifecycle, grading and live monitoring",
    version="1.0.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(TimezoneMiddleware)

app.add_middleware(
    PerformanceMiddleware,
    slow_request_threshold=settings.slow_request_threshold
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProctorError)
async def proctor_error_handler(request: Request, exc: ProctorError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.kind}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)

    error_data = {
        'error': str(exc),
        'path': request.url.path,
        'method': request.method,
        'timestamp': time.time()
    }
    # best effort: CacheManager already logs and swallows Redis errors
    await cache.aset(f"error:{id(exc)}", error_data, ttl=3600)

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
            "request_id": getattr(request.state, 'request_id', 'unknown')
        }
    )


@app.on_event("startup")
async def startup_event():
    logger.info("Starting Exam Proctoring API...")

    create_db_and_tables()
    logger.info("Database initialized")

    if await cache.ahealth_check():
        logger.info("Cache connection established")
        manager.start_fanout_listener()
    else:
        logger.warning("Cache connection failed - running without cache")

    logger.info("Exam Proctoring API startup completed")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down Exam Proctoring API...")

    await manager.stop_fanout_listener()
    try:
        await cache.aclose()
        logger.info("Cache connections closed")
    except Exception as e:
        logger.error(f"Error closing cache connections: {e}")

    logger.info("Exam Proctoring API shutdown completed")


app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    return {"status": "ok", "message": "API is healthy"}


@app.get("/")
async def read_root():
    return {
        "message": "Exam Proctoring API",
        "version": "1.0.0",
    }
