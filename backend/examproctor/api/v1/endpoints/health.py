import time

from fastapi import APIRouter, Depends
from sqlalchemy import text

from ....core.cache import cache
from ....core.database import SessionLocal
from ....models.user import User
from ....services.realtime_notifier import manager
from ...deps import get_current_admin

router = APIRouter()


@router.get("/")
async def get_basic_health():
    """Basic health status - no authentication required"""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "service": "exam-proctoring-api"
    }


@router.get("/system")
async def get_system_health(current_user: User = Depends(get_current_admin)):
    """Database, cache and host health for administrators"""
    health_status = {
        "timestamp": time.time(),
        "overall_status": "healthy",
        "services": {},
        "realtime": {"rooms": len(manager.rooms)},
    }

    try:
        start_time = time.time()
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        health_status["services"]["database"] = {
            "status": "healthy",
            "response_time": round((time.time() - start_time) * 1000, 2)
        }
    except Exception as e:
        health_status["services"]["database"] = {"status": "error", "error": str(e)}
        health_status["overall_status"] = "unhealthy"

    cache_health = await cache.ahealth_check()
    health_status["services"]["cache"] = {"status": "healthy" if cache_health else "unavailable"}
    if not cache_health and health_status["overall_status"] == "healthy":
        health_status["overall_status"] = "degraded"

    try:
        import psutil
        memory = psutil.virtual_memory()
        health_status["performance"] = {
            "cpu_usage_percent": psutil.cpu_percent(interval=0),
            "memory_usage_percent": memory.percent,
            "disk_usage_percent": psutil.disk_usage('/').percent,
        }
    except Exception as e:
        health_status["performance"] = {"error": str(e)}

    return health_status
