from fastapi import APIRouter

from .endpoints import admin, auth, faculty, health, proctoring, realtime, student

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(student.router, prefix="/student", tags=["student"])
api_router.include_router(proctoring.router, prefix="/proctoring", tags=["proctoring"])
api_router.include_router(faculty.router, prefix="/faculty", tags=["faculty"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(realtime.router, prefix="/realtime", tags=["realtime"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
