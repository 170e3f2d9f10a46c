from fastapi import APIRouter

from draymaster.routers import automation

api_router = APIRouter()
api_router.include_router(automation.router, prefix="/automation", tags=["Automation"])
