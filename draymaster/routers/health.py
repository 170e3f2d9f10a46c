from fastapi import APIRouter

from draymaster.core.config import get_settings

router = APIRouter()


@router.get("/health", summary="Health check", tags=["Health"])
async def health_check() -> dict[str, str]:
    settings = get_settings()
    return {"status": "ok", "service": settings.project_name, "environment": settings.environment}
