from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from agency_core.core.auth import SERVICE_ROLE, AuthUser, get_current_user
from agency_core.core.config import get_settings
from agency_core.directory.api import router as directory_router
from agency_core.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(directory_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str]]:
    return {
        "sub": user.sub,
        "roles": user.roles,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if SERVICE_ROLE not in user.roles and "system.metrics.read" not in user.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
