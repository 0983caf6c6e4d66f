from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from leadops.activity.api import router as activities_router
from leadops.core.auth import AuthUser, get_current_user
from leadops.core.config import get_settings
from leadops.hierarchy.api import router as hierarchy_router
from leadops.hierarchy.api import scope_router
from leadops.leads.api import router as leads_router
from leadops.metrics import generate_metrics_payload, metrics_content_type
from leadops.principals.api import router as principals_router
from leadops.reminders.api import follow_ups_router
from leadops.reminders.api import router as reminders_router
from leadops.statuses.api import router as statuses_router
from leadops.tasks.api import router as tasks_router

router = APIRouter()
router.include_router(principals_router)
router.include_router(hierarchy_router)
router.include_router(scope_router)
router.include_router(statuses_router)
router.include_router(leads_router)
router.include_router(tasks_router)
router.include_router(reminders_router)
router.include_router(follow_ups_router)
router.include_router(activities_router)


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
    if "system.metrics.read" not in user.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
