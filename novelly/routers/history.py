from fastapi import APIRouter, Depends
from typing import Any, Dict, List

from novelly.container import ServiceContainer
from novelly.core.auth import get_current_user
from novelly.dependencies import get_container
from novelly.schemas.history import RecHistoryItem

router = APIRouter(prefix="/history", tags=["history"])


@router.get("", response_model=List[RecHistoryItem])
async def get_history(
    user: Dict[str, Any] = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    """Past recommendation sessions, newest first."""
    return await container.history.get_history(user["id"])
