"""Group API endpoints."""

from fastapi import APIRouter, Depends

from tokenhub.api.deps import get_current_user
from tokenhub.api.tokens import ApiResponse
from tokenhub.models.user import User
from tokenhub.services.group_access import AUTO_GROUP
from tokenhub.services.group_settings import group_settings

router = APIRouter(prefix="/api/user", tags=["groups"])

AUTO_GROUP_DESCRIPTION = "自动选择"
AUTO_GROUP_RATIO = "自动"


@router.get("/self/groups", response_model=ApiResponse)
async def get_user_groups(user: User = Depends(get_current_user)):
    """Groups the caller may put on a token, with ratio and description.

    ``auto`` is listed when at least one configured auto group is usable.
    """
    user_group = user.group or ""
    ratios = group_settings.get_group_ratio_copy()
    groups = {}
    for name, description in group_settings.get_user_usable_groups(user_group).items():
        groups[name] = {
            "ratio": ratios.get(name),
            "desc": description,
        }
    if AUTO_GROUP not in groups and group_settings.get_user_auto_groups(user_group):
        groups[AUTO_GROUP] = {
            "ratio": AUTO_GROUP_RATIO,
            "desc": AUTO_GROUP_DESCRIPTION,
        }
    return ApiResponse(success=True, data=groups)
