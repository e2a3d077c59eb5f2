"""Token API endpoints."""

import logging
from typing import Any, List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tokenhub.api.deps import get_current_user, get_request_context, parse_bearer_key
from tokenhub.database.database import get_db
from tokenhub.exceptions import (
    ChannelSelectionError,
    ChannelStoreError,
    InvalidPriorityListError,
    MalformedPriorityListError,
    TokenHubError,
)
from tokenhub.models.token import GroupPriority, Token
from tokenhub.models.user import User
from tokenhub.services.channel_select import ChannelSelector
from tokenhub.services.channel_store import DatabaseChannelStore
from tokenhub.services.request_context import ContextKey, RequestContext
from tokenhub.services.token_service import TokenRequest, TokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/token", tags=["tokens"])
usage_router = APIRouter(tags=["usage"])

PRIORITY_ERROR_PREFIX = "分组优先级设置失败: "
TOKEN_NOT_FOUND = "令牌不存在"
BAD_PARAMETERS = "参数错误"


class ApiResponse(BaseModel):
    """Standard response envelope."""

    success: bool
    message: str = ""
    data: Optional[Any] = None


class TokenResponse(BaseModel):
    """Token as returned to its owner."""

    id: int
    user_id: int
    key: str
    status: int
    name: str
    created_time: int
    accessed_time: int
    expired_time: int
    remain_quota: int
    used_quota: int
    unlimited_quota: bool
    model_limits_enabled: bool
    model_limits: str
    allow_ips: Optional[str] = None
    group: str
    group_priorities: str
    group_priorities_array: List[GroupPriority] = []
    auto_smart_group: bool


class TokenPage(BaseModel):
    """One page of tokens."""

    page: int
    page_size: int
    total: int
    items: List[TokenResponse]


class TokenBatch(BaseModel):
    """Batch delete request."""

    ids: List[int] = []


class ChannelPreview(BaseModel):
    """Channel the selector would route a request to."""

    channel_id: int
    channel_name: str
    group: str
    auto_smart_group_used: bool
    auto_group: Optional[str] = None


def token_to_response(token: Token) -> TokenResponse:
    return TokenResponse(
        id=token.id,
        user_id=token.user_id,
        key=token.key,
        status=token.status,
        name=token.name,
        created_time=token.created_time,
        accessed_time=token.accessed_time,
        expired_time=token.expired_time,
        remain_quota=token.remain_quota,
        used_quota=token.used_quota,
        unlimited_quota=token.unlimited_quota,
        model_limits_enabled=token.model_limits_enabled,
        model_limits=token.model_limits or "",
        allow_ips=token.allow_ips,
        group=token.group or "",
        group_priorities=token.group_priorities or "",
        group_priorities_array=token.stored_group_priorities(),
        auto_smart_group=token.auto_smart_group,
    )


def rejection(error: TokenHubError) -> ApiResponse:
    """Envelope for a business rejection."""
    if isinstance(error, (InvalidPriorityListError, MalformedPriorityListError)):
        return ApiResponse(success=False, message=f"{PRIORITY_ERROR_PREFIX}{error}")
    return ApiResponse(success=False, message=str(error))


def get_token_service() -> TokenService:
    """Get token service instance."""
    return TokenService()


@router.get("/", response_model=ApiResponse)
async def list_tokens(
    p: int = Query(1),
    page_size: int = Query(10),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TokenService = Depends(get_token_service)
):
    """List the caller's tokens, newest first."""
    try:
        tokens, total = service.list_tokens(db, user.id, p, page_size)
        page = TokenPage(
            page=max(p, 1),
            page_size=max(page_size, 1),
            total=total,
            items=[token_to_response(t) for t in tokens],
        )
        return ApiResponse(success=True, data=page)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list tokens: {str(e)}")


@router.get("/search", response_model=ApiResponse)
async def search_tokens(
    keyword: str = Query(""),
    token: str = Query(""),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TokenService = Depends(get_token_service)
):
    """Search the caller's tokens by name prefix and key prefix."""
    try:
        tokens = service.search_tokens(db, user.id, keyword=keyword, key=token)
        return ApiResponse(success=True, data=[token_to_response(t) for t in tokens])
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to search tokens: {str(e)}")


@router.get("/{token_id}", response_model=ApiResponse)
async def get_token(
    token_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TokenService = Depends(get_token_service)
):
    """Get one of the caller's tokens."""
    token = service.get_token(db, token_id, user.id)
    if not token:
        return ApiResponse(success=False, message=TOKEN_NOT_FOUND)
    return ApiResponse(success=True, data=token_to_response(token))


@router.post("/", response_model=ApiResponse)
async def create_token(
    request: TokenRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TokenService = Depends(get_token_service)
):
    """Create a token.

    Group references are authorized against the caller's usable groups before
    the priority list is validated and stored.
    """
    try:
        service.create_token(db, user.id, user.group or "", request)
        return ApiResponse(success=True)
    except TokenHubError as e:
        return rejection(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create token: {str(e)}")


@router.put("/", response_model=ApiResponse)
async def update_token(
    request: TokenRequest,
    status_only: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TokenService = Depends(get_token_service)
):
    """Update a token, or only its status when ``status_only`` is set.

    Sending ``group_priorities: ""`` without ``group_priorities_array`` clears
    the stored priority list.
    """
    try:
        token = service.update_token(
            db,
            user.id,
            user.group or "",
            request,
            status_only=bool(status_only),
        )
        if not token:
            return ApiResponse(success=False, message=TOKEN_NOT_FOUND)
        return ApiResponse(success=True, data=token_to_response(token))
    except TokenHubError as e:
        return rejection(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update token: {str(e)}")


@router.delete("/{token_id}", response_model=ApiResponse)
async def delete_token(
    token_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TokenService = Depends(get_token_service)
):
    """Delete one of the caller's tokens."""
    try:
        if not service.delete_token(db, token_id, user.id):
            return ApiResponse(success=False, message=TOKEN_NOT_FOUND)
        return ApiResponse(success=True)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to delete token: {str(e)}")


@router.post("/batch", response_model=ApiResponse)
async def delete_token_batch(
    batch: TokenBatch,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: TokenService = Depends(get_token_service)
):
    """Delete several of the caller's tokens; returns how many were removed."""
    if not batch.ids:
        return ApiResponse(success=False, message=BAD_PARAMETERS)
    try:
        count = service.delete_tokens(db, batch.ids, user.id)
        return ApiResponse(success=True, data=count)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to delete tokens: {str(e)}")


@router.get("/{token_id}/channel", response_model=ApiResponse)
async def preview_channel(
    token_id: int,
    model: str = Query(...),
    retry: int = Query(0),
    user: User = Depends(get_current_user),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    service: TokenService = Depends(get_token_service)
):
    """Show which channel a request for ``model`` with this token would use."""
    token = service.get_token(db, token_id, user.id)
    if not token:
        return ApiResponse(success=False, message=TOKEN_NOT_FOUND)

    ctx.set(ContextKey.TOKEN_ID, token.id)
    selector = ChannelSelector(DatabaseChannelStore(db))
    try:
        channel, group = selector.select_channel(ctx, token, model, retry)
    except (ChannelSelectionError, ChannelStoreError) as e:
        return ApiResponse(success=False, message=str(e))

    return ApiResponse(success=True, data=ChannelPreview(
        channel_id=channel.id,
        channel_name=channel.name,
        group=group,
        auto_smart_group_used=ctx.get_bool(ContextKey.AUTO_SMART_GROUP_USED),
        auto_group=ctx.get(ContextKey.AUTO_GROUP),
    ))


def _token_from_authorization(authorization: Optional[str], db: Session, service: TokenService):
    """Resolve a bearer key to a token, or an error response to return as is."""
    key = parse_bearer_key(authorization)
    if not authorization:
        return None, JSONResponse(status_code=401, content={"success": False, "message": "No Authorization header"})
    if key is None:
        return None, JSONResponse(status_code=401, content={"success": False, "message": "Invalid Bearer token"})
    token = service.get_token_by_key(db, key)
    if not token:
        return None, JSONResponse(status_code=200, content={"success": False, "message": TOKEN_NOT_FOUND})
    return token, None


@usage_router.get("/api/usage/token")
async def get_token_usage(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    service: TokenService = Depends(get_token_service)
):
    """Usage summary for the bearer token."""
    token, error = _token_from_authorization(authorization, db, service)
    if error is not None:
        return error
    return {"code": True, "message": "ok", "data": service.token_usage(token)}


@usage_router.get("/dashboard/billing/credit_summary")
async def get_credit_summary(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    service: TokenService = Depends(get_token_service)
):
    """OpenAI-style credit summary for the bearer token."""
    token, error = _token_from_authorization(authorization, db, service)
    if error is not None:
        return error
    return service.credit_summary(token)
