"""Token service for creating, updating and querying API tokens."""

import logging
import secrets
import string
import time
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from tokenhub.config import settings
from tokenhub.exceptions import MalformedPriorityListError, TokenValidationError
from tokenhub.models.token import (
    NEVER_EXPIRES,
    GroupPriority,
    Token,
    TokenStatus,
    normalize_group_priorities,
    parse_group_priorities,
)
from tokenhub.services.group_access import collect_groups_from_priorities, ensure_groups_accessible
from tokenhub.services.group_settings import GroupSettings, group_settings

logger = logging.getLogger(__name__)

KEY_ALPHABET = string.ascii_letters + string.digits
KEY_PREFIX = "sk-"

NAME_TOO_LONG = "令牌名称过长"
EXPIRED_CANNOT_ENABLE = "令牌已过期，无法启用，请先修改令牌过期时间，或者设置为永不过期"
EXHAUSTED_CANNOT_ENABLE = "令牌可用额度已用尽，无法启用，请先修改令牌剩余额度，或者设置为无限额度"
STATUS_REQUIRED = "令牌状态无效"


class PriorityIntent(str, Enum):
    """What a write request asks for the stored priority list."""

    LEAVE_UNCHANGED = "leave_unchanged"
    SET = "set"
    CLEAR = "clear"


class TokenRequest(BaseModel):
    """Token document accepted by create and update.

    ``group_priorities_array`` is the structured form of ``group_priorities``;
    when both are given the array wins.
    """

    id: int = 0
    name: str = ""
    status: Optional[TokenStatus] = None
    expired_time: int = NEVER_EXPIRES
    remain_quota: int = 0
    unlimited_quota: bool = False
    model_limits_enabled: bool = False
    model_limits: str = ""
    allow_ips: Optional[str] = None
    group: str = ""
    group_priorities: Optional[str] = None
    group_priorities_array: Optional[List[GroupPriority]] = None
    auto_smart_group: bool = False


def resolve_priority_intent(
    request: TokenRequest,
    is_update: bool
) -> Tuple[PriorityIntent, List[GroupPriority]]:
    """Reduce the two wire fields to a single intent.

    A non-empty array sets the list. Without one, a non-empty serialized
    ``group_priorities`` sets it too. On update, an explicitly sent empty
    ``group_priorities`` clears it. Anything else leaves it unchanged.

    Raises:
        MalformedPriorityListError: If a non-empty serialized list cannot be parsed.
    """
    if request.group_priorities_array:
        return PriorityIntent.SET, list(request.group_priorities_array)

    raw = request.group_priorities
    if raw:
        priorities = parse_group_priorities(raw)
        if priorities:
            return PriorityIntent.SET, priorities
        raw = ""

    if is_update and raw == "" and "group_priorities" in request.model_fields_set:
        return PriorityIntent.CLEAR, []
    return PriorityIntent.LEAVE_UNCHANGED, []


def generate_key(length: Optional[int] = None) -> str:
    """Random alphanumeric token secret, stored without the ``sk-`` prefix."""
    size = length or settings.token_key_length
    return "".join(secrets.choice(KEY_ALPHABET) for _ in range(size))


def get_timestamp() -> int:
    return int(time.time())


class TokenService:
    """Service for managing a user's API tokens."""

    def __init__(self, config: Optional[GroupSettings] = None):
        """Initialize token service.

        Args:
            config: Group configuration used to authorize group references.
        """
        self.config = config or group_settings

    def _check_name(self, name: str) -> None:
        if len(name) > settings.token_name_max_length:
            raise TokenValidationError(NAME_TOO_LONG)

    def _ensure_accessible(self, user_group: str, groups: List[str]) -> None:
        ensure_groups_accessible(user_group, groups, self.config)

    def _commit(self, db: Session, token: Token, action: str) -> None:
        try:
            db.commit()
            db.refresh(token)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to {action} token for user {token.user_id}: {e}")
            raise

    def create_token(self, db: Session, user_id: int, user_group: str, request: TokenRequest) -> Token:
        """Create a token with a fresh secret.

        Args:
            db: Database session.
            user_id: Owner.
            user_group: Owner's primary group, used to authorize group references.
            request: Token document.

        Returns:
            The created Token.

        Raises:
            TokenValidationError: If the name is too long.
            UnauthorizedGroupError: If a referenced group is not usable.
            InvalidPriorityListError: If the priority list fails validation.
            MalformedPriorityListError: If a serialized list cannot be parsed.
        """
        self._check_name(request.name)
        intent, priorities = resolve_priority_intent(request, is_update=False)

        now = get_timestamp()
        token = Token(
            user_id=user_id,
            name=request.name,
            key=generate_key(),
            status=TokenStatus.ENABLED,
            created_time=now,
            accessed_time=now,
            expired_time=request.expired_time,
            remain_quota=request.remain_quota,
            used_quota=0,
            unlimited_quota=request.unlimited_quota,
            model_limits_enabled=request.model_limits_enabled,
            model_limits=request.model_limits,
            allow_ips=request.allow_ips,
            group=request.group.strip(),
            group_priorities="",
            auto_smart_group=request.auto_smart_group,
        )

        if intent is PriorityIntent.SET:
            self._ensure_accessible(user_group, collect_groups_from_priorities(priorities))
            token.set_group_priorities(priorities)
        elif token.group:
            self._ensure_accessible(user_group, [token.group])

        db.add(token)
        self._commit(db, token, "create")
        logger.info(f"Token {token.id} created for user {user_id} (group: '{token.group}')")
        return token

    def update_token(
        self,
        db: Session,
        user_id: int,
        user_group: str,
        request: TokenRequest,
        status_only: bool = False
    ) -> Optional[Token]:
        """Update one of the user's tokens.

        All checks run before any field is touched, so a rejected update leaves
        the token unchanged.

        Args:
            db: Database session.
            user_id: Owner; tokens of other users are not found.
            user_group: Owner's primary group.
            request: Token document; ``request.id`` selects the token.
            status_only: Only apply ``request.status``.

        Returns:
            Updated Token, or None if not found.

        Raises:
            TokenValidationError: Name too long, missing status on a status-only
                update, or the token cannot be enabled.
            UnauthorizedGroupError: If a referenced group is not usable.
            InvalidPriorityListError: If the priority list fails validation.
            MalformedPriorityListError: If a serialized list cannot be parsed.
        """
        self._check_name(request.name)

        token = self.get_token(db, request.id, user_id)
        if not token:
            return None

        if request.status == TokenStatus.ENABLED:
            self._check_can_enable(token)

        if status_only:
            if request.status is None:
                raise TokenValidationError(STATUS_REQUIRED)
            token.status = request.status
            self._commit(db, token, "update")
            logger.info(f"Token {token.id} status set to {request.status}")
            return token

        intent, priorities = resolve_priority_intent(request, is_update=True)
        group = request.group.strip()
        normalized: List[GroupPriority] = []

        if intent is PriorityIntent.SET:
            self._ensure_accessible(user_group, collect_groups_from_priorities(priorities))
            normalized = normalize_group_priorities(priorities)
        elif intent is PriorityIntent.LEAVE_UNCHANGED and token.group_priorities:
            stored = token.stored_group_priorities()
            if stored:
                # Primary group follows the stored list
                group = stored[0].group
            elif group:
                self._ensure_accessible(user_group, [group])
        elif group:
            self._ensure_accessible(user_group, [group])

        token.name = request.name
        token.expired_time = request.expired_time
        token.remain_quota = request.remain_quota
        token.unlimited_quota = request.unlimited_quota
        token.model_limits_enabled = request.model_limits_enabled
        token.model_limits = request.model_limits
        token.allow_ips = request.allow_ips
        token.group = group
        token.auto_smart_group = request.auto_smart_group

        if intent is PriorityIntent.SET:
            token.set_group_priorities(normalized)
        elif intent is PriorityIntent.CLEAR:
            token.group_priorities = ""

        self._commit(db, token, "update")
        logger.info(f"Token {token.id} updated (group: '{token.group}', priorities: {intent.value})")
        return token

    def _check_can_enable(self, token: Token) -> None:
        """Reject enabling tokens that are expired or out of quota."""
        if (
            token.status == TokenStatus.EXPIRED
            and token.expired_time != NEVER_EXPIRES
            and token.expired_time <= get_timestamp()
        ):
            raise TokenValidationError(EXPIRED_CANNOT_ENABLE)
        if (
            token.status == TokenStatus.EXHAUSTED
            and token.remain_quota <= 0
            and not token.unlimited_quota
        ):
            raise TokenValidationError(EXHAUSTED_CANNOT_ENABLE)

    def get_token(self, db: Session, token_id: int, user_id: int) -> Optional[Token]:
        return db.query(Token).filter(Token.id == token_id, Token.user_id == user_id).first()

    def get_token_by_key(self, db: Session, key: str) -> Optional[Token]:
        """Find a token by its secret, with or without the ``sk-`` prefix."""
        if key.startswith(KEY_PREFIX):
            key = key[len(KEY_PREFIX):]
        if not key:
            return None
        return db.query(Token).filter(Token.key == key).first()

    def list_tokens(self, db: Session, user_id: int, page: int = 1, page_size: int = 10) -> Tuple[List[Token], int]:
        """Page through a user's tokens, newest first.

        Returns:
            Tuple of (tokens on the page, total token count).
        """
        page = max(page, 1)
        page_size = max(page_size, 1)
        query = db.query(Token).filter(Token.user_id == user_id)
        total = query.count()
        tokens = query.order_by(Token.id.desc()).offset((page - 1) * page_size).limit(page_size).all()
        return tokens, total

    def search_tokens(self, db: Session, user_id: int, keyword: str = "", key: str = "") -> List[Token]:
        """Tokens whose name starts with ``keyword`` and secret starts with ``key``."""
        query = db.query(Token).filter(Token.user_id == user_id)
        if keyword:
            query = query.filter(Token.name.startswith(keyword, autoescape=True))
        if key:
            if key.startswith(KEY_PREFIX):
                key = key[len(KEY_PREFIX):]
            query = query.filter(Token.key.startswith(key, autoescape=True))
        return query.order_by(Token.id.desc()).all()

    def delete_token(self, db: Session, token_id: int, user_id: int) -> bool:
        """Delete one of the user's tokens.

        Returns:
            True if deleted, False if token not found.
        """
        token = self.get_token(db, token_id, user_id)
        if not token:
            return False
        try:
            db.delete(token)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to delete token {token_id}: {e}")
            raise
        logger.info(f"Token {token_id} deleted by user {user_id}")
        return True

    def delete_tokens(self, db: Session, token_ids: List[int], user_id: int) -> int:
        """Delete several of the user's tokens; ids owned by others are skipped.

        Returns:
            Number of tokens deleted.
        """
        if not token_ids:
            return 0
        try:
            count = db.query(Token).filter(
                Token.id.in_(token_ids),
                Token.user_id == user_id,
            ).delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to batch delete tokens for user {user_id}: {e}")
            raise
        logger.info(f"Batch deleted {count} tokens for user {user_id}")
        return count

    @staticmethod
    def token_usage(token: Token) -> dict:
        """Usage summary; ``expires_at`` in seconds, 0 for tokens that never expire."""
        expires_at = 0 if token.expired_time == NEVER_EXPIRES else token.expired_time
        return {
            "object": "token_usage",
            "name": token.name,
            "total_granted": token.remain_quota + token.used_quota,
            "total_used": token.used_quota,
            "total_available": token.remain_quota,
            "unlimited_quota": token.unlimited_quota,
            "model_limits": token.model_limits_map(),
            "model_limits_enabled": token.model_limits_enabled,
            "expires_at": expires_at,
        }

    @staticmethod
    def credit_summary(token: Token) -> dict:
        """Credit summary; ``expires_at`` in milliseconds and ``total_used`` reserved as 0."""
        expires_at = 0 if token.expired_time == NEVER_EXPIRES else token.expired_time
        return {
            "object": "credit_summary",
            "total_granted": token.remain_quota,
            "total_used": 0,
            "total_available": token.remain_quota,
            "expires_at": expires_at * 1000,
        }
