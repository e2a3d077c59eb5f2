"""Per-request key/value context shared between auth, routing and logging."""

from enum import Enum
from typing import Any, Dict, Optional


class ContextKey(str, Enum):
    """Keys written to and read from a ``RequestContext``."""

    USER_ID = "id"
    USER_GROUP = "user_group"
    TOKEN_ID = "token_id"
    USING_GROUP = "using_group"
    SELECTED_GROUP = "selected_group"
    AUTO_SMART_GROUP_USED = "auto_smart_group_used"
    AUTO_GROUP = "auto_group"


class RequestContext:
    """Mutable context for a single request. Not shared across threads."""

    def __init__(self, values: Optional[Dict[ContextKey, Any]] = None):
        self._values: Dict[ContextKey, Any] = dict(values or {})

    def get(self, key: ContextKey, default: Any = None) -> Any:
        return self._values.get(key, default)

    def get_str(self, key: ContextKey) -> str:
        value = self._values.get(key)
        return value if isinstance(value, str) else ""

    def get_bool(self, key: ContextKey) -> bool:
        return bool(self._values.get(key, False))

    def set(self, key: ContextKey, value: Any) -> None:
        self._values[key] = value

    def __contains__(self, key: ContextKey) -> bool:
        return key in self._values

    def as_dict(self) -> Dict[str, Any]:
        return {key.value: value for key, value in self._values.items()}

    def __repr__(self) -> str:
        return f"RequestContext({self.as_dict()!r})"
