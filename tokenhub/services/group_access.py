"""Authorization of group references against a user's usable groups."""

import logging
from typing import Iterable, List, Optional

from tokenhub.exceptions import UnauthorizedGroupError
from tokenhub.models.token import GroupPriority
from tokenhub.services.group_settings import GroupSettings, group_settings

logger = logging.getLogger(__name__)

AUTO_GROUP = "auto"


def collect_groups_from_priorities(priorities: Iterable[GroupPriority]) -> List[str]:
    """Distinct trimmed group names in first-seen order, skipping empty ones."""
    result = []
    seen = set()
    for priority in priorities:
        name = priority.group.strip()
        if not name or name in seen:
            continue
        seen.add(name)
        result.append(name)
    return result


def ensure_groups_accessible(
    user_group: str,
    groups: Iterable[str],
    config: Optional[GroupSettings] = None
) -> None:
    """Check every named group is usable by ``user_group``.

    Empty names are ignored. The ``auto`` sentinel is accepted when at least
    one configured auto group is usable by ``user_group``. Groups are checked
    in input order, so the first offender is the one reported.

    Raises:
        UnauthorizedGroupError: For the first group outside the usable set.
    """
    names = [name.strip() for name in groups]
    if not names:
        return

    config = config or group_settings
    usable = config.get_user_usable_groups(user_group)
    for name in names:
        if not name:
            continue
        if name == AUTO_GROUP and config.get_user_auto_groups(user_group):
            continue
        if name not in usable:
            logger.info(f"Rejected group '{name}' for user group '{user_group}'")
            raise UnauthorizedGroupError(name)
