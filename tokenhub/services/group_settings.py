"""Process-wide group configuration: usable groups, cost ratios and auto groups."""

import copy
import logging
import threading
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

USER_GROUP_DESCRIPTION = "用户分组"
REMOVE_PREFIX = "-:"
ADD_PREFIX = "+:"

DEFAULT_USABLE_GROUPS = {
    "default": "默认分组",
    "vip": "vip分组",
}
DEFAULT_GROUP_RATIOS = {
    "default": 1.0,
    "vip": 1.0,
    "svip": 1.0,
}
DEFAULT_AUTO_GROUPS = ["default"]


class GroupSettings:
    """Read-mostly snapshot of group configuration.

    Readers always get copies, and ``update`` swaps in a new snapshot under a
    lock, so no lock is held while a caller works with the data.
    """

    def __init__(
        self,
        usable_groups: Optional[Dict[str, str]] = None,
        special_usable_groups: Optional[Dict[str, Dict[str, str]]] = None,
        group_ratios: Optional[Dict[str, float]] = None,
        auto_groups: Optional[List[str]] = None
    ):
        self._lock = threading.Lock()
        self._usable_groups = dict(DEFAULT_USABLE_GROUPS if usable_groups is None else usable_groups)
        self._special_usable_groups = copy.deepcopy(special_usable_groups or {})
        self._group_ratios = {
            name: float(ratio)
            for name, ratio in (DEFAULT_GROUP_RATIOS if group_ratios is None else group_ratios).items()
        }
        self._auto_groups = list(DEFAULT_AUTO_GROUPS if auto_groups is None else auto_groups)

    def update(
        self,
        usable_groups: Optional[Dict[str, str]] = None,
        special_usable_groups: Optional[Dict[str, Dict[str, str]]] = None,
        group_ratios: Optional[Dict[str, float]] = None,
        auto_groups: Optional[List[str]] = None
    ) -> None:
        """Replace any of the configured tables. ``None`` leaves a table unchanged.

        All tables are converted first; if any conversion fails nothing is
        replaced.
        """
        new_usable = None if usable_groups is None else dict(usable_groups)
        new_special = None if special_usable_groups is None else copy.deepcopy(special_usable_groups)
        new_ratios = None if group_ratios is None else {
            name: float(ratio) for name, ratio in group_ratios.items()
        }
        new_auto = None if auto_groups is None else list(auto_groups)

        with self._lock:
            if new_usable is not None:
                self._usable_groups = new_usable
            if new_special is not None:
                self._special_usable_groups = new_special
            if new_ratios is not None:
                self._group_ratios = new_ratios
            if new_auto is not None:
                self._auto_groups = new_auto

    def load_from_dict(self, data: Dict[str, Any]) -> None:
        """Apply a parsed configuration document."""
        self.update(
            usable_groups=data.get("usable_groups"),
            special_usable_groups=data.get("special_usable_groups"),
            group_ratios=data.get("group_ratios"),
            auto_groups=data.get("auto_groups"),
        )

    def load_from_yaml(self, path: str) -> None:
        """Load group configuration from a YAML file.

        Args:
            path: File with any of the keys ``usable_groups``,
                ``special_usable_groups``, ``group_ratios``, ``auto_groups``.

        Raises:
            OSError: If the file cannot be read.
            yaml.YAMLError: If the file is not valid YAML.
            ValueError: If the document is not a mapping.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Group configuration in {path} must be a mapping")
        self.load_from_dict(data)
        logger.info(
            f"Loaded group configuration from {path}: "
            f"{len(self._usable_groups)} usable groups, {len(self._group_ratios)} ratios, "
            f"auto groups {self._auto_groups}"
        )

    def get_usable_groups_copy(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._usable_groups)

    def get_special_usable_groups(self, user_group: str) -> Optional[Dict[str, str]]:
        with self._lock:
            special = self._special_usable_groups.get(user_group)
            return dict(special) if special is not None else None

    def get_group_ratio_copy(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._group_ratios)

    def get_auto_groups(self) -> List[str]:
        with self._lock:
            return list(self._auto_groups)

    def get_user_usable_groups(self, user_group: str) -> Dict[str, str]:
        """Groups a user in ``user_group`` may reference, in enumeration order.

        Starts from the global usable groups, applies the user group's special
        entries (``-:name`` removes, ``+:name`` or a bare name adds) and
        finally adds ``user_group`` itself when missing.
        """
        groups = self.get_usable_groups_copy()
        if not user_group:
            return groups

        special = self.get_special_usable_groups(user_group)
        if special:
            for entry, description in special.items():
                if entry.startswith(REMOVE_PREFIX):
                    groups.pop(entry[len(REMOVE_PREFIX):], None)
                elif entry.startswith(ADD_PREFIX):
                    groups[entry[len(ADD_PREFIX):]] = description
                else:
                    groups[entry] = description

        if user_group not in groups:
            groups[user_group] = USER_GROUP_DESCRIPTION
        return groups

    def get_user_auto_groups(self, user_group: str) -> List[str]:
        """Configured auto groups, in order, restricted to the user's usable set."""
        usable = self.get_user_usable_groups(user_group)
        return [group for group in self.get_auto_groups() if group in usable]


group_settings = GroupSettings()
