"""Tests for group authorization."""

import pytest

from tokenhub.exceptions import UnauthorizedGroupError
from tokenhub.models.token import GroupPriority
from tokenhub.services.group_access import collect_groups_from_priorities, ensure_groups_accessible
from tokenhub.services.group_settings import GroupSettings


@pytest.fixture
def config():
    return GroupSettings(
        usable_groups={"default": "默认分组", "vip": "vip分组"},
        group_ratios={"default": 1, "vip": 1},
        auto_groups=["default"],
    )


class TestEnsureGroupsAccessible:
    """Test ensure_groups_accessible."""

    def test_empty_groups(self, config):
        """Test no groups is always allowed."""
        ensure_groups_accessible("default", [], config)

    def test_all_usable(self, config):
        """Test usable groups pass."""
        ensure_groups_accessible("default", ["vip", "default"], config)

    def test_user_group_is_usable(self, config):
        """Test a user's own group is usable even if not configured."""
        ensure_groups_accessible("partner", ["partner"], config)

    def test_unknown_group_rejected(self, config):
        """Test a group outside the usable set is named in the error."""
        only_default = GroupSettings(usable_groups={"default": "默认分组"})

        with pytest.raises(UnauthorizedGroupError) as exc_info:
            ensure_groups_accessible("default", ["unknown"], only_default)

        assert exc_info.value.group == "unknown"
        assert str(exc_info.value) == "无权访问分组: unknown"

    def test_first_offender_reported(self, config):
        """Test groups are checked in input order."""
        with pytest.raises(UnauthorizedGroupError) as exc_info:
            ensure_groups_accessible("default", ["vip", "zeta", "alpha"], config)

        assert exc_info.value.group == "zeta"

    def test_empty_names_ignored(self, config):
        """Test blank entries are skipped."""
        ensure_groups_accessible("default", ["", "  ", "vip"], config)

    def test_names_trimmed(self, config):
        """Test surrounding whitespace is ignored."""
        ensure_groups_accessible("default", [" vip "], config)

    def test_auto_sentinel_allowed_when_configured(self, config):
        """Test auto is usable when an auto group is usable."""
        ensure_groups_accessible("default", ["auto"], config)

    def test_auto_sentinel_rejected_when_disabled(self):
        """Test auto is rejected without auto groups."""
        config = GroupSettings(usable_groups={"default": "默认分组"}, auto_groups=[])

        with pytest.raises(UnauthorizedGroupError, match="auto"):
            ensure_groups_accessible("default", ["auto"], config)


class TestCollectGroups:
    """Test collect_groups_from_priorities."""

    def test_distinct_trimmed_in_order(self):
        """Test names are trimmed, deduplicated and kept in first-seen order."""
        priorities = [
            GroupPriority(group=" vip ", priority=2),
            GroupPriority(group="", priority=1),
            GroupPriority(group="default", priority=3),
            GroupPriority(group="vip", priority=4),
        ]

        assert collect_groups_from_priorities(priorities) == ["vip", "default"]
