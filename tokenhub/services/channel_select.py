"""Channel selection by token group priority with ratio-ordered fallback."""

import logging
from typing import List, Optional, Tuple

from tokenhub.exceptions import (
    AllGroupsFailedError,
    AutoGroupsDisabledError,
    ChannelStoreError,
    MalformedPriorityListError,
    NoAvailableFallbackGroupError,
    NoChannelAvailableError,
)
from tokenhub.models.channel import Channel
from tokenhub.models.token import GroupPriority, Token
from tokenhub.services.channel_store import ChannelStore
from tokenhub.services.group_access import AUTO_GROUP
from tokenhub.services.group_settings import GroupSettings, group_settings
from tokenhub.services.request_context import ContextKey, RequestContext

logger = logging.getLogger(__name__)


class ChannelSelector:
    """Selects an upstream channel for a token and model.

    The token's priority list is walked in order. When every listed group
    fails and the token has ``auto_smart_group`` enabled, the user's other
    usable groups are tried from the cheapest ratio up.
    """

    def __init__(self, store: ChannelStore, config: Optional[GroupSettings] = None):
        """Initialize channel selector.

        Args:
            store: Channel store queried once per attempted group.
            config: Group configuration; defaults to the process-wide settings.
        """
        self.store = store
        self.config = config or group_settings

    def select_channel(
        self,
        ctx: RequestContext,
        token: Token,
        model_name: str,
        retry: int = 0
    ) -> Tuple[Channel, str]:
        """Select a channel for ``model_name`` on behalf of ``token``.

        On success ``ctx`` carries ``selected_group``, ``using_group`` and
        ``auto_smart_group_used``.

        Args:
            ctx: Request context carrying at least ``user_group``.
            token: The caller's token.
            model_name: Requested model.
            retry: Channel store retry counter, passed through unchanged.

        Returns:
            Tuple of (channel, group it was selected under).

        Raises:
            AllGroupsFailedError: No listed or fallback group had a channel.
            NoAvailableFallbackGroupError: Fallback had no candidate groups.
            ChannelStoreError: The single-group attempt failed (no list, or
                the stored list is malformed).
            AutoGroupsDisabledError: A single-group ``auto`` attempt with no
                auto groups configured.
        """
        try:
            priorities = token.get_group_priorities()
        except MalformedPriorityListError as e:
            logger.error(f"Failed to parse group priorities for token {token.id}: {e}")
            fallback_group = ctx.get_str(ContextKey.USING_GROUP) or token.group or ""
            return self._select_from_single_group(ctx, fallback_group, model_name, retry)

        base_group = (
            ctx.get_str(ContextKey.USING_GROUP)
            or token.group
            or ctx.get_str(ContextKey.USER_GROUP)
        )

        if not priorities:
            return self._select_from_single_group(ctx, base_group, model_name, retry)

        for priority in priorities:
            logger.debug(f"Trying group: {priority.group} (priority: {priority.priority})")
            try:
                channel, selected_group = self._get_channel(ctx, priority.group, model_name, retry)
            except (ChannelStoreError, AutoGroupsDisabledError) as e:
                logger.debug(f"Group {priority.group} failed: {e}")
                continue

            if channel is not None:
                logger.info(f"Selected channel {channel.id} from group: {selected_group}")
                self._set_selection(ctx, selected_group, auto_smart=False)
                return channel, selected_group
            logger.debug(f"Group {priority.group} has no channel for model {model_name}")

        logger.warning("All configured groups failed")

        if token.auto_smart_group:
            logger.info("Auto smart group enabled, trying fallback groups by ratio")
            return self._select_by_ratio(ctx, model_name, retry, priorities)

        raise AllGroupsFailedError()

    def _select_by_ratio(
        self,
        ctx: RequestContext,
        model_name: str,
        retry: int,
        exclude: List[GroupPriority]
    ) -> Tuple[Channel, str]:
        """Try the user's remaining usable groups, cheapest ratio first."""
        user_group = ctx.get_str(ContextKey.USER_GROUP)
        usable_groups = self.config.get_user_usable_groups(user_group)
        ratios = self.config.get_group_ratio_copy()
        excluded = {p.group for p in exclude}

        candidates = []
        for group in usable_groups:
            if group in excluded:
                continue
            if group not in ratios:
                continue
            candidates.append((group, ratios[group]))

        if not candidates:
            raise NoAvailableFallbackGroupError()

        # Stable: equal ratios keep usable-group order
        candidates.sort(key=lambda item: item[1])

        for group, ratio in candidates:
            logger.debug(f"Auto smart group trying: {group} (ratio: {ratio:.2f})")
            try:
                channel, selected_group = self._get_channel(ctx, group, model_name, retry)
            except (ChannelStoreError, AutoGroupsDisabledError) as e:
                logger.debug(f"Auto smart group {group} failed: {e}")
                continue

            if channel is not None:
                logger.info(f"Auto smart group selected: {selected_group}")
                self._set_selection(ctx, selected_group, auto_smart=True)
                return channel, selected_group

        raise AllGroupsFailedError()

    def _select_from_single_group(
        self,
        ctx: RequestContext,
        group: str,
        model_name: str,
        retry: int
    ) -> Tuple[Channel, str]:
        channel, selected_group = self._get_channel(ctx, group, model_name, retry)
        if channel is None:
            raise NoChannelAvailableError(selected_group, model_name)
        self._set_selection(ctx, selected_group, auto_smart=False)
        return channel, selected_group

    def _get_channel(
        self,
        ctx: RequestContext,
        group: str,
        model_name: str,
        retry: int
    ) -> Tuple[Optional[Channel], str]:
        """Ask the store for one group, expanding the ``auto`` sentinel.

        Returns:
            Tuple of (channel or None, concrete group consulted).

        Raises:
            AutoGroupsDisabledError: ``group`` is ``auto`` and no auto groups
                are configured.
            ChannelStoreError: The store failed for a concrete group.
        """
        if group != AUTO_GROUP:
            return self.store.random_satisfied_channel(group, model_name, retry), group

        if not self.config.get_auto_groups():
            raise AutoGroupsDisabledError()

        user_group = ctx.get_str(ContextKey.USER_GROUP)
        for auto_group in self.config.get_user_auto_groups(user_group):
            logger.debug(f"Auto selecting group: {auto_group}")
            try:
                channel = self.store.random_satisfied_channel(auto_group, model_name, retry)
            except ChannelStoreError as e:
                logger.debug(f"Auto group {auto_group} failed: {e}")
                continue
            if channel is not None:
                ctx.set(ContextKey.AUTO_GROUP, auto_group)
                logger.debug(f"Auto selected group: {auto_group}")
                return channel, auto_group
        return None, group

    @staticmethod
    def _set_selection(ctx: RequestContext, group: str, auto_smart: bool) -> None:
        if not group:
            return
        ctx.set(ContextKey.SELECTED_GROUP, group)
        ctx.set(ContextKey.USING_GROUP, group)
        ctx.set(ContextKey.AUTO_SMART_GROUP_USED, auto_smart)
