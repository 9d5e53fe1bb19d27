from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from app.access.constants import (
    RESTRICTION_DEVICE_LIMIT,
    RESTRICTION_IP,
    RESTRICTION_MAX_DOWNLOADS,
    RESTRICTION_MAX_VIEWS,
    RESTRICTION_PRESENCE,
)
from app.access.levels import AccessLevel
from app.access.types import RequestContext, RuleRestrictions
from app.db.repo.access_grants_repo import AccessGrantsRepo
from app.services.internal_auth import is_client_ip_allowed

VIEW_USAGE_LEVELS = (AccessLevel.VIEW.value, AccessLevel.STREAM.value)
DOWNLOAD_USAGE_LEVELS = (AccessLevel.DOWNLOAD.value,)


async def evaluate_restrictions(
    session: AsyncSession,
    *,
    restrictions: RuleRestrictions,
    user_id: int,
    resource_kind: str,
    resource_id: str,
    context: RequestContext,
    ip_allowlist: str,
) -> str | None:
    """Return the code of the first violated restriction, or None when all pass.

    Usage limits count consumptions recorded on the user's grants for the
    resource, so they hold across grant renewals.
    """
    if restrictions.is_empty:
        return None

    if restrictions.requires_presence and not context.presence_confirmed:
        return RESTRICTION_PRESENCE

    if restrictions.ip_restriction and not is_client_ip_allowed(
        client_ip=context.ip_address,
        allowlist=ip_allowlist,
    ):
        return RESTRICTION_IP

    if restrictions.max_views is not None:
        views = await AccessGrantsRepo.sum_usage_for_user_resource(
            session,
            user_id=user_id,
            resource_kind=resource_kind,
            resource_id=resource_id,
            access_levels=VIEW_USAGE_LEVELS,
        )
        if views >= restrictions.max_views:
            return RESTRICTION_MAX_VIEWS

    if restrictions.max_downloads is not None:
        downloads = await AccessGrantsRepo.sum_usage_for_user_resource(
            session,
            user_id=user_id,
            resource_kind=resource_kind,
            resource_id=resource_id,
            access_levels=DOWNLOAD_USAGE_LEVELS,
        )
        if downloads >= restrictions.max_downloads:
            return RESTRICTION_MAX_DOWNLOADS

    if restrictions.device_limit is not None:
        known_agents = await AccessGrantsRepo.list_user_agents_for_user_resource(
            session,
            user_id=user_id,
            resource_kind=resource_kind,
            resource_id=resource_id,
        )
        if context.user_agent not in known_agents and len(known_agents) >= restrictions.device_limit:
            return RESTRICTION_DEVICE_LIMIT

    return None


async def remaining_usage_allowance(
    session: AsyncSession,
    *,
    restrictions: RuleRestrictions,
    user_id: int,
    resource_kind: str,
    resource_id: str,
    access_level: AccessLevel,
) -> int | None:
    """Consumptions left under the usage limit that counts ``access_level``.

    None means the rule puts no cap on that level. Issued grants carry the
    allowance as their max usage, so the limit also holds at consumption time.
    """
    if access_level.value in VIEW_USAGE_LEVELS:
        limit, levels = restrictions.max_views, VIEW_USAGE_LEVELS
    elif access_level.value in DOWNLOAD_USAGE_LEVELS:
        limit, levels = restrictions.max_downloads, DOWNLOAD_USAGE_LEVELS
    else:
        return None
    if limit is None:
        return None

    used = await AccessGrantsRepo.sum_usage_for_user_resource(
        session,
        user_id=user_id,
        resource_kind=resource_kind,
        resource_id=resource_id,
        access_levels=levels,
    )
    return max(0, limit - used)
