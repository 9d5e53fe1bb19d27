from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.constants import (
    DEFAULT_GRANT_TTL,
    GRANT_DEFAULT_RESOURCE_TYPE,
    GRANT_ISSUE_MAX_ATTEMPTS,
    GRANT_TOKEN_BYTES,
    GRANT_TOKEN_MAX_ATTEMPTS,
    GRANT_UNTITLED_RESOURCE,
)
from app.access.errors import (
    AccessGrantNotFoundError,
    ConflictingIssuanceError,
    GrantLevelConflictError,
    GrantTokenCollisionError,
)
from app.access.levels import AccessLevel
from app.access.types import (
    TERMINAL_GRANT_STATUSES,
    GrantIssueResult,
    GrantRejection,
    GrantSnapshot,
    GrantStatus,
    GrantVerification,
    NftBinding,
    ResourceKind,
    ResourceRef,
)
from app.core.config import get_settings
from app.db.models.access_grants import AccessGrant
from app.db.repo.access_grants_repo import AccessGrantsRepo

logger = structlog.get_logger(__name__)

TOKEN_CONSTRAINT = "uq_access_grants_token"
ACTIVE_GRANT_CONSTRAINT = "uq_access_grants_active_user_resource"

REJECTION_BY_STATUS = {
    GrantStatus.EXPIRED: GrantRejection.EXPIRED,
    GrantStatus.USED: GrantRejection.EXHAUSTED,
    GrantStatus.REVOKED: GrantRejection.REVOKED,
}


def generate_grant_token() -> str:
    return secrets.token_hex(GRANT_TOKEN_BYTES)


def effective_status(grant: AccessGrant, *, now_utc: datetime) -> GrantStatus:
    status = GrantStatus(grant.status)
    if status == GrantStatus.ACTIVE and grant.expires_at <= now_utc:
        return GrantStatus.EXPIRED
    return status


def snapshot_grant(grant: AccessGrant, *, now_utc: datetime | None = None) -> GrantSnapshot:
    status = GrantStatus(grant.status) if now_utc is None else effective_status(grant, now_utc=now_utc)
    return GrantSnapshot(
        id=grant.id,
        user_id=int(grant.user_id),
        resource_id=grant.resource_id,
        resource_kind=ResourceKind(grant.resource_kind),
        resource_title=grant.resource_title,
        resource_type=grant.resource_type,
        nft_address=grant.nft_address,
        nft_wallet_address=grant.nft_wallet_address,
        access_level=AccessLevel(grant.access_level),
        token=grant.token,
        status=status,
        usage_count=int(grant.usage_count or 0),
        max_usage=grant.max_usage,
        created_at=grant.created_at,
        expires_at=grant.expires_at,
        last_used_at=grant.last_used_at,
    )


def _violated_constraint(exc: IntegrityError) -> str | None:
    message = str(exc.orig) if exc.orig is not None else str(exc)
    for constraint in (ACTIVE_GRANT_CONSTRAINT, TOKEN_CONSTRAINT):
        if constraint in message:
            return constraint
    return None


def _capped_usage(limit: int | None, allowance: int | None) -> int | None:
    if allowance is None:
        return limit
    if limit is None:
        return allowance
    return min(limit, allowance)


def _mark_expired(grant: AccessGrant, *, now_utc: datetime) -> None:
    grant.status = GrantStatus.EXPIRED.value
    grant.updated_at = now_utc


class GrantLedger:
    @staticmethod
    async def issue_or_reuse(
        session: AsyncSession,
        *,
        user_id: int,
        resource: ResourceRef,
        nft: NftBinding | None,
        access_level: AccessLevel,
        now_utc: datetime,
        ttl: timedelta | None = None,
        max_usage: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        grant_reason: str | None = None,
        usage_allowance: int | None = None,
    ) -> GrantIssueResult:
        """Return the live grant for (user, resource), minting one if none exists.

        The lookup locks the current active row. A concurrent insert that wins
        the race trips the partial unique index on active grants; the lookup is
        then repeated so both callers end up with the same grant. A live grant
        whose level does not cover the request raises ``GrantLevelConflictError``
        rather than being handed out. ``usage_allowance`` caps the max usage of
        a new grant at what the winning rule still permits.
        """
        settings = get_settings()
        lifetime = ttl or timedelta(seconds=settings.grant_default_ttl_seconds) or DEFAULT_GRANT_TTL
        usage_limit = _capped_usage(
            max_usage if max_usage is not None else settings.grant_default_max_usage,
            usage_allowance,
        )

        for _ in range(GRANT_ISSUE_MAX_ATTEMPTS):
            existing = await AccessGrantsRepo.get_active_for_user_resource_for_update(
                session,
                user_id=user_id,
                resource_kind=resource.resource_kind.value,
                resource_id=resource.resource_id,
            )
            if existing is not None:
                if existing.expires_at > now_utc:
                    if not AccessLevel(existing.access_level).covers(access_level):
                        raise GrantLevelConflictError(existing.access_level, access_level.value)
                    return GrantIssueResult(grant=snapshot_grant(existing), idempotent_replay=True)
                _mark_expired(existing, now_utc=now_utc)
                await session.flush()

            try:
                grant = await GrantLedger._insert_with_fresh_token(
                    session,
                    user_id=user_id,
                    resource=resource,
                    nft=nft,
                    access_level=access_level,
                    now_utc=now_utc,
                    lifetime=lifetime,
                    max_usage=usage_limit,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    grant_reason=grant_reason,
                )
            except ConflictingIssuanceError:
                logger.info(
                    "access_grant_issue_race",
                    user_id=user_id,
                    resource_kind=resource.resource_kind.value,
                    resource_id=resource.resource_id,
                )
                continue

            logger.info(
                "access_grant_issued",
                grant_id=str(grant.id),
                user_id=user_id,
                resource_kind=resource.resource_kind.value,
                resource_id=resource.resource_id,
                access_level=access_level.value,
                nft_address=nft.token_address if nft else None,
                expires_at=grant.expires_at.isoformat(),
            )
            return GrantIssueResult(grant=snapshot_grant(grant), idempotent_replay=False)

        raise ConflictingIssuanceError(f"user {user_id} on {resource.resource_kind.value}:{resource.resource_id}")

    @staticmethod
    async def _insert_with_fresh_token(
        session: AsyncSession,
        *,
        user_id: int,
        resource: ResourceRef,
        nft: NftBinding | None,
        access_level: AccessLevel,
        now_utc: datetime,
        lifetime: timedelta,
        max_usage: int | None,
        ip_address: str | None,
        user_agent: str | None,
        grant_reason: str | None,
    ) -> AccessGrant:
        metadata: dict[str, Any] = dict(resource.metadata)
        if grant_reason:
            metadata["grant_reason"] = grant_reason

        for _ in range(GRANT_TOKEN_MAX_ATTEMPTS):
            grant = AccessGrant(
                id=uuid4(),
                user_id=user_id,
                resource_id=resource.resource_id,
                resource_kind=resource.resource_kind.value,
                resource_title=resource.title or GRANT_UNTITLED_RESOURCE,
                resource_type=resource.content_type or GRANT_DEFAULT_RESOURCE_TYPE,
                nft_address=nft.token_address if nft else None,
                nft_wallet_address=nft.wallet_address if nft else None,
                access_level=access_level.value,
                token=generate_grant_token(),
                status=GrantStatus.ACTIVE.value,
                usage_count=0,
                max_usage=max_usage,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata_=metadata,
                created_at=now_utc,
                expires_at=now_utc + lifetime,
                updated_at=now_utc,
            )
            try:
                async with session.begin_nested():
                    return await AccessGrantsRepo.create(session, grant=grant)
            except IntegrityError as exc:
                constraint = _violated_constraint(exc)
                if constraint == ACTIVE_GRANT_CONSTRAINT:
                    raise ConflictingIssuanceError(constraint) from exc
                if constraint != TOKEN_CONSTRAINT:
                    raise
                logger.error("access_grant_token_collision", user_id=user_id)

        raise GrantTokenCollisionError(f"no unique token after {GRANT_TOKEN_MAX_ATTEMPTS} attempts")

    @staticmethod
    async def verify_and_consume(
        session: AsyncSession,
        *,
        token: str,
        now_utc: datetime,
    ) -> GrantVerification:
        """Consume one unit of usage. Every successful call counts; never retry it."""
        grant = await AccessGrantsRepo.get_by_token_for_update(session, token) if token else None
        if grant is None:
            logger.info("access_grant_rejected", rejection=GrantRejection.NOT_FOUND.value)
            return GrantVerification(valid=False, rejection=GrantRejection.NOT_FOUND)

        status = effective_status(grant, now_utc=now_utc)
        if status.value != grant.status:
            _mark_expired(grant, now_utc=now_utc)

        rejection = REJECTION_BY_STATUS.get(status)
        if rejection is not None:
            logger.info(
                "access_grant_rejected",
                grant_id=str(grant.id),
                user_id=grant.user_id,
                rejection=rejection.value,
            )
            return GrantVerification(valid=False, grant=snapshot_grant(grant), rejection=rejection)

        grant.usage_count = int(grant.usage_count or 0) + 1
        grant.last_used_at = now_utc
        grant.updated_at = now_utc
        if grant.max_usage is not None and grant.usage_count >= grant.max_usage:
            grant.status = GrantStatus.USED.value

        logger.info(
            "access_grant_consumed",
            grant_id=str(grant.id),
            user_id=grant.user_id,
            usage_count=grant.usage_count,
            max_usage=grant.max_usage,
            status=grant.status,
        )
        return GrantVerification(valid=True, grant=snapshot_grant(grant))

    @staticmethod
    async def revoke(
        session: AsyncSession,
        *,
        reason: str,
        now_utc: datetime,
        grant_id: UUID | None = None,
        token: str | None = None,
    ) -> bool:
        if grant_id is not None:
            grant = await AccessGrantsRepo.get_by_id_for_update(session, grant_id)
        elif token:
            grant = await AccessGrantsRepo.get_by_token_for_update(session, token)
        else:
            grant = None
        if grant is None:
            raise AccessGrantNotFoundError(grant_id or "token")

        status = effective_status(grant, now_utc=now_utc)
        if status in TERMINAL_GRANT_STATUSES:
            if status.value != grant.status:
                _mark_expired(grant, now_utc=now_utc)
            return False

        grant.status = GrantStatus.REVOKED.value
        grant.updated_at = now_utc
        grant.metadata_ = {
            **(grant.metadata_ or {}),
            "revocation_reason": reason,
            "revoked_at": now_utc.isoformat(),
        }
        logger.info(
            "access_grant_revoked",
            grant_id=str(grant.id),
            user_id=grant.user_id,
            reason=reason,
        )
        return True

    @staticmethod
    async def sweep_expired(session: AsyncSession, *, now_utc: datetime) -> int:
        return await AccessGrantsRepo.expire_active(session, now_utc=now_utc)

    @staticmethod
    async def list_live_grants(
        session: AsyncSession,
        *,
        user_id: int,
        now_utc: datetime,
    ) -> list[GrantSnapshot]:
        grants = await AccessGrantsRepo.list_live_for_user(session, user_id=user_id, now_utc=now_utc)
        return [snapshot_grant(grant, now_utc=now_utc) for grant in grants]

    @staticmethod
    async def get_grant(
        session: AsyncSession,
        *,
        now_utc: datetime,
        grant_id: UUID | None = None,
        token: str | None = None,
    ) -> GrantSnapshot | None:
        if grant_id is not None:
            grant = await AccessGrantsRepo.get_by_id(session, grant_id)
        elif token:
            grant = await AccessGrantsRepo.get_by_token(session, token)
        else:
            grant = None
        return snapshot_grant(grant, now_utc=now_utc) if grant is not None else None
