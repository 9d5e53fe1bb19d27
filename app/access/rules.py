from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.constants import ADMIN_ROLE, RULE_ERROR_KIND_CONFLICT
from app.access.errors import (
    AccessResourceNotFoundError,
    AccessRuleForbiddenError,
    AccessUserNotFoundError,
    InvalidAccessLevelError,
    InvalidAccessRuleError,
)
from app.access.levels import AccessLevel
from app.access.types import (
    AccessRuleSnapshot,
    AccessRuleSpec,
    ResourceKind,
    RuleDefinitionReport,
    RuleDefinitionResult,
    RuleRestrictions,
)
from app.db.models.access_rules import AccessRule
from app.db.repo.access_rules_repo import AccessRulesRepo
from app.db.repo.resources_repo import ResourcesRepo
from app.db.repo.users_repo import UsersRepo

logger = structlog.get_logger(__name__)

TOKEN_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def parse_resource_kind(value: str | ResourceKind) -> ResourceKind:
    if isinstance(value, ResourceKind):
        return value
    try:
        return ResourceKind(str(value).strip().upper())
    except ValueError as exc:
        raise AccessResourceNotFoundError(f"unknown resource kind {value!r}") from exc


def is_valid_token_address(value: str) -> bool:
    return bool(TOKEN_ADDRESS_RE.fullmatch(value))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def snapshot_access_rule(rule: AccessRule) -> AccessRuleSnapshot:
    return AccessRuleSnapshot(
        id=int(rule.id),
        resource_id=rule.resource_id,
        resource_kind=ResourceKind(rule.resource_kind),
        token_address=rule.token_address,
        access_level=AccessLevel(rule.access_level),
        is_temporary=bool(rule.is_temporary),
        expires_at=rule.expires_at,
        restrictions=RuleRestrictions.from_payload(rule.restrictions),
        created_by_user_id=int(rule.created_by_user_id),
        is_active=bool(rule.is_active),
    )


@dataclass(frozen=True, slots=True)
class ValidatedRule:
    token_address: str
    access_level: AccessLevel
    is_temporary: bool
    expires_at: datetime | None
    restrictions: dict[str, Any]


def validate_rule_spec(spec: AccessRuleSpec, *, now_utc: datetime) -> ValidatedRule:
    token_address = (spec.token_address or "").strip()
    if not is_valid_token_address(token_address):
        raise InvalidAccessRuleError("invalid_token_address")

    try:
        access_level = AccessLevel.parse(spec.access_level)
    except InvalidAccessLevelError as exc:
        raise InvalidAccessRuleError("invalid_access_level") from exc

    expires_at: datetime | None = None
    if spec.temporary:
        if spec.expires_at is None:
            raise InvalidAccessRuleError("temporary_rule_requires_expiry")
        expires_at = _as_utc(spec.expires_at)
        if expires_at <= now_utc:
            raise InvalidAccessRuleError("expiry_in_past")

    try:
        restrictions = RuleRestrictions.from_payload(spec.restrictions)
    except ValueError as exc:
        raise InvalidAccessRuleError("invalid_restrictions") from exc

    return ValidatedRule(
        token_address=token_address,
        access_level=access_level,
        is_temporary=bool(spec.temporary),
        expires_at=expires_at,
        restrictions=restrictions.as_payload(),
    )


class AccessRuleStore:
    @staticmethod
    async def get_rules(
        session: AsyncSession,
        *,
        resource_id: str,
        resource_kind: str | ResourceKind,
        now_utc: datetime,
    ) -> list[AccessRuleSnapshot]:
        kind = parse_resource_kind(resource_kind)
        rules = await AccessRulesRepo.list_effective_for_resource(
            session,
            resource_kind=kind.value,
            resource_id=resource_id,
            now_utc=now_utc,
        )
        snapshots = [snapshot_access_rule(rule) for rule in rules]
        return [rule for rule in snapshots if rule.is_effective(now_utc)]

    @staticmethod
    async def authorize_rule_author(
        session: AsyncSession,
        *,
        resource_id: str,
        resource_kind: ResourceKind,
        author_user_id: int,
    ) -> None:
        resource = await ResourcesRepo.get(
            session,
            resource_kind=resource_kind.value,
            resource_id=resource_id,
        )
        if resource is None:
            raise AccessResourceNotFoundError(f"{resource_kind.value}:{resource_id}")

        author = await UsersRepo.get_by_id(session, author_user_id)
        if author is None:
            raise AccessUserNotFoundError(author_user_id)

        if resource.owner_user_id != author.id and author.role != ADMIN_ROLE:
            raise AccessRuleForbiddenError(author_user_id)

    @staticmethod
    async def define_rules(
        session: AsyncSession,
        *,
        resource_id: str,
        resource_kind: str | ResourceKind,
        rule_specs: Sequence[AccessRuleSpec],
        creator_id: int,
        now_utc: datetime,
    ) -> RuleDefinitionReport:
        """Upsert each rule independently; one bad rule never blocks the others."""
        kind = parse_resource_kind(resource_kind)
        await AccessRuleStore.authorize_rule_author(
            session,
            resource_id=resource_id,
            resource_kind=kind,
            author_user_id=creator_id,
        )

        results: list[RuleDefinitionResult] = []
        for spec in rule_specs:
            try:
                validated = validate_rule_spec(spec, now_utc=now_utc)
            except InvalidAccessRuleError as exc:
                results.append(
                    RuleDefinitionResult(token_address=spec.token_address, success=False, error=str(exc))
                )
                continue

            try:
                async with session.begin_nested():
                    rule = await AccessRulesRepo.upsert(
                        session,
                        resource_id=resource_id,
                        resource_kind=kind.value,
                        token_address=validated.token_address,
                        access_level=validated.access_level.value,
                        is_temporary=validated.is_temporary,
                        expires_at=validated.expires_at,
                        restrictions=validated.restrictions,
                        created_by_user_id=creator_id,
                        now_utc=now_utc,
                    )
            except SQLAlchemyError as exc:
                logger.warning(
                    "access_rule_upsert_failed",
                    resource_kind=kind.value,
                    resource_id=resource_id,
                    token_address=validated.token_address,
                    error_type=type(exc).__name__,
                )
                results.append(
                    RuleDefinitionResult(
                        token_address=validated.token_address,
                        success=False,
                        error="storage_error",
                    )
                )
                continue

            if rule is None:
                results.append(
                    RuleDefinitionResult(
                        token_address=validated.token_address,
                        success=False,
                        error=RULE_ERROR_KIND_CONFLICT,
                    )
                )
                continue

            results.append(
                RuleDefinitionResult(
                    token_address=validated.token_address,
                    success=True,
                    rule=snapshot_access_rule(rule),
                )
            )

        successful = sum(1 for result in results if result.success)
        report = RuleDefinitionReport(
            total_rules=len(results),
            successful=successful,
            failed=len(results) - successful,
            rules=results,
        )
        logger.info(
            "access_rules_defined",
            resource_kind=kind.value,
            resource_id=resource_id,
            creator_id=creator_id,
            total_rules=report.total_rules,
            successful=report.successful,
            failed=report.failed,
        )
        return report

    @staticmethod
    async def deactivate_expired(session: AsyncSession, *, now_utc: datetime) -> int:
        return await AccessRulesRepo.deactivate_expired_temporary(session, now_utc=now_utc)
