from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from app.access.levels import AccessLevel


class ResourceKind(str, Enum):
    EXCLUSIVE_CONTENT = "EXCLUSIVE_CONTENT"
    EVENT = "EVENT"
    COLLECTION = "COLLECTION"


class AccessControl(str, Enum):
    PUBLIC = "PUBLIC"
    NFT_GATED = "NFT_GATED"
    TICKET_GATED = "TICKET_GATED"
    HYBRID = "HYBRID"


class GrantStatus(str, Enum):
    ACTIVE = "ACTIVE"
    USED = "USED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


TERMINAL_GRANT_STATUSES = frozenset({GrantStatus.USED, GrantStatus.EXPIRED, GrantStatus.REVOKED})


class GrantRejection(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    EXHAUSTED = "EXHAUSTED"
    REVOKED = "REVOKED"


class AccessDecisionStatus(str, Enum):
    GRANTED = "GRANTED"
    DENIED = "DENIED"
    UNAVAILABLE = "UNAVAILABLE"
    TIMED_OUT = "TIMED_OUT"


class JustificationKind(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    PUBLIC = "PUBLIC"
    NFT = "NFT"


class VerificationSource(str, Enum):
    MEMORY = "MEMORY"
    PERSISTED = "PERSISTED"
    LEDGER = "LEDGER"
    INDEXER = "INDEXER"
    SYNC = "SYNC"
    MANUAL = "MANUAL"


@dataclass(frozen=True, slots=True)
class OwnershipHit:
    owned: bool
    source: VerificationSource


@dataclass(frozen=True, slots=True)
class OwnershipUnavailable:
    source: VerificationSource
    reason: str


OwnershipAnswer = OwnershipHit | OwnershipUnavailable


@dataclass(frozen=True, slots=True)
class OwnershipRecordSnapshot:
    token_address: str
    wallet_address: str
    owned: bool
    user_id: int | None
    verification_source: str
    token_metadata: dict[str, Any]
    last_verified_at: datetime


@dataclass(frozen=True, slots=True)
class RuleRestrictions:
    max_views: int | None = None
    max_downloads: int | None = None
    requires_presence: bool = False
    ip_restriction: bool = False
    device_limit: int | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> RuleRestrictions:
        data = payload or {}
        return cls(
            max_views=_optional_positive_int(data.get("max_views")),
            max_downloads=_optional_positive_int(data.get("max_downloads")),
            requires_presence=bool(data.get("requires_presence", False)),
            ip_restriction=bool(data.get("ip_restriction", False)),
            device_limit=_optional_positive_int(data.get("device_limit")),
        )

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.max_views is not None:
            payload["max_views"] = self.max_views
        if self.max_downloads is not None:
            payload["max_downloads"] = self.max_downloads
        if self.requires_presence:
            payload["requires_presence"] = True
        if self.ip_restriction:
            payload["ip_restriction"] = True
        if self.device_limit is not None:
            payload["device_limit"] = self.device_limit
        return payload

    @property
    def is_empty(self) -> bool:
        return not self.as_payload()


def _optional_positive_int(value: object) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"restriction limit must be an integer, got {value!r}")
    if value <= 0:
        raise ValueError("restriction limit must be positive")
    return value


@dataclass(frozen=True, slots=True)
class AccessRuleSnapshot:
    id: int
    resource_id: str
    resource_kind: ResourceKind
    token_address: str
    access_level: AccessLevel
    is_temporary: bool
    expires_at: datetime | None
    restrictions: RuleRestrictions
    created_by_user_id: int
    is_active: bool

    def is_effective(self, now_utc: datetime) -> bool:
        if not self.is_active:
            return False
        if not self.is_temporary:
            return True
        return self.expires_at is not None and self.expires_at > now_utc


@dataclass(frozen=True, slots=True)
class AccessRuleSpec:
    token_address: str
    access_level: str = AccessLevel.VIEW.value
    temporary: bool = False
    expires_at: datetime | None = None
    restrictions: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class RuleDefinitionResult:
    token_address: str
    success: bool
    rule: AccessRuleSnapshot | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class RuleDefinitionReport:
    total_rules: int
    successful: int
    failed: int
    rules: list[RuleDefinitionResult]


@dataclass(frozen=True, slots=True)
class RequestContext:
    ip_address: str | None = None
    user_agent: str | None = None
    presence_confirmed: bool = False


@dataclass(frozen=True, slots=True)
class PairEvaluation:
    wallet_address: str
    rule: AccessRuleSnapshot
    covers_level: bool
    owns_token: bool | None = None
    source: VerificationSource | None = None
    unavailable_reason: str | None = None
    restriction_failure: str | None = None
    usage_allowance: int | None = None

    @property
    def ownership_passed(self) -> bool:
        return self.owns_token is True and self.covers_level

    @property
    def passed(self) -> bool:
        return self.ownership_passed and self.restriction_failure is None


@dataclass(frozen=True, slots=True)
class AccessJustification:
    kind: JustificationKind
    access_level: AccessLevel
    token_address: str | None = None
    wallet_address: str | None = None
    rule_id: int | None = None
    usage_allowance: int | None = None


@dataclass(frozen=True, slots=True)
class RequiredToken:
    token_address: str
    access_level: AccessLevel


@dataclass(frozen=True, slots=True)
class AccessDecision:
    status: AccessDecisionStatus
    required_level: AccessLevel
    justification: AccessJustification | None = None
    reason: str | None = None
    required_tokens: list[RequiredToken] = field(default_factory=list)
    evaluations: list[PairEvaluation] = field(default_factory=list)

    @property
    def granted(self) -> bool:
        return self.status == AccessDecisionStatus.GRANTED


@dataclass(frozen=True, slots=True)
class ResourceRef:
    resource_id: str
    resource_kind: ResourceKind
    title: str | None = None
    content_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NftBinding:
    token_address: str
    wallet_address: str


@dataclass(frozen=True, slots=True)
class GrantSnapshot:
    id: UUID
    user_id: int
    resource_id: str
    resource_kind: ResourceKind
    resource_title: str
    resource_type: str
    nft_address: str | None
    nft_wallet_address: str | None
    access_level: AccessLevel
    token: str
    status: GrantStatus
    usage_count: int
    max_usage: int | None
    created_at: datetime
    expires_at: datetime
    last_used_at: datetime | None


@dataclass(frozen=True, slots=True)
class GrantIssueResult:
    grant: GrantSnapshot
    idempotent_replay: bool


@dataclass(frozen=True, slots=True)
class GrantVerification:
    valid: bool
    grant: GrantSnapshot | None = None
    rejection: GrantRejection | None = None


@dataclass(frozen=True, slots=True)
class WalletSyncResult:
    wallet_address: str
    success: bool
    total: int = 0
    recorded: int = 0
    failed: int = 0
    error: str | None = None


@dataclass(frozen=True, slots=True)
class AccessibleResource:
    resource_id: str
    resource_kind: ResourceKind
    highest_level: AccessLevel
    rule_ids: list[int]
