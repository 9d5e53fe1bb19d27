from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class AccessCheckRequest(BaseModel):
    user_id: int = Field(gt=0)
    resource_id: str = Field(min_length=1, max_length=64)
    resource_kind: str = Field(min_length=1, max_length=32)
    required_level: str = Field(default="VIEW", min_length=1, max_length=16)
    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = Field(default=None, max_length=512)
    presence_confirmed: bool = False
    deadline_seconds: float | None = Field(default=None, gt=0, le=60)
    full_audit: bool = True


class GrantIssueRequest(AccessCheckRequest):
    ttl_seconds: int | None = Field(default=None, ge=60, le=7 * 24 * 3600)
    max_usage: int | None = Field(default=None, gt=0)


class PairEvaluationResponse(BaseModel):
    wallet_address: str
    token_address: str
    rule_id: int
    rule_level: str
    covers_level: bool
    owns_token: bool | None = None
    source: str | None = None
    unavailable_reason: str | None = None
    restriction_failure: str | None = None
    passed: bool


class JustificationResponse(BaseModel):
    kind: str
    access_level: str
    token_address: str | None = None
    wallet_address: str | None = None
    rule_id: int | None = None
    usage_allowance: int | None = None


class RequiredTokenResponse(BaseModel):
    token_address: str
    access_level: str


class AccessDecisionResponse(BaseModel):
    granted: bool
    status: str
    required_level: str
    justification: JustificationResponse | None = None
    reason: str | None = None
    required_tokens: list[RequiredTokenResponse]
    evaluations: list[PairEvaluationResponse]


class GrantResponse(BaseModel):
    id: UUID
    user_id: int
    resource_id: str
    resource_kind: str
    resource_title: str
    resource_type: str
    nft_address: str | None = None
    nft_wallet_address: str | None = None
    access_level: str
    token: str
    status: str
    usage_count: int = Field(ge=0)
    max_usage: int | None = None
    created_at: datetime
    expires_at: datetime
    last_used_at: datetime | None = None


class GrantIssueResponse(BaseModel):
    grant: GrantResponse
    idempotent_replay: bool
    justification: JustificationResponse


class GrantVerifyRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)


class GrantVerifyResponse(BaseModel):
    valid: bool
    grant: GrantResponse


class GrantRevokeRequest(BaseModel):
    grant_id: UUID | None = None
    token: str | None = Field(default=None, min_length=1, max_length=128)
    reason: str = Field(min_length=1, max_length=256)


class GrantRevokeResponse(BaseModel):
    revoked: bool


class GrantListResponse(BaseModel):
    grants: list[GrantResponse]


class RuleSpecRequest(BaseModel):
    token_address: str = Field(min_length=1, max_length=64)
    access_level: str = Field(default="VIEW", min_length=1, max_length=16)
    temporary: bool = False
    expires_at: datetime | None = None
    restrictions: dict[str, Any] | None = None


class DefineRulesRequest(BaseModel):
    creator_id: int = Field(gt=0)
    rules: list[RuleSpecRequest] = Field(min_length=1, max_length=100)


class RuleResponse(BaseModel):
    id: int
    resource_id: str
    resource_kind: str
    token_address: str
    access_level: str
    is_temporary: bool
    expires_at: datetime | None = None
    restrictions: dict[str, Any]
    created_by_user_id: int
    is_active: bool


class RuleResultResponse(BaseModel):
    token_address: str
    success: bool
    rule: RuleResponse | None = None
    error: str | None = None


class DefineRulesResponse(BaseModel):
    total_rules: int = Field(ge=0)
    successful: int = Field(ge=0)
    failed: int = Field(ge=0)
    rules: list[RuleResultResponse]


class RuleListResponse(BaseModel):
    rules: list[RuleResponse]


class WalletSyncResponse(BaseModel):
    wallet_address: str
    success: bool
    total: int = Field(ge=0)
    recorded: int = Field(ge=0)
    failed: int = Field(ge=0)
    error: str | None = None


class UserSyncResponse(BaseModel):
    user_id: int
    wallets: list[WalletSyncResponse]


class AccessibleResourceResponse(BaseModel):
    resource_id: str
    resource_kind: str
    highest_level: str
    rule_ids: list[int]


class AccessibleResourceListResponse(BaseModel):
    resources: list[AccessibleResourceResponse]
