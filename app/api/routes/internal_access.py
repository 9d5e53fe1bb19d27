from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from fastapi import APIRouter, HTTPException, Request

from app.access.accessible import AccessibleResources
from app.access.constants import (
    ADMIN_GRANT_REASON,
    NFT_GRANT_REASON,
    OWNER_GRANT_REASON,
    PUBLIC_GRANT_REASON,
)
from app.access.errors import AccessError, AccessResourceNotFoundError
from app.access.grants import GrantLedger
from app.access.rules import AccessRuleStore, parse_resource_kind
from app.access.runtime import get_access_resolver, get_wallet_sync
from app.access.types import (
    AccessDecision,
    AccessRuleSpec,
    JustificationKind,
    NftBinding,
    RequestContext,
    ResourceRef,
)
from app.api.routes.internal_access_helpers import (
    accessible_as_response,
    as_http_exception,
    assert_internal_access,
    decision_as_response,
    decision_http_exception,
    grant_as_response,
    justification_as_response,
    rejection_http_exception,
    report_as_response,
    rule_as_response,
    wallet_sync_as_response,
)
from app.api.routes.internal_access_models import (
    AccessCheckRequest,
    AccessDecisionResponse,
    AccessibleResourceListResponse,
    DefineRulesRequest,
    DefineRulesResponse,
    GrantIssueRequest,
    GrantIssueResponse,
    GrantListResponse,
    GrantRevokeRequest,
    GrantRevokeResponse,
    GrantVerifyRequest,
    GrantVerifyResponse,
    RuleListResponse,
    UserSyncResponse,
)
from app.db.repo.resources_repo import ResourcesRepo
from app.db.session import SessionLocal

router = APIRouter(tags=["internal", "access"])
logger = structlog.get_logger(__name__)

GRANT_REASONS = {
    JustificationKind.OWNER: OWNER_GRANT_REASON,
    JustificationKind.ADMIN: ADMIN_GRANT_REASON,
    JustificationKind.PUBLIC: PUBLIC_GRANT_REASON,
    JustificationKind.NFT: NFT_GRANT_REASON,
}


async def _run_access_check(payload: AccessCheckRequest, *, now_utc: datetime) -> AccessDecision:
    resolver = get_access_resolver()
    try:
        async with SessionLocal.begin() as session:
            return await resolver.check_access(
                session,
                user_id=payload.user_id,
                resource_id=payload.resource_id,
                resource_kind=payload.resource_kind,
                required_level=payload.required_level,
                now_utc=now_utc,
                context=RequestContext(
                    ip_address=payload.ip_address,
                    user_agent=payload.user_agent,
                    presence_confirmed=payload.presence_confirmed,
                ),
                deadline_seconds=payload.deadline_seconds,
                stop_on_first_pass=not payload.full_audit,
            )
    except AccessError as exc:
        raise as_http_exception(exc) from exc


@router.post("/internal/access/check", response_model=AccessDecisionResponse)
async def check_access(payload: AccessCheckRequest, request: Request) -> AccessDecisionResponse:
    assert_internal_access(request)

    decision = await _run_access_check(payload, now_utc=datetime.now(timezone.utc))
    return decision_as_response(decision)


@router.post("/internal/access/grants", response_model=GrantIssueResponse)
async def issue_grant(payload: GrantIssueRequest, request: Request) -> GrantIssueResponse:
    assert_internal_access(request)

    decision = await _run_access_check(payload, now_utc=datetime.now(timezone.utc))
    if not decision.granted or decision.justification is None:
        raise decision_http_exception(decision)

    justification = decision.justification
    nft = None
    if justification.token_address and justification.wallet_address:
        nft = NftBinding(
            token_address=justification.token_address,
            wallet_address=justification.wallet_address,
        )

    now_utc = datetime.now(timezone.utc)
    try:
        async with SessionLocal.begin() as session:
            kind = parse_resource_kind(payload.resource_kind)
            resource = await ResourcesRepo.get(
                session,
                resource_kind=kind.value,
                resource_id=payload.resource_id,
            )
            if resource is None:
                raise AccessResourceNotFoundError(payload.resource_id)

            result = await GrantLedger.issue_or_reuse(
                session,
                user_id=payload.user_id,
                resource=ResourceRef(
                    resource_id=resource.resource_id,
                    resource_kind=kind,
                    title=resource.title,
                    content_type=resource.content_type,
                ),
                nft=nft,
                access_level=decision.required_level,
                now_utc=now_utc,
                ttl=timedelta(seconds=payload.ttl_seconds) if payload.ttl_seconds else None,
                max_usage=payload.max_usage,
                ip_address=payload.ip_address,
                user_agent=payload.user_agent,
                grant_reason=GRANT_REASONS[justification.kind],
                usage_allowance=justification.usage_allowance,
            )
    except AccessError as exc:
        raise as_http_exception(exc) from exc

    return GrantIssueResponse(
        grant=grant_as_response(result.grant),
        idempotent_replay=result.idempotent_replay,
        justification=justification_as_response(justification),
    )


@router.post("/internal/access/grants/verify", response_model=GrantVerifyResponse)
async def verify_grant(payload: GrantVerifyRequest, request: Request) -> GrantVerifyResponse:
    assert_internal_access(request)

    now_utc = datetime.now(timezone.utc)
    # Rejections are raised after commit so the lazy expiry transition persists.
    async with SessionLocal.begin() as session:
        verification = await GrantLedger.verify_and_consume(
            session,
            token=payload.token,
            now_utc=now_utc,
        )

    if not verification.valid or verification.grant is None:
        raise rejection_http_exception(verification.rejection)
    return GrantVerifyResponse(valid=True, grant=grant_as_response(verification.grant))


@router.post("/internal/access/grants/revoke", response_model=GrantRevokeResponse)
async def revoke_grant(payload: GrantRevokeRequest, request: Request) -> GrantRevokeResponse:
    assert_internal_access(request)
    if payload.grant_id is None and payload.token is None:
        raise HTTPException(status_code=422, detail={"code": "E_GRANT_REFERENCE_REQUIRED"})

    now_utc = datetime.now(timezone.utc)
    try:
        async with SessionLocal.begin() as session:
            revoked = await GrantLedger.revoke(
                session,
                grant_id=payload.grant_id,
                token=payload.token,
                reason=payload.reason,
                now_utc=now_utc,
            )
    except AccessError as exc:
        raise as_http_exception(exc) from exc

    return GrantRevokeResponse(revoked=revoked)


@router.get("/internal/access/users/{user_id}/grants", response_model=GrantListResponse)
async def list_user_grants(user_id: int, request: Request) -> GrantListResponse:
    assert_internal_access(request)

    now_utc = datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        grants = await GrantLedger.list_live_grants(session, user_id=user_id, now_utc=now_utc)
    return GrantListResponse(grants=[grant_as_response(grant) for grant in grants])


@router.put(
    "/internal/access/rules/{resource_kind}/{resource_id}",
    response_model=DefineRulesResponse,
)
async def define_rules(
    resource_kind: str,
    resource_id: str,
    payload: DefineRulesRequest,
    request: Request,
) -> DefineRulesResponse:
    assert_internal_access(request)

    now_utc = datetime.now(timezone.utc)
    specs = [
        AccessRuleSpec(
            token_address=rule.token_address,
            access_level=rule.access_level,
            temporary=rule.temporary,
            expires_at=rule.expires_at,
            restrictions=rule.restrictions,
        )
        for rule in payload.rules
    ]
    try:
        async with SessionLocal.begin() as session:
            report = await AccessRuleStore.define_rules(
                session,
                resource_id=resource_id,
                resource_kind=resource_kind,
                rule_specs=specs,
                creator_id=payload.creator_id,
                now_utc=now_utc,
            )
    except AccessError as exc:
        raise as_http_exception(exc) from exc

    return report_as_response(report)


@router.get(
    "/internal/access/rules/{resource_kind}/{resource_id}",
    response_model=RuleListResponse,
)
async def get_rules(resource_kind: str, resource_id: str, request: Request) -> RuleListResponse:
    assert_internal_access(request)

    now_utc = datetime.now(timezone.utc)
    try:
        async with SessionLocal.begin() as session:
            rules = await AccessRuleStore.get_rules(
                session,
                resource_id=resource_id,
                resource_kind=resource_kind,
                now_utc=now_utc,
            )
    except AccessError as exc:
        raise as_http_exception(exc) from exc

    return RuleListResponse(rules=[rule_as_response(rule) for rule in rules])


@router.post("/internal/access/users/{user_id}/sync", response_model=UserSyncResponse)
async def sync_user_wallets(user_id: int, request: Request) -> UserSyncResponse:
    assert_internal_access(request)

    now_utc = datetime.now(timezone.utc)
    try:
        async with SessionLocal.begin() as session:
            results = await get_wallet_sync().sync_user(session, user_id=user_id, now_utc=now_utc)
    except AccessError as exc:
        raise as_http_exception(exc) from exc

    return UserSyncResponse(
        user_id=user_id,
        wallets=[wallet_sync_as_response(result) for result in results],
    )


@router.get(
    "/internal/access/users/{user_id}/resources",
    response_model=AccessibleResourceListResponse,
)
async def list_accessible_resources(user_id: int, request: Request) -> AccessibleResourceListResponse:
    assert_internal_access(request)

    now_utc = datetime.now(timezone.utc)
    try:
        async with SessionLocal.begin() as session:
            resources = await AccessibleResources.list_for_user(
                session,
                user_id=user_id,
                now_utc=now_utc,
            )
    except AccessError as exc:
        raise as_http_exception(exc) from exc

    return AccessibleResourceListResponse(
        resources=[accessible_as_response(resource) for resource in resources]
    )
