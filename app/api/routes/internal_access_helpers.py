from __future__ import annotations

import structlog
from fastapi import HTTPException, Request

from app.access.errors import (
    AccessError,
    AccessGrantNotFoundError,
    AccessResourceNotFoundError,
    AccessRuleForbiddenError,
    AccessUserNotFoundError,
    ConflictingIssuanceError,
    GrantLevelConflictError,
    InvalidAccessLevelError,
)
from app.access.types import (
    AccessDecision,
    AccessDecisionStatus,
    AccessibleResource,
    AccessJustification,
    AccessRuleSnapshot,
    GrantRejection,
    GrantSnapshot,
    RuleDefinitionReport,
    WalletSyncResult,
)
from app.api.routes.internal_access_models import (
    AccessDecisionResponse,
    AccessibleResourceResponse,
    DefineRulesResponse,
    GrantResponse,
    JustificationResponse,
    PairEvaluationResponse,
    RequiredTokenResponse,
    RuleResponse,
    RuleResultResponse,
    WalletSyncResponse,
)
from app.core.config import get_settings
from app.services.internal_auth import (
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
)

logger = structlog.get_logger(__name__)

ERROR_RESPONSES: tuple[tuple[type[AccessError], int, str], ...] = (
    (AccessUserNotFoundError, 404, "E_USER_NOT_FOUND"),
    (AccessResourceNotFoundError, 404, "E_RESOURCE_NOT_FOUND"),
    (AccessGrantNotFoundError, 404, "E_GRANT_NOT_FOUND"),
    (InvalidAccessLevelError, 422, "E_ACCESS_LEVEL_INVALID"),
    (AccessRuleForbiddenError, 403, "E_RULE_FORBIDDEN"),
    (ConflictingIssuanceError, 409, "E_GRANT_CONFLICT"),
)

REJECTION_CODES = {
    GrantRejection.NOT_FOUND: "E_GRANT_NOT_FOUND",
    GrantRejection.EXPIRED: "E_GRANT_EXPIRED",
    GrantRejection.EXHAUSTED: "E_GRANT_EXHAUSTED",
    GrantRejection.REVOKED: "E_GRANT_REVOKED",
}


def assert_internal_access(request: Request) -> None:
    settings = get_settings()
    client_ip = extract_client_ip(
        request,
        trusted_proxies=getattr(settings, "internal_api_trusted_proxies", ""),
    )

    if not is_client_ip_allowed(client_ip=client_ip, allowlist=settings.internal_api_allowlist):
        logger.warning("internal_access_auth_failed", reason="ip_not_allowed", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})

    if not is_internal_request_authenticated(
        request,
        expected_token=settings.internal_api_token,
    ):
        logger.warning(
            "internal_access_auth_failed",
            reason="invalid_credentials",
            client_ip=client_ip,
        )
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


def as_http_exception(exc: AccessError) -> HTTPException:
    if isinstance(exc, GrantLevelConflictError):
        return HTTPException(
            status_code=409,
            detail={
                "code": "E_GRANT_LEVEL_CONFLICT",
                "active_level": exc.active_level,
                "requested_level": exc.requested_level,
            },
        )
    for error_type, status_code, code in ERROR_RESPONSES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail={"code": code})
    return HTTPException(status_code=500, detail={"code": "E_ACCESS_INTERNAL"})


def decision_http_exception(decision: AccessDecision) -> HTTPException:
    if decision.status == AccessDecisionStatus.UNAVAILABLE:
        return HTTPException(status_code=503, detail={"code": "E_VERIFICATION_UNAVAILABLE"})
    if decision.status == AccessDecisionStatus.TIMED_OUT:
        return HTTPException(status_code=503, detail={"code": "E_ACCESS_CHECK_TIMEOUT"})
    return HTTPException(
        status_code=403,
        detail={
            "code": "E_ACCESS_DENIED",
            "reason": decision.reason,
            "required_level": decision.required_level.value,
            "required_tokens": [
                {"token_address": token.token_address, "access_level": token.access_level.value}
                for token in decision.required_tokens
            ],
        },
    )


def rejection_http_exception(rejection: GrantRejection) -> HTTPException:
    return HTTPException(status_code=403, detail={"code": REJECTION_CODES[rejection]})


def justification_as_response(justification: AccessJustification) -> JustificationResponse:
    return JustificationResponse(
        kind=justification.kind.value,
        access_level=justification.access_level.value,
        token_address=justification.token_address,
        wallet_address=justification.wallet_address,
        rule_id=justification.rule_id,
        usage_allowance=justification.usage_allowance,
    )


def decision_as_response(decision: AccessDecision) -> AccessDecisionResponse:
    return AccessDecisionResponse(
        granted=decision.granted,
        status=decision.status.value,
        required_level=decision.required_level.value,
        justification=(
            justification_as_response(decision.justification)
            if decision.justification is not None
            else None
        ),
        reason=decision.reason,
        required_tokens=[
            RequiredTokenResponse(
                token_address=token.token_address,
                access_level=token.access_level.value,
            )
            for token in decision.required_tokens
        ],
        evaluations=[
            PairEvaluationResponse(
                wallet_address=evaluation.wallet_address,
                token_address=evaluation.rule.token_address,
                rule_id=evaluation.rule.id,
                rule_level=evaluation.rule.access_level.value,
                covers_level=evaluation.covers_level,
                owns_token=evaluation.owns_token,
                source=evaluation.source.value if evaluation.source is not None else None,
                unavailable_reason=evaluation.unavailable_reason,
                restriction_failure=evaluation.restriction_failure,
                passed=evaluation.passed,
            )
            for evaluation in decision.evaluations
        ],
    )


def grant_as_response(grant: GrantSnapshot) -> GrantResponse:
    return GrantResponse(
        id=grant.id,
        user_id=grant.user_id,
        resource_id=grant.resource_id,
        resource_kind=grant.resource_kind.value,
        resource_title=grant.resource_title,
        resource_type=grant.resource_type,
        nft_address=grant.nft_address,
        nft_wallet_address=grant.nft_wallet_address,
        access_level=grant.access_level.value,
        token=grant.token,
        status=grant.status.value,
        usage_count=grant.usage_count,
        max_usage=grant.max_usage,
        created_at=grant.created_at,
        expires_at=grant.expires_at,
        last_used_at=grant.last_used_at,
    )


def rule_as_response(rule: AccessRuleSnapshot) -> RuleResponse:
    return RuleResponse(
        id=rule.id,
        resource_id=rule.resource_id,
        resource_kind=rule.resource_kind.value,
        token_address=rule.token_address,
        access_level=rule.access_level.value,
        is_temporary=rule.is_temporary,
        expires_at=rule.expires_at,
        restrictions=rule.restrictions.as_payload(),
        created_by_user_id=rule.created_by_user_id,
        is_active=rule.is_active,
    )


def report_as_response(report: RuleDefinitionReport) -> DefineRulesResponse:
    return DefineRulesResponse(
        total_rules=report.total_rules,
        successful=report.successful,
        failed=report.failed,
        rules=[
            RuleResultResponse(
                token_address=result.token_address,
                success=result.success,
                rule=rule_as_response(result.rule) if result.rule is not None else None,
                error=result.error,
            )
            for result in report.rules
        ],
    )


def wallet_sync_as_response(result: WalletSyncResult) -> WalletSyncResponse:
    return WalletSyncResponse(
        wallet_address=result.wallet_address,
        success=result.success,
        total=result.total,
        recorded=result.recorded,
        failed=result.failed,
        error=result.error,
    )


def accessible_as_response(resource: AccessibleResource) -> AccessibleResourceResponse:
    return AccessibleResourceResponse(
        resource_id=resource.resource_id,
        resource_kind=resource.resource_kind.value,
        highest_level=resource.highest_level.value,
        rule_ids=resource.rule_ids,
    )
