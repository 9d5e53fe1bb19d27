from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.chain.verifier import ChainVerifier
from app.access.constants import (
    ADMIN_ROLE,
    DENY_REASON_NO_MATCH,
    DENY_REASON_NO_RULES,
    DENY_REASON_NO_WALLETS,
    DENY_REASON_RESTRICTIONS,
    TIMEOUT_REASON_DEADLINE,
    UNAVAILABLE_REASON_VERIFICATION,
)
from app.access.errors import (
    AccessResourceNotFoundError,
    AccessUserNotFoundError,
    VerificationUnavailableError,
)
from app.access.levels import AccessLevel
from app.access.ownership_cache import OwnershipCache
from app.access.restrictions import evaluate_restrictions, remaining_usage_allowance
from app.access.rules import AccessRuleStore, parse_resource_kind
from app.access.types import (
    AccessControl,
    AccessDecision,
    AccessDecisionStatus,
    AccessJustification,
    AccessRuleSnapshot,
    JustificationKind,
    PairEvaluation,
    RequestContext,
    RequiredToken,
    ResourceKind,
    VerificationSource,
)
from app.db.repo.resources_repo import ResourcesRepo
from app.db.repo.users_repo import UsersRepo

logger = structlog.get_logger(__name__)


class AccessResolver:
    """Decides whether a user may access a gated resource at a given level.

    Every linked wallet is checked against every effective rule; owning any
    qualifying token is enough. Ownership checks run concurrently, bounded by
    ``max_parallel``, under one deadline for the whole check. The session is
    only used from the calling task: checks go through the ownership cache and
    the verifier, which manage their own I/O.
    """

    def __init__(
        self,
        *,
        verifier: ChainVerifier,
        ownership_cache: OwnershipCache,
        record_max_age_seconds: float = 86400,
        max_parallel: int = 8,
        default_deadline_seconds: float = 10.0,
        ip_allowlist: str = "",
    ) -> None:
        self._verifier = verifier
        self._ownership_cache = ownership_cache
        self._record_max_age = timedelta(seconds=max(0.0, float(record_max_age_seconds)))
        self._max_parallel = max(1, int(max_parallel))
        self._default_deadline_seconds = default_deadline_seconds
        self._ip_allowlist = ip_allowlist

    async def check_access(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        resource_id: str,
        resource_kind: str | ResourceKind,
        required_level: str | AccessLevel,
        now_utc: datetime,
        context: RequestContext | None = None,
        deadline_seconds: float | None = None,
        stop_on_first_pass: bool = False,
    ) -> AccessDecision:
        required = AccessLevel.parse(required_level)
        kind = parse_resource_kind(resource_kind)
        request_context = context or RequestContext()

        user = await UsersRepo.get_by_id(session, user_id)
        if user is None:
            raise AccessUserNotFoundError(user_id)

        resource = await ResourcesRepo.get(session, resource_kind=kind.value, resource_id=resource_id)
        if resource is None:
            raise AccessResourceNotFoundError(f"{kind.value}:{resource_id}")

        if resource.owner_user_id == user.id:
            return self._finish(
                user_id=user_id,
                resource_kind=kind,
                resource_id=resource_id,
                decision=AccessDecision(
                    status=AccessDecisionStatus.GRANTED,
                    required_level=required,
                    justification=AccessJustification(
                        kind=JustificationKind.OWNER,
                        access_level=AccessLevel.ADMIN,
                    ),
                ),
            )
        if user.role == ADMIN_ROLE:
            return self._finish(
                user_id=user_id,
                resource_kind=kind,
                resource_id=resource_id,
                decision=AccessDecision(
                    status=AccessDecisionStatus.GRANTED,
                    required_level=required,
                    justification=AccessJustification(
                        kind=JustificationKind.ADMIN,
                        access_level=AccessLevel.ADMIN,
                    ),
                ),
            )
        if resource.access_control == AccessControl.PUBLIC.value and required == AccessLevel.VIEW:
            return self._finish(
                user_id=user_id,
                resource_kind=kind,
                resource_id=resource_id,
                decision=AccessDecision(
                    status=AccessDecisionStatus.GRANTED,
                    required_level=required,
                    justification=AccessJustification(
                        kind=JustificationKind.PUBLIC,
                        access_level=AccessLevel.VIEW,
                    ),
                ),
            )

        rules = await AccessRuleStore.get_rules(
            session,
            resource_id=resource_id,
            resource_kind=kind,
            now_utc=now_utc,
        )
        if not rules:
            return self._finish(
                user_id=user_id,
                resource_kind=kind,
                resource_id=resource_id,
                decision=AccessDecision(
                    status=AccessDecisionStatus.DENIED,
                    required_level=required,
                    reason=DENY_REASON_NO_RULES,
                ),
            )

        required_tokens = [
            RequiredToken(token_address=rule.token_address, access_level=rule.access_level)
            for rule in rules
            if rule.access_level.covers(required)
        ]

        wallets = await UsersRepo.list_wallet_addresses(session, user_id)
        if not wallets:
            return self._finish(
                user_id=user_id,
                resource_kind=kind,
                resource_id=resource_id,
                decision=AccessDecision(
                    status=AccessDecisionStatus.DENIED,
                    required_level=required,
                    reason=DENY_REASON_NO_WALLETS,
                    required_tokens=required_tokens,
                ),
            )

        evaluations, timed_out = await self._evaluate_pairs(
            session,
            wallets=wallets,
            rules=rules,
            required=required,
            user_id=user_id,
            resource_kind=kind,
            resource_id=resource_id,
            context=request_context,
            now_utc=now_utc,
            deadline_seconds=(
                self._default_deadline_seconds if deadline_seconds is None else deadline_seconds
            ),
            stop_on_first_pass=stop_on_first_pass,
        )
        decision = self._aggregate(
            evaluations,
            required=required,
            required_tokens=required_tokens,
            timed_out=timed_out,
        )
        return self._finish(
            user_id=user_id,
            resource_kind=kind,
            resource_id=resource_id,
            decision=decision,
        )

    async def _evaluate_pairs(
        self,
        session: AsyncSession,
        *,
        wallets: list[str],
        rules: list[AccessRuleSnapshot],
        required: AccessLevel,
        user_id: int,
        resource_kind: ResourceKind,
        resource_id: str,
        context: RequestContext,
        now_utc: datetime,
        deadline_seconds: float,
        stop_on_first_pass: bool,
    ) -> tuple[list[PairEvaluation], bool]:
        semaphore = asyncio.Semaphore(self._max_parallel)
        results: dict[int, PairEvaluation] = {}
        tasks: dict[asyncio.Task[PairEvaluation], int] = {}
        pairs: list[tuple[str, AccessRuleSnapshot]] = []

        for wallet in wallets:
            for rule in rules:
                position = len(pairs)
                pairs.append((wallet, rule))
                if not rule.access_level.covers(required):
                    # Never checked: the rule cannot satisfy the level whatever the wallet holds.
                    results[position] = PairEvaluation(wallet_address=wallet, rule=rule, covers_level=False)
                    continue
                task = asyncio.create_task(
                    self._check_pair(semaphore, wallet, rule, user_id=user_id, now_utc=now_utc)
                )
                tasks[task] = position

        loop = asyncio.get_running_loop()
        deadline_at = loop.time() + max(0.0, deadline_seconds)
        pending: set[asyncio.Task[PairEvaluation]] = set(tasks)
        timed_out = False
        try:
            while pending:
                remaining = deadline_at - loop.time()
                if remaining <= 0:
                    timed_out = True
                    break
                done, pending = await asyncio.wait(
                    pending,
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                found_pass = False
                for task in done:
                    evaluation = task.result()
                    if evaluation.ownership_passed:
                        failure = await evaluate_restrictions(
                            session,
                            restrictions=evaluation.rule.restrictions,
                            user_id=user_id,
                            resource_kind=resource_kind.value,
                            resource_id=resource_id,
                            context=context,
                            ip_allowlist=self._ip_allowlist,
                        )
                        if failure is not None:
                            evaluation = replace(evaluation, restriction_failure=failure)
                        else:
                            allowance = await remaining_usage_allowance(
                                session,
                                restrictions=evaluation.rule.restrictions,
                                user_id=user_id,
                                resource_kind=resource_kind.value,
                                resource_id=resource_id,
                                access_level=required,
                            )
                            evaluation = replace(evaluation, usage_allowance=allowance)
                    results[tasks[task]] = evaluation
                    found_pass = found_pass or evaluation.passed
                if found_pass and stop_on_first_pass:
                    break
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for position, (wallet, rule) in enumerate(pairs):
            if position not in results:
                results[position] = PairEvaluation(
                    wallet_address=wallet,
                    rule=rule,
                    covers_level=True,
                    unavailable_reason=TIMEOUT_REASON_DEADLINE if timed_out else None,
                )
        return [results[position] for position in range(len(pairs))], timed_out

    async def _check_pair(
        self,
        semaphore: asyncio.Semaphore,
        wallet_address: str,
        rule: AccessRuleSnapshot,
        *,
        user_id: int,
        now_utc: datetime,
    ) -> PairEvaluation:
        async with semaphore:
            record = await self._ownership_cache.get_record(rule.token_address, wallet_address)
            if (
                record is not None
                and record.owned
                and now_utc - record.last_verified_at <= self._record_max_age
            ):
                return PairEvaluation(
                    wallet_address=wallet_address,
                    rule=rule,
                    covers_level=True,
                    owns_token=True,
                    source=VerificationSource.PERSISTED,
                )

            try:
                hit = await self._verifier.check_ownership(
                    rule.token_address,
                    wallet_address,
                    user_id=user_id,
                )
            except VerificationUnavailableError:
                return PairEvaluation(
                    wallet_address=wallet_address,
                    rule=rule,
                    covers_level=True,
                    unavailable_reason=UNAVAILABLE_REASON_VERIFICATION,
                )
            return PairEvaluation(
                wallet_address=wallet_address,
                rule=rule,
                covers_level=True,
                owns_token=hit.owned,
                source=hit.source,
            )

    @staticmethod
    def _aggregate(
        evaluations: list[PairEvaluation],
        *,
        required: AccessLevel,
        required_tokens: list[RequiredToken],
        timed_out: bool,
    ) -> AccessDecision:
        passing = [evaluation for evaluation in evaluations if evaluation.passed]
        if passing:
            best = max(passing, key=lambda evaluation: evaluation.rule.access_level.rank)
            return AccessDecision(
                status=AccessDecisionStatus.GRANTED,
                required_level=required,
                justification=AccessJustification(
                    kind=JustificationKind.NFT,
                    access_level=best.rule.access_level,
                    token_address=best.rule.token_address,
                    wallet_address=best.wallet_address,
                    rule_id=best.rule.id,
                    usage_allowance=best.usage_allowance,
                ),
                evaluations=evaluations,
            )

        if timed_out:
            status, reason = AccessDecisionStatus.TIMED_OUT, TIMEOUT_REASON_DEADLINE
        elif any(evaluation.covers_level and evaluation.owns_token is None for evaluation in evaluations):
            status, reason = AccessDecisionStatus.UNAVAILABLE, UNAVAILABLE_REASON_VERIFICATION
        elif any(evaluation.restriction_failure for evaluation in evaluations):
            status, reason = AccessDecisionStatus.DENIED, DENY_REASON_RESTRICTIONS
        else:
            status, reason = AccessDecisionStatus.DENIED, DENY_REASON_NO_MATCH

        return AccessDecision(
            status=status,
            required_level=required,
            reason=reason,
            required_tokens=required_tokens,
            evaluations=evaluations,
        )

    @staticmethod
    def _finish(
        *,
        user_id: int,
        resource_kind: ResourceKind,
        resource_id: str,
        decision: AccessDecision,
    ) -> AccessDecision:
        logger.info(
            "access_check_finished",
            user_id=user_id,
            resource_kind=resource_kind.value,
            resource_id=resource_id,
            required_level=decision.required_level.value,
            status=decision.status.value,
            reason=decision.reason,
            justification=decision.justification.kind.value if decision.justification else None,
            pairs_evaluated=len(decision.evaluations),
        )
        return decision
