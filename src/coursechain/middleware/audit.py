# src/coursechain/middleware/audit.py
"""Pipeline stages that submit audit entries and screen suspicious requests."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from coursechain.middleware.pipeline import Handler, HandlerResult, RequestContext
from coursechain.middleware.rate_limit import client_ip
from coursechain.services.audit import (
    AuditAction,
    AuditEntry,
    AuditStatus,
    AuditWorker,
    ResourceType,
)

logger = logging.getLogger(__name__)

ResourceIdGetter = Callable[[RequestContext, HandlerResult], str | None]

FAILED_AUTH_RISK = 50
SESSION_ID_LENGTH = 20


def _error_message(result: HandlerResult) -> str | None:
    if isinstance(result.body, dict):
        detail = result.body.get("detail")
        return str(detail) if detail is not None else None
    return None


class AuditTrail:
    """Record ``action`` on ``resource_type`` for every request passing through."""

    def __init__(
        self,
        worker: AuditWorker | None,
        *,
        action: AuditAction,
        resource_type: ResourceType,
        resource_id: ResourceIdGetter | None = None,
        risk_score: int = 0,
    ) -> None:
        self._worker = worker
        self._action = action
        self._resource_type = resource_type
        self._resource_id = resource_id
        self._risk_score = risk_score

    def entry_for(self, context: RequestContext, result: HandlerResult) -> AuditEntry:
        metadata: dict[str, Any] = {
            "method": context.method,
            "path": context.path,
            "query": dict(context.query),
        }
        failed = result.status_code >= 400
        if failed:
            metadata["response_status"] = result.status_code
            metadata["error_details"] = result.body
        principal = context.principal
        return AuditEntry(
            action=self._action,
            resource_type=self._resource_type,
            user_id=principal.id if principal else None,
            wallet_address=principal.address if principal else None,
            resource_id=self._resource_id(context, result) if self._resource_id else None,
            ip_address=client_ip(context),
            user_agent=context.header("user-agent"),
            metadata=metadata,
            status=AuditStatus.FAILED if failed else AuditStatus.SUCCESS,
            error_message=_error_message(result) if failed else None,
            risk_score=self._risk_score,
        )

    def __call__(self, handler: Handler) -> Handler:
        async def audited_handler(context: RequestContext) -> HandlerResult:
            result = await handler(context)
            if self._worker is not None:
                self._worker.submit(self.entry_for(context, result))
            return result

        return audited_handler


class AuthAudit:
    """Record sign-in outcomes: LOGIN on success, FAILED_AUTH on rejection.

    The claimed wallet address, when the endpoint could extract one, arrives
    through the ``claimed_address`` context attribute.
    """

    def __init__(self, worker: AuditWorker | None) -> None:
        self._worker = worker

    def entry_for(self, context: RequestContext, result: HandlerResult) -> AuditEntry | None:
        body = result.body if isinstance(result.body, dict) else {}
        ip_address = client_ip(context)
        user_agent = context.header("user-agent")
        user = body.get("user")
        if result.status_code == 200 and isinstance(user, dict):
            token = body.get("token") or ""
            return AuditEntry(
                action=AuditAction.LOGIN,
                resource_type=ResourceType.AUTH,
                user_id=user.get("id"),
                wallet_address=user.get("address"),
                ip_address=ip_address,
                user_agent=user_agent,
                session_id=token[:SESSION_ID_LENGTH] or None,
            )
        if result.status_code >= 400:
            return AuditEntry(
                action=AuditAction.FAILED_AUTH,
                resource_type=ResourceType.AUTH,
                wallet_address=context.attributes.get("claimed_address"),
                ip_address=ip_address,
                user_agent=user_agent,
                status=AuditStatus.FAILED,
                error_message=_error_message(result) or "Authentication failed",
                risk_score=FAILED_AUTH_RISK,
            )
        return None

    def __call__(self, handler: Handler) -> Handler:
        async def audited_handler(context: RequestContext) -> HandlerResult:
            result = await handler(context)
            if self._worker is not None:
                entry = self.entry_for(context, result)
                if entry is not None:
                    self._worker.submit(entry)
            return result

        return audited_handler


FailedAuthCounter = Callable[[str], int]

SUSPICIOUS_PATTERNS = (
    re.compile(r"(\bor\b|\band\b).*(=|<|>)", re.IGNORECASE),
    re.compile(r"<script|javascript:|onerror=", re.IGNORECASE),
    re.compile(r"\.\./|\.\.\\"),
    re.compile(
        r"(union|select|insert|update|delete|drop|create)\s+(all|distinct|from|table)",
        re.IGNORECASE,
    ),
)

FAILED_AUTH_LIMIT = 10
FAILED_AUTH_SCORE = 30
USER_AGENT_MIN_LENGTH = 10
USER_AGENT_SCORE = 20
PATTERN_SCORE = 40
LOG_THRESHOLD = 50
BLOCK_THRESHOLD = 80
LOGGED_PARAMS_LENGTH = 500


class SuspiciousActivityGuard:
    """Score each request for signs of abuse; record high scores and block the worst.

    Scoring adds up three signals: more than ``FAILED_AUTH_LIMIT`` failed
    sign-ins from the client IP, a missing or very short User-Agent, and
    an injection-like pattern in the query string or in the ``body`` and
    ``params`` context attributes. A score of ``LOG_THRESHOLD`` or more is
    recorded as SUSPICIOUS_ACTIVITY; ``BLOCK_THRESHOLD`` or more is refused
    with a 403 before the handler runs.
    """

    def __init__(
        self,
        worker: AuditWorker | None,
        *,
        failed_auth_count: FailedAuthCounter | None = None,
    ) -> None:
        self._worker = worker
        self._failed_auth_count = failed_auth_count

    def assess(self, context: RequestContext) -> tuple[int, list[str], str]:
        """Return the risk score, the reasons behind it and the scanned text."""
        score = 0
        reasons: list[str] = []
        ip_address = client_ip(context)

        if self._failed_auth_count is not None:
            try:
                failures = self._failed_auth_count(ip_address)
            except SQLAlchemyError as err:
                logger.warning("Could not count failed sign-ins for %s: %s", ip_address, err)
                failures = 0
            if failures > FAILED_AUTH_LIMIT:
                score += FAILED_AUTH_SCORE
                reasons.append("Multiple failed authentication attempts")

        user_agent = context.header("user-agent")
        if not user_agent or len(user_agent) < USER_AGENT_MIN_LENGTH:
            score += USER_AGENT_SCORE
            reasons.append("Suspicious or missing user agent")

        scanned = json.dumps(
            {
                "query": dict(context.query),
                "body": context.attributes.get("body", {}),
                "params": context.attributes.get("params", {}),
            },
            default=str,
        )
        if any(pattern.search(scanned) for pattern in SUSPICIOUS_PATTERNS):
            score += PATTERN_SCORE
            reasons.append("Suspicious pattern detected in request")

        return score, reasons, scanned

    def __call__(self, handler: Handler) -> Handler:
        async def guarded_handler(context: RequestContext) -> HandlerResult:
            score, reasons, scanned = self.assess(context)
            blocked = score >= BLOCK_THRESHOLD
            if score >= LOG_THRESHOLD:
                logger.warning(
                    "Suspicious request %s %s from %s: score=%d %s",
                    context.method,
                    context.path,
                    client_ip(context),
                    score,
                    "; ".join(reasons),
                )
                if self._worker is not None:
                    principal = context.principal
                    self._worker.submit(
                        AuditEntry(
                            action=AuditAction.SUSPICIOUS_ACTIVITY,
                            resource_type=ResourceType.SYSTEM,
                            user_id=principal.id if principal else None,
                            wallet_address=principal.address if principal else None,
                            ip_address=client_ip(context),
                            user_agent=context.header("user-agent"),
                            metadata={
                                "suspicious_action": f"{context.method} {context.path}",
                                "reasons": reasons,
                                "params": scanned[:LOGGED_PARAMS_LENGTH],
                            },
                            status=AuditStatus.BLOCKED if blocked else AuditStatus.SUCCESS,
                            risk_score=score,
                        )
                    )
            if blocked:
                return HandlerResult.error(403, "Request blocked due to suspicious activity")
            return await handler(context)

        return guarded_handler
