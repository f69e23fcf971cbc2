from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Protocol

from central_aprovacao.contexts.approvals.domain.chain import REASON_ALREADY_ACTED, ApprovalChainResolver
from central_aprovacao.contexts.approvals.domain.documents import APPROVED, REJECTED, Document, normalize_document_id
from central_aprovacao.contexts.erp.domain.tenants import TenantRegistry, tenant_ref_for
from central_aprovacao.contexts.erp.infrastructure.client import ErpResponse, ErpTransportError, tenant_headers
from central_aprovacao.contexts.erp.infrastructure.error_classifier import ErrorClassifier
from central_aprovacao.errors import ErpActionError, NotEligibleError, UserActionError, ValidationError
from central_aprovacao.observability import observe_approval_action


logger = logging.getLogger(__name__)

APPROVE = "approve"
REJECT = "reject"
DECISIONS: tuple[str, ...] = (APPROVE, REJECT)

STATUS_KEYWORDS = {APPROVE: "APROVACAO", REJECT: "REJEICAO"}
DEFAULT_COMMENTS = {APPROVE: "", REJECT: "Rejeitado pelo aprovador"}
_DECISION_TARGET_STATE = {APPROVE: APPROVED, REJECT: REJECTED}


class ActionTransport(Protocol):
    def post_json(
        self,
        url: str,
        payload: dict,
        *,
        headers: Mapping[str, str],
        timeout: float,
    ) -> ErpResponse: ...


def normalize_decision(value: object | None) -> str:
    normalized = str(value or "").strip().lower()
    aliases = {"aprovar": APPROVE, "aprovacao": APPROVE, "rejeitar": REJECT, "rejeicao": REJECT}
    decision = aliases.get(normalized, normalized)
    if decision not in DECISIONS:
        raise ValidationError(details=f"decisao invalida: {value}", payload={"field": "decision"})
    return decision


@dataclass(frozen=True)
class ActionAck:
    tenant_id: str
    document_id: str
    decision: str
    approver_code: str
    upstream_status: int | None
    upstream_body: str = ""
    replayed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "document_id": self.document_id,
            "decision": self.decision,
            "approver_code": self.approver_code,
            "upstream_status": self.upstream_status,
            "upstream_body": self.upstream_body,
            "replayed": self.replayed,
        }


Fingerprint = tuple[str, str, str]


def action_fingerprint(document: Document, decision: str) -> Fingerprint:
    return (str(document.tenant_id or ""), normalize_document_id(document.document_id), decision)


class IdempotencyGuard:
    """Process-local memory of acknowledged actions keyed by idempotency key.

    Each key is bound to the (tenant, document, decision) it was first used
    for; reusing it for another action is refused instead of replayed.
    """

    def __init__(self, ttl_seconds: int = 600) -> None:
        self._lock = threading.Lock()
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._acks: dict[str, tuple[float, Fingerprint, ActionAck]] = {}
        self._in_flight: dict[str, Fingerprint] = {}

    def configure(self, *, ttl_seconds: int) -> None:
        with self._lock:
            self._ttl_seconds = max(1, int(ttl_seconds))

    def _prune(self, now: float) -> None:
        expired = [key for key, (stored_at, _fp, _ack) in self._acks.items() if now - stored_at > self._ttl_seconds]
        for key in expired:
            self._acks.pop(key, None)

    def begin(self, key: str, fingerprint: Fingerprint) -> ActionAck | None:
        """Reserve ``key``; returns the stored ack when the action already went through."""
        now = time.monotonic()
        with self._lock:
            self._prune(now)
            stored = self._acks.get(key)
            if stored is not None:
                _check_same_action(key, stored[1], fingerprint)
                return stored[2]
            if key in self._in_flight:
                _check_same_action(key, self._in_flight[key], fingerprint)
                raise UserActionError(
                    code="action_in_progress",
                    message_key="action_in_progress",
                    http_status=409,
                    payload={"idempotency_key": key},
                )
            self._in_flight[key] = fingerprint
            return None

    def finish(self, key: str, fingerprint: Fingerprint, ack: ActionAck | None) -> None:
        with self._lock:
            self._in_flight.pop(key, None)
            if ack is not None:
                self._acks[key] = (time.monotonic(), fingerprint, ack)

    def reset_for_tests(self) -> None:
        with self._lock:
            self._acks.clear()
            self._in_flight.clear()


def _check_same_action(key: str, stored: Fingerprint, requested: Fingerprint) -> None:
    if stored == requested:
        return
    raise UserActionError(
        code="idempotency_key_reused",
        message_key="idempotency_key_reused",
        http_status=422,
        payload={
            "idempotency_key": key,
            "tenant_id": stored[0] or None,
            "document_id": stored[1],
            "decision": stored[2],
        },
    )


_IDEMPOTENCY_GUARD = IdempotencyGuard()


def get_idempotency_guard() -> IdempotencyGuard:
    return _IDEMPOTENCY_GUARD


def reset_idempotency_guard_for_tests() -> None:
    _IDEMPOTENCY_GUARD.reset_for_tests()


@dataclass
class ActionDispatcher:
    registry: TenantRegistry
    transport: ActionTransport
    resolver: ApprovalChainResolver = field(default_factory=ApprovalChainResolver)
    classifier: ErrorClassifier = field(default_factory=ErrorClassifier)
    idempotency: IdempotencyGuard | None = None

    def submit(
        self,
        document: Document,
        decision: str,
        caller: str,
        comment: str | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> ActionAck:
        decision = normalize_decision(decision)
        key = str(idempotency_key or "").strip() or None
        guard = self.idempotency if key else None
        fingerprint = action_fingerprint(document, decision)
        if guard is not None:
            replay = guard.begin(key, fingerprint)
            if replay is not None:
                observe_approval_action(decision, "replayed")
                return replace(replay, replayed=True)

        ack: ActionAck | None = None
        try:
            ack = self._submit(document, decision, caller, comment)
            return ack
        finally:
            if guard is not None:
                guard.finish(key, fingerprint, ack)

    def _submit(self, document: Document, decision: str, caller: str, comment: str | None) -> ActionAck:
        document_id = normalize_document_id(document.document_id)
        eligibility = self.resolver.can_act(document.roster, caller)
        if not eligibility:
            entry = eligibility.entry
            if (
                eligibility.reason == REASON_ALREADY_ACTED
                and entry is not None
                and entry.state == _DECISION_TARGET_STATE[decision]
            ):
                # Second click on an action the backend already recorded.
                observe_approval_action(decision, "noop")
                return ActionAck(
                    tenant_id=document.tenant_id or "",
                    document_id=document_id,
                    decision=decision,
                    approver_code=entry.approver_code,
                    upstream_status=None,
                    replayed=True,
                )
            logger.warning(
                "approval_action_blocked",
                extra={
                    "tenant_id": document.tenant_id,
                    "document_id": document_id,
                    "decision": decision,
                    "caller": caller,
                    "reason": eligibility.reason,
                    "blocking_index": eligibility.blocking_index,
                },
            )
            observe_approval_action(decision, "not_eligible")
            raise NotEligibleError(
                eligibility.reason,
                payload={"tenant_id": document.tenant_id, "document_id": document_id},
            )

        entry = eligibility.entry
        approver_code = entry.approver_code or entry.machine_id
        tenant = self.registry.resolve_ref(tenant_ref_for(document.tenant_id))

        body = {
            "TIPO": document.kind,
            "DOCUMENTO": document_id,
            "APROVADOR": approver_code,
            "STATUS": STATUS_KEYWORDS[decision],
            "OBSERVACAO": str(comment or "").strip() or DEFAULT_COMMENTS[decision],
        }
        headers = tenant_headers(tenant)
        headers["TenantId"] = f"{tenant.company_code},{document.branch_code}"

        try:
            response = self.transport.post_json(
                tenant.action_url,
                body,
                headers=headers,
                timeout=tenant.timeout_seconds,
            )
        except Exception as exc:  # noqa: BLE001
            failure = self.classifier.classify(exc)
            logger.error(
                "approval_action_failed",
                extra={
                    "tenant_id": tenant.tenant_id,
                    "document_id": document_id,
                    "decision": decision,
                    "error_kind": failure.kind,
                    "details": failure.message,
                },
            )
            observe_approval_action(decision, "failed")
            raise ErpActionError(
                kind=failure.kind,
                upstream_status=failure.status,
                details=failure.message,
                payload={"tenant_id": tenant.tenant_id, "document_id": document_id},
            ) from exc

        if not response.ok:
            failure = self.classifier.classify(_upstream_failure(response))
            logger.error(
                "approval_action_failed",
                extra={
                    "tenant_id": tenant.tenant_id,
                    "document_id": document_id,
                    "decision": decision,
                    "error_kind": failure.kind,
                    "upstream_status": response.status,
                    "upstream_body": response.body[:500],
                },
            )
            observe_approval_action(decision, "failed")
            raise ErpActionError(
                kind=failure.kind,
                upstream_status=response.status,
                upstream_body=response.body,
                details=f"ERP HTTP {response.status}: {response.body[:200]}",
                payload={"tenant_id": tenant.tenant_id, "document_id": document_id},
            )

        logger.info(
            "approval_action_sent",
            extra={
                "tenant_id": tenant.tenant_id,
                "document_id": document_id,
                "decision": decision,
                "approver_code": approver_code,
                "match_rule": eligibility.match.rule if eligibility.match else None,
                "upstream_status": response.status,
            },
        )
        observe_approval_action(decision, "sent")
        return ActionAck(
            tenant_id=tenant.tenant_id,
            document_id=document_id,
            decision=decision,
            approver_code=approver_code,
            upstream_status=response.status,
            upstream_body=response.body,
        )


def _upstream_failure(response: ErpResponse) -> ErpTransportError:
    return ErpTransportError(f"ERP HTTP {response.status}", status=response.status, body=response.body)
