from __future__ import annotations

import logging
from typing import Any, Iterable

from central_aprovacao.contexts.approvals.application.aggregator import (
    AggregateResult,
    AggregationError,
    ParallelAggregator,
)
from central_aprovacao.contexts.approvals.application.dispatcher import (
    APPROVE,
    REJECT,
    ActionAck,
    ActionDispatcher,
    normalize_decision,
)
from central_aprovacao.contexts.approvals.domain.chain import ApprovalChainResolver
from central_aprovacao.contexts.approvals.domain.documents import (
    APPROVED,
    PENDING,
    REJECTED,
    Document,
    find_document,
    normalize_document_id,
)
from central_aprovacao.contexts.erp.domain.tenants import TenantRegistry, normalize_tenant_id
from central_aprovacao.errors import AppError, DocumentNotFoundError, IntegrationError, ValidationError
from central_aprovacao.ui_strings import document_kind_label, document_status_label, tenant_error_message


logger = logging.getLogger(__name__)

BULK_DEFAULT_COMMENTS = {APPROVE: "Aprovado em massa", REJECT: "Rejeitado em massa"}


class ApprovalService:
    """Application facade: fan-out queries, eligibility and approve/reject writes."""

    def __init__(
        self,
        registry: TenantRegistry,
        aggregator: ParallelAggregator,
        dispatcher: ActionDispatcher,
        resolver: ApprovalChainResolver | None = None,
    ) -> None:
        self.registry = registry
        self.aggregator = aggregator
        self.dispatcher = dispatcher
        self.resolver = resolver or dispatcher.resolver

    def describe(self, document: Document, caller: str | None) -> dict[str, Any]:
        payload = document.to_dict()
        eligibility = self.resolver.can_act(document.roster, caller)
        payload["kind_label"] = document_kind_label(document.kind)
        payload["status_label"] = document_status_label(document.status)
        payload["next_in_line"] = self.resolver.next_in_line(document.roster)
        payload["can_act"] = eligibility.eligible
        payload["eligibility"] = eligibility.to_dict()
        return payload

    def list_documents(self, caller: str, numero: str | None = None) -> dict[str, Any]:
        result = self.aggregator.fetch_all(caller, numero)
        documents = [self.describe(document, caller) for document in result.documents]
        payload = result.to_dict()
        payload["documents"] = documents
        payload["summary"] = summarize(documents)
        payload["partial"] = result.partial
        payload["all_failed"] = result.all_failed
        return payload

    def fetch_document(self, caller: str, tenant_id: str, numero: str) -> Document:
        """Re-read one document from the tenant that owns it."""
        tenant = self.registry.resolve(tenant_id)
        document_id = normalize_document_id(numero)
        if not document_id:
            raise ValidationError(details="numero do documento obrigatorio.", payload={"field": "numero"})

        result = self.aggregator.fetch_all(caller, document_id, tenant_ids=[tenant.tenant_id])
        _raise_on_failure(result, tenant.tenant_id)
        document = find_document(result.documents, tenant.tenant_id, document_id)
        if document is None:
            raise DocumentNotFoundError(
                details=f"documento {document_id} nao encontrado em {tenant.tenant_id}.",
                payload={"tenant_id": tenant.tenant_id, "document_id": document_id},
            )
        return document

    def get_document(self, caller: str, tenant_id: str, numero: str) -> dict[str, Any]:
        return self.describe(self.fetch_document(caller, tenant_id, numero), caller)

    def decide(
        self,
        caller: str,
        tenant_id: str,
        numero: str,
        decision: str,
        comment: str | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> ActionAck:
        document = self.fetch_document(caller, tenant_id, numero)
        return self.dispatcher.submit(
            document,
            decision,
            caller,
            comment,
            idempotency_key=idempotency_key,
        )

    def decide_many(
        self,
        caller: str,
        items: Iterable[tuple[str, str]],
        decision: str,
        comment: str | None = None,
    ) -> dict[str, Any]:
        """Apply one decision to several documents, one outcome per document.

        The rosters are re-read in a single fan-out over the tenants involved;
        writes then go out one by one and a refused document never stops the
        rest of the batch.
        """
        decision = normalize_decision(decision)
        targets = _bulk_targets(self.registry, items)
        comment = str(comment or "").strip() or BULK_DEFAULT_COMMENTS[decision]

        tenant_ids = sorted({tenant_id for tenant_id, _document_id in targets})
        result = self.aggregator.fetch_all(caller, tenant_ids=tenant_ids)
        failures = {error.tenant_id: error for error in result.errors}

        outcomes: list[dict[str, Any]] = []
        for tenant_id, document_id in targets:
            try:
                if tenant_id in failures:
                    raise _tenant_failure(tenant_id, failures[tenant_id])
                document = find_document(result.documents, tenant_id, document_id)
                if document is None:
                    raise DocumentNotFoundError(
                        details=f"documento {document_id} nao encontrado em {tenant_id}.",
                        payload={"tenant_id": tenant_id, "document_id": document_id},
                    )
                ack = self.dispatcher.submit(document, decision, caller, comment)
            except AppError as exc:
                outcome = {
                    "tenant_id": tenant_id,
                    "document_id": document_id,
                    "ok": False,
                    "error": exc.code,
                    "message": exc.user_message(),
                }
                outcome.update({key: value for key, value in exc.payload.items() if key not in outcome})
                outcomes.append(outcome)
                continue
            outcome = ack.to_dict()
            outcome["ok"] = True
            outcomes.append(outcome)

        succeeded = sum(1 for outcome in outcomes if outcome["ok"])
        logger.info(
            "approval_bulk_finished",
            extra={
                "caller": caller,
                "decision": decision,
                "documents": len(outcomes),
                "succeeded": succeeded,
                "failed": len(outcomes) - succeeded,
            },
        )
        return {
            "decision": decision,
            "results": outcomes,
            "succeeded": succeeded,
            "failed": len(outcomes) - succeeded,
        }


def _bulk_targets(registry: TenantRegistry, items: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    targets: list[tuple[str, str]] = []
    seen: set[tuple[str, str]] = set()
    for tenant_id, numero in items:
        tenant = registry.resolve(tenant_id)
        document_id = normalize_document_id(numero)
        if not document_id:
            raise ValidationError(details="numero do documento obrigatorio.", payload={"field": "numero"})
        target = (tenant.tenant_id, document_id)
        if target not in seen:
            seen.add(target)
            targets.append(target)
    if not targets:
        raise ValidationError(details="nenhum documento informado.", payload={"field": "documentos"})
    return targets


def _raise_on_failure(result: AggregateResult, tenant_id: str) -> None:
    if result.errors:
        raise _tenant_failure(tenant_id, result.errors[0])


def _tenant_failure(tenant_id: str, error: AggregationError) -> IntegrationError:
    return IntegrationError(
        details=f"{tenant_id}: {error.message}",
        payload={
            "tenant_id": normalize_tenant_id(tenant_id),
            "kind": error.kind,
            "upstream_status": error.status,
            "tenant_message": tenant_error_message(error.kind),
        },
    )


def summarize(documents: Iterable[dict[str, Any]]) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "total": 0,
        PENDING: 0,
        APPROVED: 0,
        REJECTED: 0,
        "actionable": 0,
        "pending_value": 0.0,
        "by_tenant": {},
    }
    for document in documents:
        status = document.get("status") or PENDING
        summary["total"] += 1
        summary[status] = summary.get(status, 0) + 1
        if document.get("can_act"):
            summary["actionable"] += 1
        if status == PENDING:
            summary["pending_value"] += float(document.get("total_value") or 0.0)
        tenant_key = document.get("tenant_id") or ""
        summary["by_tenant"][tenant_key] = summary["by_tenant"].get(tenant_key, 0) + 1
    summary["pending_value"] = round(summary["pending_value"], 2)
    return summary
