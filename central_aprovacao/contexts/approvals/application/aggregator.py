from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Protocol

from central_aprovacao.contexts.approvals.domain.documents import Document
from central_aprovacao.contexts.erp.domain.tenants import TenantConfig, TenantRegistry, normalize_tenant_id
from central_aprovacao.contexts.erp.infrastructure.client import ErpTransportError, build_query_url, tenant_headers
from central_aprovacao.contexts.erp.infrastructure.error_classifier import NETWORK, ClassifiedError, ErrorClassifier
from central_aprovacao.errors import ValidationError
from central_aprovacao.observability import bind_request_id, current_request_id, observe_tenant_fetch
from central_aprovacao.ui_strings import tenant_error_message


logger = logging.getLogger(__name__)


class QueryTransport(Protocol):
    def get_json(self, url: str, *, headers: Mapping[str, str], timeout: float) -> object: ...


@dataclass(frozen=True)
class AggregationError:
    tenant_id: str
    kind: str
    status: int | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "kind": self.kind,
            "status": self.status,
            "message": self.message,
            "user_message": tenant_error_message(self.kind),
        }


@dataclass(frozen=True)
class AggregateResult:
    documents: tuple[Document, ...] = ()
    succeeded: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    errors: tuple[AggregationError, ...] = ()

    @property
    def partial(self) -> bool:
        return bool(self.errors) and bool(self.succeeded)

    @property
    def all_failed(self) -> bool:
        return bool(self.failed) and not self.succeeded

    def to_dict(self) -> dict[str, Any]:
        return {
            "documents": [document.to_dict() for document in self.documents],
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass(frozen=True)
class RetryPolicy:
    """How many extra attempts a tenant query gets.

    Only ``network`` failures are retried; auth and server answers are final.
    """

    network_retries: int = 0
    backoff_seconds: float = 0.0

    def should_retry(self, failure: ClassifiedError, attempt: int) -> bool:
        return failure.kind == NETWORK and attempt < max(0, int(self.network_retries))


NO_RETRY = RetryPolicy()


@dataclass(frozen=True)
class _TenantOutcome:
    tenant_id: str
    documents: tuple[Document, ...] = ()
    error: AggregationError | None = None
    attempts: int = 1
    duration_ms: float = 0.0


@dataclass
class ParallelAggregator:
    registry: TenantRegistry
    transport: QueryTransport
    classifier: ErrorClassifier = field(default_factory=ErrorClassifier)
    retry_policy: RetryPolicy = NO_RETRY

    def fetch_all(
        self,
        approver: str,
        numero: str | None = None,
        *,
        tenant_ids: Iterable[str] | None = None,
    ) -> AggregateResult:
        approver_key = str(approver or "").strip()
        if not approver_key:
            raise ValidationError(details="aprovador obrigatorio para consulta.", payload={"field": "aprovador"})
        numero_filter = str(numero or "").strip() or None

        tenants = self.registry.active_tenants()
        if tenant_ids is not None:
            wanted = {normalize_tenant_id(tenant_id) for tenant_id in tenant_ids}
            tenants = [tenant for tenant in tenants if tenant.tenant_id in wanted]
        if not tenants:
            return AggregateResult()

        request_id = current_request_id(default=None)
        # One worker per tenant: no tenant waits for another one to answer.
        with ThreadPoolExecutor(max_workers=len(tenants), thread_name_prefix="erp-fanout") as executor:
            futures = [
                executor.submit(self._fetch_tenant, tenant, approver_key, numero_filter, request_id)
                for tenant in tenants
            ]
            # Settle-all: every tenant answers or fails before the merge.
            wait(futures)
        outcomes = [future.result() for future in futures]

        result = _merge(outcomes)
        logger.info(
            "aggregation_finished",
            extra={
                "approver": approver_key,
                "numero": numero_filter,
                "tenants_queried": len(tenants),
                "tenants_succeeded": list(result.succeeded),
                "tenants_failed": list(result.failed),
                "documents": len(result.documents),
            },
        )
        return result

    def _fetch_tenant(
        self,
        tenant: TenantConfig,
        approver: str,
        numero: str | None,
        request_id: str | None,
    ) -> _TenantOutcome:
        with bind_request_id(request_id):
            started = time.perf_counter()
            attempt = 0
            while True:
                try:
                    documents = self._query(tenant, approver, numero)
                except Exception as exc:  # noqa: BLE001
                    failure = self.classifier.classify(exc)
                    if self.retry_policy.should_retry(failure, attempt):
                        attempt += 1
                        logger.warning(
                            "tenant_fetch_retry",
                            extra={"tenant_id": tenant.tenant_id, "attempt": attempt, "error_kind": failure.kind},
                        )
                        if self.retry_policy.backoff_seconds > 0:
                            time.sleep(self.retry_policy.backoff_seconds)
                        continue
                    duration_ms = (time.perf_counter() - started) * 1000.0
                    logger.warning(
                        "tenant_fetch_failed",
                        extra={
                            "tenant_id": tenant.tenant_id,
                            "error_kind": failure.kind,
                            "upstream_status": failure.status,
                            "details": failure.message,
                            "duration_ms": round(duration_ms, 2),
                        },
                    )
                    observe_tenant_fetch(tenant.tenant_id, failure.kind, duration_ms)
                    return _TenantOutcome(
                        tenant_id=tenant.tenant_id,
                        error=AggregationError(tenant.tenant_id, failure.kind, failure.status, failure.message),
                        attempts=attempt + 1,
                        duration_ms=duration_ms,
                    )

                duration_ms = (time.perf_counter() - started) * 1000.0
                logger.info(
                    "tenant_fetch_succeeded",
                    extra={
                        "tenant_id": tenant.tenant_id,
                        "documents": len(documents),
                        "duration_ms": round(duration_ms, 2),
                    },
                )
                observe_tenant_fetch(tenant.tenant_id, None, duration_ms)
                return _TenantOutcome(
                    tenant_id=tenant.tenant_id,
                    documents=documents,
                    attempts=attempt + 1,
                    duration_ms=duration_ms,
                )

    def _query(self, tenant: TenantConfig, approver: str, numero: str | None) -> tuple[Document, ...]:
        url = build_query_url(tenant, approver, numero)
        payload = self.transport.get_json(url, headers=tenant_headers(tenant), timeout=tenant.timeout_seconds)
        raw_documents = _documents_from_payload(payload)
        return tuple(Document.from_payload(raw, tenant_id=tenant.tenant_id) for raw in raw_documents)


def _documents_from_payload(payload: object) -> List[dict]:
    if isinstance(payload, dict):
        documents = payload.get("documentos")
        if documents is None:
            return []
        if isinstance(documents, list):
            return [item for item in documents if isinstance(item, dict)]
    raise ErpTransportError("Resposta inesperada do ERP (sem lista de documentos).", status=200)


def _merge(outcomes: Iterable[_TenantOutcome]) -> AggregateResult:
    documents: list[Document] = []
    succeeded: list[str] = []
    failed: list[str] = []
    errors: list[AggregationError] = []
    for outcome in outcomes:
        if outcome.error is not None:
            failed.append(outcome.tenant_id)
            errors.append(outcome.error)
            continue
        succeeded.append(outcome.tenant_id)
        documents.extend(outcome.documents)
    return AggregateResult(
        documents=tuple(documents),
        succeeded=tuple(succeeded),
        failed=tuple(failed),
        errors=tuple(errors),
    )
