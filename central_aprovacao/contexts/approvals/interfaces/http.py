from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, session

from central_aprovacao.config import bool_config, get_config, int_config
from central_aprovacao.contexts.approvals.application.aggregator import ParallelAggregator, RetryPolicy
from central_aprovacao.contexts.approvals.application.dispatcher import (
    APPROVE,
    REJECT,
    ActionDispatcher,
    get_idempotency_guard,
)
from central_aprovacao.contexts.approvals.application.service import ApprovalService
from central_aprovacao.contexts.approvals.domain.chain import ApprovalChainResolver
from central_aprovacao.contexts.erp.infrastructure.client import ErpHttpClient
from central_aprovacao.contexts.erp.infrastructure.error_classifier import ErrorClassifier
from central_aprovacao.contexts.erp.infrastructure.tenant_repository import load_tenant_registry
from central_aprovacao.db import get_db
from central_aprovacao.errors import PermissionError as AppPermissionError
from central_aprovacao.errors import ValidationError
from central_aprovacao.ui_strings import success_message


approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/aprovacoes")

_SUCCESS_KEYS = {APPROVE: "approved", REJECT: "rejected"}
_BULK_SUCCESS_KEYS = {APPROVE: "bulk_approved", REJECT: "bulk_rejected"}


def erp_transport():
    transport = current_app.extensions.get("erp_transport")
    if transport is not None:
        return transport
    return ErpHttpClient(verify_ssl=bool_config("ERP_VERIFY_SSL", True))


def build_approval_service() -> ApprovalService:
    registry = load_tenant_registry(get_db())
    transport = erp_transport()
    classifier = ErrorClassifier()
    resolver = ApprovalChainResolver()
    retry_policy = RetryPolicy(
        network_retries=int_config("ERP_NETWORK_RETRY_ATTEMPTS", 0),
        backoff_seconds=int_config("ERP_RETRY_BACKOFF_MS", 300) / 1000.0,
    )
    aggregator = ParallelAggregator(
        registry=registry,
        transport=transport,
        classifier=classifier,
        retry_policy=retry_policy,
    )
    dispatcher = ActionDispatcher(
        registry=registry,
        transport=transport,
        resolver=resolver,
        classifier=classifier,
        idempotency=get_idempotency_guard(),
    )
    return ApprovalService(registry, aggregator, dispatcher, resolver)


def current_caller() -> str:
    """Caller login: the session when auth is on, or a header a gateway vouches for."""
    caller = str(session.get("user_email") or "").strip()
    if not caller:
        caller = _header_identity()
    if caller:
        return caller
    if bool_config("AUTH_ENABLED", True):
        raise AppPermissionError(
            code="auth_required",
            message_key="auth_required",
            http_status=401,
            critical=False,
        )
    raise ValidationError(details="aprovador nao informado.", payload={"field": "user_email"})


def _header_identity() -> str:
    if bool_config("AUTH_ENABLED", True):
        header_name = str(get_config("AUTH_IDENTITY_HEADER") or "").strip()
        if not header_name:
            return ""
    else:
        header_name = "X-User-Email"
    return (request.headers.get(header_name) or "").strip()


def _optional_string(body: dict, field_name: str) -> str | None:
    value = body.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(payload={"field": field_name})
    return value.strip() or None


@approvals_bp.route("/documentos", methods=["GET"])
def list_documents_http():
    caller = current_caller()
    numero = (request.args.get("numero") or "").strip() or None
    payload = build_approval_service().list_documents(caller, numero)
    return jsonify(payload)


@approvals_bp.route("/documentos/<tenant_id>/<numero>", methods=["GET"])
def get_document_http(tenant_id: str, numero: str):
    caller = current_caller()
    return jsonify(build_approval_service().get_document(caller, tenant_id, numero))


def _decide(tenant_id: str, numero: str, decision: str):
    caller = current_caller()
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        raise ValidationError(payload={"field": "body"})

    comment = _optional_string(body, "comentario")
    idempotency_key = _optional_string(body, "idempotency_key") or (
        (request.headers.get("Idempotency-Key") or "").strip() or None
    )
    ack = build_approval_service().decide(
        caller,
        tenant_id,
        numero,
        decision,
        comment,
        idempotency_key=idempotency_key,
    )
    payload = ack.to_dict()
    payload["message"] = success_message(_SUCCESS_KEYS[ack.decision])
    return jsonify(payload), 200


@approvals_bp.route("/documentos/<tenant_id>/<numero>/aprovar", methods=["POST"])
def approve_document_http(tenant_id: str, numero: str):
    return _decide(tenant_id, numero, APPROVE)


@approvals_bp.route("/documentos/<tenant_id>/<numero>/rejeitar", methods=["POST"])
def reject_document_http(tenant_id: str, numero: str):
    return _decide(tenant_id, numero, REJECT)


def _bulk_items(body: dict) -> list[tuple[str, str]]:
    raw_items = body.get("documentos")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError(payload={"field": "documentos"})
    items: list[tuple[str, str]] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError(payload={"field": "documentos"})
        tenant_id = _optional_string(raw, "tenant_id")
        numero = _optional_string(raw, "numero")
        if not tenant_id or not numero:
            raise ValidationError(payload={"field": "documentos"})
        items.append((tenant_id, numero))
    return items


def _decide_many(decision: str):
    caller = current_caller()
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        raise ValidationError(payload={"field": "body"})

    items = _bulk_items(body)
    comment = _optional_string(body, "comentario")
    payload = build_approval_service().decide_many(caller, items, decision, comment)
    payload["message"] = success_message(_BULK_SUCCESS_KEYS[decision])
    return jsonify(payload), 200


@approvals_bp.route("/documentos/lote/aprovar", methods=["POST"])
def approve_documents_bulk_http():
    return _decide_many(APPROVE)


@approvals_bp.route("/documentos/lote/rejeitar", methods=["POST"])
def reject_documents_bulk_http():
    return _decide_many(REJECT)
