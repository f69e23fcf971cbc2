from __future__ import annotations

from typing import Dict


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "Central de Aprovacao",
    "document": "Documento",
    "roster": "Alcada",
    "tenant": "Pais",
    "approver": "Aprovador",
}


DOCUMENT_KIND_LABELS: Dict[str, str] = {
    "IP": "Pedido de Compra",
    "SC": "Solicitacao de Compra",
    "CP": "Contrato de Parceria",
}


DOCUMENT_STATUS_LABELS: Dict[str, str] = {
    "pending": "Pendente",
    "approved": "Liberado",
    "rejected": "Rejeitado",
}


TENANT_ERROR_LABELS: Dict[str, str] = {
    "network": "ERP do pais indisponivel ou sem resposta.",
    "auth": "Credenciais do ERP do pais recusadas.",
    "server": "ERP do pais retornou erro.",
    "unknown": "Falha inesperada ao consultar o ERP do pais.",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "errors": {
        "unexpected_error": "Nao foi possivel concluir a operacao.",
        "action_invalid": "Acao invalida para este documento.",
        "validation_error": "Dados invalidos na requisicao.",
        "auth_required": "Sessao expirada. Faca login novamente.",
        "permission_denied": "Sem permissao para acessar documentos.",
        "tenant_not_found": "Pais nao configurado ou inativo.",
        "document_not_found": "Documento nao encontrado.",
        "not_eligible": "Voce nao pode mais agir sobre este documento.",
        "action_in_progress": "Esta acao ja esta sendo processada.",
        "idempotency_key_reused": "Esta chave de idempotencia ja foi usada em outra acao.",
        "erp_action_failed": "O ERP recusou a aprovacao do documento.",
        "erp_temporarily_unavailable": "ERP temporariamente indisponivel. Tente novamente.",
    },
    "success": {
        "approved": "Documento aprovado com sucesso.",
        "rejected": "Documento rejeitado com sucesso.",
        "bulk_approved": "Aprovacao em massa concluida.",
        "bulk_rejected": "Rejeicao em massa concluida.",
    },
}


def get_message(category: str, key: str, default: str | None = None) -> str:
    bucket = MESSAGES.get(category) or {}
    value = bucket.get(key)
    if value:
        return value
    return default if default is not None else key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("errors", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def document_kind_label(kind: str | None) -> str:
    normalized = str(kind or "").strip().upper()
    return DOCUMENT_KIND_LABELS.get(normalized, normalized)


def document_status_label(status: str | None) -> str:
    normalized = str(status or "").strip().lower()
    return DOCUMENT_STATUS_LABELS.get(normalized, DOCUMENT_STATUS_LABELS["pending"])


def tenant_error_message(kind: str | None) -> str:
    normalized = str(kind or "").strip().lower()
    return TENANT_ERROR_LABELS.get(normalized, TENANT_ERROR_LABELS["unknown"])
