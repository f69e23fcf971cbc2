from __future__ import annotations

from typing import Any, Dict

from central_aprovacao.ui_strings import error_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "Nao foi possivel concluir a operacao.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    default_code = "validation_error"
    default_message_key = "validation_error"
    default_http_status = 400
    default_critical = False


class PermissionError(UserActionError):
    default_code = "permission_denied"
    default_message_key = "permission_denied"
    default_http_status = 403
    default_critical = False


class TenantNotFoundError(UserActionError):
    default_code = "tenant_not_found"
    default_message_key = "tenant_not_found"
    default_http_status = 404
    default_critical = False


class DocumentNotFoundError(UserActionError):
    default_code = "document_not_found"
    default_message_key = "document_not_found"
    default_http_status = 404
    default_critical = False


class NotEligibleError(UserActionError):
    default_code = "not_eligible"
    default_message_key = "not_eligible"
    default_http_status = 409
    default_critical = False

    def __init__(self, reason: str, **kwargs: Any) -> None:
        payload = dict(kwargs.pop("payload", None) or {})
        payload.setdefault("reason", reason)
        kwargs.setdefault("details", f"aprovador nao elegivel: {reason}")
        super().__init__(payload=payload, **kwargs)
        self.reason = reason


class IntegrationError(AppError):
    default_code = "integration_error"
    default_message_key = "erp_temporarily_unavailable"
    default_http_status = 502
    default_critical = False


class ErpActionError(IntegrationError):
    """The owning backend did not acknowledge an approve/reject write."""

    default_code = "erp_action_failed"
    default_message_key = "erp_action_failed"
    default_http_status = 502
    default_critical = False

    def __init__(
        self,
        *,
        kind: str,
        upstream_status: int | None = None,
        upstream_body: str | None = None,
        **kwargs: Any,
    ) -> None:
        payload = dict(kwargs.pop("payload", None) or {})
        payload.update(
            {
                "kind": kind,
                "upstream_status": upstream_status,
                "upstream_body": upstream_body,
            }
        )
        super().__init__(payload=payload, **kwargs)
        self.kind = kind
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True
