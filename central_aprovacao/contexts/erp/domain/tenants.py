from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Union

from central_aprovacao.errors import TenantNotFoundError


DEFAULT_QUERY_PATH = "/DocAprov/documentos"
DEFAULT_ACTION_PATH = "/aprova_documento"
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_COMPANY_CODE = "01"
DEFAULT_ERP = "PROTHEUS"
MILLISECOND_TIMEOUT_KEYS = ("timeout_ms", "api_timeout")


def normalize_tenant_id(value: object | None) -> str | None:
    tenant_id = str(value or "").strip().upper()
    return tenant_id or None


def _safe_str(value: object | None) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    return raw or None


def _safe_timeout(value: object | None, default: int) -> float:
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return float(default)
    if parsed <= 0:
        return float(default)
    return parsed


def _timeout_seconds(data: dict) -> float:
    """``timeout_seconds`` is in seconds; upstream country records carry milliseconds."""
    if data.get("timeout_seconds") not in (None, ""):
        return _safe_timeout(data.get("timeout_seconds"), DEFAULT_TIMEOUT_SECONDS)
    for key in MILLISECOND_TIMEOUT_KEYS:
        if data.get(key) not in (None, ""):
            return _safe_timeout(data.get(key), DEFAULT_TIMEOUT_SECONDS * 1000) / 1000.0
    return float(DEFAULT_TIMEOUT_SECONDS)


def _safe_bool(value: object | None, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on", "t"}


@dataclass(frozen=True)
class TenantConfig:
    tenant_id: str
    base_url: str
    username: str = ""
    password: str = field(default="", repr=False)
    query_path: str = DEFAULT_QUERY_PATH
    action_path: str = DEFAULT_ACTION_PATH
    timeout_seconds: float = float(DEFAULT_TIMEOUT_SECONDS)
    active: bool = True
    erp: str = DEFAULT_ERP
    name: str | None = None
    company_code: str = DEFAULT_COMPANY_CODE
    is_default: bool = False

    @property
    def query_url(self) -> str:
        return self._join(self.query_path)

    @property
    def action_url(self) -> str:
        return self._join(self.action_path)

    def _join(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{str(path or '').lstrip('/')}"

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "name": self.name or self.tenant_id,
            "erp": self.erp,
            "base_url": self.base_url,
            "timeout_seconds": self.timeout_seconds,
            "active": self.active,
            "is_default": self.is_default,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "TenantConfig":
        data = dict(payload or {})
        tenant_id = normalize_tenant_id(data.get("tenant_id") or data.get("code") or data.get("id"))
        base_url = _safe_str(data.get("base_url") or data.get("api_base_url"))
        if not tenant_id or not base_url:
            raise ValueError("tenant_id e base_url sao obrigatorios.")
        return TenantConfig(
            tenant_id=tenant_id,
            base_url=base_url,
            username=_safe_str(data.get("username") or data.get("api_username")) or "",
            password=str(data.get("password") or data.get("api_password") or ""),
            query_path=_safe_str(data.get("query_path")) or DEFAULT_QUERY_PATH,
            action_path=_safe_str(data.get("action_path")) or DEFAULT_ACTION_PATH,
            timeout_seconds=_timeout_seconds(data),
            active=_safe_bool(data.get("active", data.get("is_active")), True),
            erp=(_safe_str(data.get("erp")) or DEFAULT_ERP).upper(),
            name=_safe_str(data.get("name")),
            company_code=_safe_str(data.get("company_code")) or DEFAULT_COMPANY_CODE,
            is_default=_safe_bool(data.get("is_default"), False),
        )


@dataclass(frozen=True)
class Tenant:
    tenant_id: str


@dataclass(frozen=True)
class DefaultTenant:
    pass


TenantRef = Union[Tenant, DefaultTenant]


def tenant_ref_for(tenant_id: object | None) -> TenantRef:
    normalized = normalize_tenant_id(tenant_id)
    if normalized:
        return Tenant(normalized)
    return DefaultTenant()


class TenantRegistry:
    """Read-only snapshot of the configured ERP backends.

    Iteration order is the order tenants were given in; that order drives the
    fan-out and the merged document order.
    """

    def __init__(self, tenants: Iterable[TenantConfig], default_tenant_id: str | None = None) -> None:
        ordered: dict[str, TenantConfig] = {}
        for tenant in tenants:
            ordered[tenant.tenant_id] = tenant
        self._tenants = ordered
        self._default_tenant_id = normalize_tenant_id(default_tenant_id) or self._flagged_default()

    def _flagged_default(self) -> str | None:
        for tenant in self._tenants.values():
            if tenant.is_default and tenant.active:
                return tenant.tenant_id
        return None

    @property
    def default_tenant_id(self) -> str | None:
        return self._default_tenant_id

    def all_tenants(self) -> List[TenantConfig]:
        return list(self._tenants.values())

    def active_tenants(self) -> List[TenantConfig]:
        return [tenant for tenant in self._tenants.values() if tenant.active]

    def resolve(self, tenant_id: str | None) -> TenantConfig:
        normalized = normalize_tenant_id(tenant_id)
        tenant = self._tenants.get(normalized or "")
        if tenant is None or not tenant.active:
            raise TenantNotFoundError(
                details=f"tenant nao configurado ou inativo: {tenant_id}",
                payload={"tenant_id": normalized},
            )
        return tenant

    def resolve_ref(self, ref: TenantRef) -> TenantConfig:
        if isinstance(ref, Tenant):
            return self.resolve(ref.tenant_id)
        if isinstance(ref, DefaultTenant):
            if not self._default_tenant_id:
                raise TenantNotFoundError(details="nenhum tenant padrao configurado.")
            return self.resolve(self._default_tenant_id)
        raise TypeError(f"TenantRef invalido: {ref!r}")

    def __len__(self) -> int:
        return len(self._tenants)
