from __future__ import annotations

import json
import logging
from typing import List

from central_aprovacao.config import get_config
from central_aprovacao.contexts.erp.domain.tenants import MILLISECOND_TIMEOUT_KEYS, TenantConfig, TenantRegistry


logger = logging.getLogger(__name__)

_COLUMNS = (
    "tenant_id",
    "name",
    "erp",
    "base_url",
    "query_path",
    "action_path",
    "username",
    "password",
    "timeout_seconds",
    "company_code",
    "is_active",
    "is_default",
)


def list_tenant_rows(db) -> List[dict]:
    rows = db.execute(
        f"SELECT {', '.join(_COLUMNS)} FROM erp_tenants ORDER BY is_default DESC, tenant_id",
    ).fetchall()
    return [dict(row) for row in rows]


def upsert_tenant(db, tenant: TenantConfig) -> None:
    values = (
        tenant.tenant_id,
        tenant.name,
        tenant.erp,
        tenant.base_url,
        tenant.query_path,
        tenant.action_path,
        tenant.username,
        tenant.password,
        tenant.timeout_seconds,
        tenant.company_code,
        1 if tenant.active else 0,
        1 if tenant.is_default else 0,
    )
    db.execute(
        f"""
        INSERT INTO erp_tenants ({', '.join(_COLUMNS)})
        VALUES ({', '.join('?' for _ in _COLUMNS)})
        ON CONFLICT (tenant_id) DO UPDATE SET
            name = excluded.name,
            erp = excluded.erp,
            base_url = excluded.base_url,
            query_path = excluded.query_path,
            action_path = excluded.action_path,
            username = excluded.username,
            password = excluded.password,
            timeout_seconds = excluded.timeout_seconds,
            company_code = excluded.company_code,
            is_active = excluded.is_active,
            is_default = excluded.is_default,
            updated_at = CURRENT_TIMESTAMP
        """,
        values,
    )
    db.commit()


def _config_defaults() -> dict:
    defaults = {
        "timeout_seconds": get_config("ERP_TIMEOUT_SECONDS"),
        "query_path": get_config("ERP_QUERY_PATH"),
        "action_path": get_config("ERP_ACTION_PATH"),
        "company_code": get_config("ERP_COMPANY_CODE"),
    }
    return {key: value for key, value in defaults.items() if value not in (None, "")}


def parse_tenants_config(value: object | None, defaults: dict | None = None) -> List[TenantConfig]:
    if not value:
        return []
    raw = value
    if isinstance(value, str):
        try:
            raw = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError("ERP_TENANTS deve ser uma lista JSON.") from exc
    if isinstance(raw, dict):
        raw = [dict(record, tenant_id=record.get("tenant_id") or code) for code, record in raw.items()]
    if not isinstance(raw, list):
        raise ValueError("ERP_TENANTS deve ser uma lista JSON.")
    return [TenantConfig.from_dict(_with_defaults(record, defaults)) for record in raw if isinstance(record, dict)]


def _with_defaults(record: dict, defaults: dict | None) -> dict:
    base = dict(defaults or {})
    if any(record.get(key) not in (None, "") for key in MILLISECOND_TIMEOUT_KEYS):
        base.pop("timeout_seconds", None)
    return {**base, **record}


def load_tenant_registry(db=None) -> TenantRegistry:
    """Build a fresh snapshot from the ``erp_tenants`` table and ``ERP_TENANTS``.

    Config records win over table rows with the same tenant id.
    """
    tenants: dict[str, TenantConfig] = {}
    if db is not None:
        for row in list_tenant_rows(db):
            try:
                tenant = TenantConfig.from_dict(row)
            except ValueError:
                logger.warning("tenant_row_invalid", extra={"tenant_id": row.get("tenant_id")})
                continue
            tenants[tenant.tenant_id] = tenant

    for tenant in parse_tenants_config(get_config("ERP_TENANTS"), _config_defaults()):
        tenants[tenant.tenant_id] = tenant

    return TenantRegistry(tenants.values(), default_tenant_id=get_config("ERP_DEFAULT_TENANT"))
