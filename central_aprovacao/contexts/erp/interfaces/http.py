from __future__ import annotations

from flask import Blueprint, jsonify

from central_aprovacao.contexts.erp.infrastructure.tenant_repository import load_tenant_registry
from central_aprovacao.db import get_db


tenants_bp = Blueprint("tenants", __name__, url_prefix="/api/tenants")


@tenants_bp.route("", methods=["GET"])
def list_tenants_http():
    registry = load_tenant_registry(get_db())
    return jsonify(
        {
            "default_tenant_id": registry.default_tenant_id,
            "tenants": [tenant.to_public_dict() for tenant in registry.active_tenants()],
        }
    )
