from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Sequence


PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"

ROSTER_STATES: tuple[str, ...] = (PENDING, APPROVED, REJECTED)

KIND_PURCHASE_ORDER = "IP"
KIND_PURCHASE_REQUEST = "SC"
KIND_PARTNERSHIP_CONTRACT = "CP"

DOCUMENT_KINDS: tuple[str, ...] = (KIND_PURCHASE_ORDER, KIND_PURCHASE_REQUEST, KIND_PARTNERSHIP_CONTRACT)

_UPSTREAM_STATES = {
    "pendente": PENDING,
    "liberado": APPROVED,
    "aprovado": APPROVED,
    "rejeitado": REJECTED,
    "reprovado": REJECTED,
}

_BRANCH_CODE_PATTERN = re.compile(r"^\s*([^\s\-|/:]+)")


def _safe_str(value: object | None) -> str:
    return str(value or "").strip()


def _safe_float(value: object | None, default: float = 0.0) -> float:
    if value is None or value == "":
        return float(default)
    if isinstance(value, (int, float)):
        return float(value)
    raw = str(value).strip()
    if "," in raw:
        # pt-BR: 1.234,56
        raw = raw.replace(".", "").replace(",", ".")
    try:
        return float(raw)
    except ValueError:
        return float(default)


def normalize_roster_state(raw: object | None) -> str:
    normalized = _safe_str(raw).lower()
    if normalized in ROSTER_STATES:
        return normalized
    # "Aguardando nivel anterior" and blanks are still waiting for a decision.
    return _UPSTREAM_STATES.get(normalized, PENDING)


def normalize_document_id(value: object | None) -> str:
    return _safe_str(value)


def normalize_branch_code(value: object | None) -> str:
    """Keep only the branch code from values like ``"0101 - Matriz SP"``."""
    match = _BRANCH_CODE_PATTERN.match(str(value or ""))
    return match.group(1) if match else ""


@dataclass(frozen=True)
class ApprovalRosterEntry:
    approver_code: str
    machine_id: str = ""
    display_name: str = ""
    state: str = PENDING
    level: str = ""
    remarks: str = ""

    @property
    def identifiers(self) -> tuple[str, ...]:
        return tuple(value for value in (self.machine_id, self.approver_code, self.display_name) if value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "approver_code": self.approver_code,
            "machine_id": self.machine_id,
            "display_name": self.display_name,
            "state": self.state,
            "level": self.level,
            "remarks": self.remarks,
        }

    @staticmethod
    def from_payload(payload: dict[str, Any]) -> "ApprovalRosterEntry":
        data = dict(payload or {})
        return ApprovalRosterEntry(
            approver_code=_safe_str(data.get("aprovador_aprov")),
            machine_id=_safe_str(data.get("CIDENTIFICADOR")),
            display_name=_safe_str(data.get("CNOME")),
            state=normalize_roster_state(data.get("situacao_aprov")),
            level=_safe_str(data.get("nivel_aprov")),
            remarks=_safe_str(data.get("observacao_aprov") or data.get("obs_aprov")),
        )


def derive_document_status(roster: Sequence[ApprovalRosterEntry]) -> str:
    if not roster:
        return PENDING
    states = {entry.state for entry in roster}
    if REJECTED in states:
        return REJECTED
    if PENDING in states:
        return PENDING
    return APPROVED


@dataclass(frozen=True)
class Document:
    document_id: str
    kind: str
    branch: str = ""
    tenant_id: str | None = None
    total_value: float = 0.0
    roster: tuple[ApprovalRosterEntry, ...] = ()
    supplier_name: str = ""
    buyer: str = ""
    items: tuple[dict, ...] = ()
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    @property
    def key(self) -> tuple[str | None, str]:
        return (self.tenant_id, normalize_document_id(self.document_id))

    @property
    def branch_code(self) -> str:
        return normalize_branch_code(self.branch)

    @property
    def status(self) -> str:
        return derive_document_status(self.roster)

    def with_tenant(self, tenant_id: str) -> "Document":
        return replace(self, tenant_id=tenant_id)

    def with_roster(self, roster: Iterable[ApprovalRosterEntry]) -> "Document":
        return replace(self, roster=tuple(roster))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "document_id": normalize_document_id(self.document_id),
            "kind": self.kind,
            "branch": self.branch,
            "branch_code": self.branch_code,
            "total_value": self.total_value,
            "supplier_name": self.supplier_name,
            "buyer": self.buyer,
            "status": self.status,
            "roster": [entry.to_dict() for entry in self.roster],
            "items": [dict(item) for item in self.items],
        }

    @staticmethod
    def from_payload(payload: dict[str, Any], tenant_id: str | None = None) -> "Document":
        data = dict(payload or {})
        roster_raw = data.get("alcada")
        roster: list[ApprovalRosterEntry] = []
        if isinstance(roster_raw, list):
            roster = [ApprovalRosterEntry.from_payload(row) for row in roster_raw if isinstance(row, dict)]

        items_raw = data.get("itens")
        items: list[dict] = []
        if isinstance(items_raw, list):
            items = [dict(item) for item in items_raw if isinstance(item, dict)]

        if data.get("vl_tot_documento") not in (None, ""):
            total_value = _safe_float(data.get("vl_tot_documento"))
        else:
            total_value = sum(_safe_float(item.get("total")) for item in items)

        return Document(
            document_id=_safe_str(data.get("numero")),
            kind=_safe_str(data.get("tipo")).upper(),
            branch=_safe_str(data.get("filial")),
            tenant_id=tenant_id,
            total_value=total_value,
            roster=tuple(roster),
            supplier_name=_safe_str(data.get("nome_fornecedor")),
            buyer=_safe_str(data.get("comprador")),
            items=tuple(items),
            raw=data,
        )


def find_document(
    documents: Iterable[Document],
    tenant_id: str | None,
    document_id: str,
) -> Document | None:
    wanted = (tenant_id, normalize_document_id(document_id))
    for document in documents:
        if document.key == wanted:
            return document
    return None
