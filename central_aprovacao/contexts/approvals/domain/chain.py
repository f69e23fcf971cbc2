from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from central_aprovacao.contexts.approvals.domain.documents import (
    APPROVED,
    PENDING,
    ApprovalRosterEntry,
    derive_document_status,
)
from central_aprovacao.contexts.approvals.domain.identity import IdentityMatch, IdentityMatchPolicy
from central_aprovacao.observability import observe_identity_fuzzy_match


logger = logging.getLogger(__name__)

REASON_ELIGIBLE = "eligible"
REASON_IDENTITY_NOT_FOUND = "identity_not_found"
REASON_ALREADY_ACTED = "already_acted"
REASON_WAITING_PREVIOUS_LEVEL = "waiting_previous_level"


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: str
    match: IdentityMatch | None = None
    blocking_index: int | None = None

    def __bool__(self) -> bool:
        return self.eligible

    @property
    def index(self) -> int | None:
        return self.match.index if self.match else None

    @property
    def entry(self) -> ApprovalRosterEntry | None:
        return self.match.entry if self.match else None

    def to_dict(self) -> dict:
        return {
            "can_act": self.eligible,
            "reason": self.reason,
            "level_index": self.index,
            "match_rule": self.match.rule if self.match else None,
            "blocking_index": self.blocking_index,
        }


class ApprovalChainResolver:
    """Strict FIFO approval chain over an ordered roster.

    Nothing is stored: every answer is recomputed from the roster it is given.
    """

    def __init__(self, policy: IdentityMatchPolicy | None = None) -> None:
        self.policy = policy or IdentityMatchPolicy()

    @staticmethod
    def document_status(roster: Sequence[ApprovalRosterEntry]) -> str:
        return derive_document_status(roster)

    @staticmethod
    def next_in_line(roster: Sequence[ApprovalRosterEntry]) -> int | None:
        for index, entry in enumerate(roster):
            if entry.state == APPROVED:
                continue
            if entry.state == PENDING:
                return index
            return None
        return None

    def locate(self, roster: Sequence[ApprovalRosterEntry], caller: str | None) -> IdentityMatch | None:
        match = self.policy.locate(roster, caller)
        if match is not None and match.fuzzy:
            logger.info(
                "approval_identity_fuzzy_match",
                extra={
                    "caller": caller,
                    "match_rule": match.rule,
                    "level_index": match.index,
                    "roster_machine_id": match.entry.machine_id,
                    "roster_display_name": match.entry.display_name,
                },
            )
            observe_identity_fuzzy_match(match.rule)
        return match

    def can_act(self, roster: Sequence[ApprovalRosterEntry], caller: str | None) -> Eligibility:
        match = self.locate(roster, caller)
        if match is None:
            return Eligibility(False, REASON_IDENTITY_NOT_FOUND)

        if match.entry.state != PENDING:
            return Eligibility(False, REASON_ALREADY_ACTED, match=match)

        for index in range(match.index):
            if roster[index].state != APPROVED:
                return Eligibility(False, REASON_WAITING_PREVIOUS_LEVEL, match=match, blocking_index=index)

        return Eligibility(True, REASON_ELIGIBLE, match=match)
