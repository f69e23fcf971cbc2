"""Matching of a caller login against the identifiers stored on a roster.

Upstream rosters are inconsistent: an entry may carry a short login
(``lais.oliveira``), a full display name (``LAIS OLIVEIRA``), an accented or
truncated variant, or a code. The policy below tries a fixed list of rules,
strictest first, and reports which one matched so that fuzzy matches can be
logged and audited.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Callable, Sequence

from central_aprovacao.contexts.approvals.domain.documents import ApprovalRosterEntry


RULE_MACHINE_ID = "machine_id"
RULE_DISPLAY_NAME = "display_name"
RULE_COMPACT_LOCAL_PART = "compact_local_part"
RULE_SURNAME = "surname"
RULE_INITIAL_SURNAME = "initial_surname"

EXACT_RULES = frozenset({RULE_MACHINE_ID, RULE_DISPLAY_NAME})

_TOKEN_SPLIT = re.compile(r"[^0-9a-z]+")


def fold(value: object | None) -> str:
    """Lowercase, strip accents and surrounding whitespace."""
    decomposed = unicodedata.normalize("NFKD", str(value or ""))
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return without_marks.strip().casefold()


def tokens(value: object | None) -> list[str]:
    return [token for token in _TOKEN_SPLIT.split(fold(value)) if token]


def compact(value: object | None) -> str:
    return "".join(tokens(value))


def initial_surname(value: object | None) -> str:
    parts = tokens(value)
    if len(parts) < 2:
        return ""
    return parts[0][0] + parts[-1]


@dataclass(frozen=True)
class CallerIdentity:
    login: str
    local_part: str

    @staticmethod
    def parse(login: object | None) -> "CallerIdentity":
        normalized = fold(login)
        local_part = normalized.split("@", 1)[0] if normalized else ""
        return CallerIdentity(login=normalized, local_part=local_part)

    @property
    def exact_candidates(self) -> set[str]:
        return {value for value in (self.login, self.local_part) if value}

    @property
    def surname(self) -> str:
        parts = tokens(self.local_part)
        return parts[-1] if parts else ""


@dataclass(frozen=True)
class IdentityMatch:
    index: int
    entry: ApprovalRosterEntry
    rule: str

    @property
    def fuzzy(self) -> bool:
        return self.rule not in EXACT_RULES


MatchRule = Callable[[CallerIdentity, ApprovalRosterEntry], bool]


def _match_machine_id(caller: CallerIdentity, entry: ApprovalRosterEntry) -> bool:
    candidates = caller.exact_candidates
    return any(fold(value) in candidates for value in (entry.machine_id, entry.approver_code) if value)


def _match_display_name(caller: CallerIdentity, entry: ApprovalRosterEntry) -> bool:
    return bool(entry.display_name) and fold(entry.display_name) in caller.exact_candidates


def _match_compact_local_part(caller: CallerIdentity, entry: ApprovalRosterEntry) -> bool:
    wanted = compact(caller.local_part)
    if not wanted:
        return False
    return any(compact(value) == wanted for value in entry.identifiers)


def _match_surname(caller: CallerIdentity, entry: ApprovalRosterEntry) -> bool:
    surname = caller.surname
    if len(surname) < 2:
        return False
    return any(compact(value) == surname for value in entry.identifiers)


def _match_initial_surname(caller: CallerIdentity, entry: ApprovalRosterEntry) -> bool:
    caller_compact = compact(caller.local_part)
    caller_short = initial_surname(caller.local_part)
    for value in entry.identifiers:
        if caller_short and compact(value) == caller_short:
            return True
        # Roster keeps the long form, login uses the short one (lais.oliveira vs loliveira).
        if caller_compact and initial_surname(value) == caller_compact:
            return True
    return False


DEFAULT_RULES: tuple[tuple[str, MatchRule], ...] = (
    (RULE_MACHINE_ID, _match_machine_id),
    (RULE_DISPLAY_NAME, _match_display_name),
    (RULE_COMPACT_LOCAL_PART, _match_compact_local_part),
    (RULE_SURNAME, _match_surname),
    (RULE_INITIAL_SURNAME, _match_initial_surname),
)


class IdentityMatchPolicy:
    def __init__(self, rules: Sequence[tuple[str, MatchRule]] = DEFAULT_RULES) -> None:
        self._rules = tuple(rules)

    @property
    def rule_names(self) -> tuple[str, ...]:
        return tuple(name for name, _rule in self._rules)

    def match_entry(self, caller: CallerIdentity, entry: ApprovalRosterEntry) -> str | None:
        for name, rule in self._rules:
            if rule(caller, entry):
                return name
        return None

    def locate(self, roster: Sequence[ApprovalRosterEntry], login: object | None) -> IdentityMatch | None:
        caller = CallerIdentity.parse(login)
        if not caller.local_part:
            return None
        for index, entry in enumerate(roster):
            rule = self.match_entry(caller, entry)
            if rule is not None:
                return IdentityMatch(index=index, entry=entry, rule=rule)
        return None


def exact_only_policy() -> IdentityMatchPolicy:
    return IdentityMatchPolicy([(name, rule) for name, rule in DEFAULT_RULES if name in EXACT_RULES])
