from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from bluepim.errors import SelectionError
from bluepim.models import Role


KEYWORD_ALL = "ALL"
KEYWORD_ACTIVE = "ACTIVE"
KEYWORD_INACTIVE = "INACTIVE"
KEYWORDS = (KEYWORD_ALL, KEYWORD_ACTIVE, KEYWORD_INACTIVE)

_INDEX_RE = re.compile(r"^\d+$")


@dataclass
class Selection:
    roles: list[Role]
    keyword: Optional[str] = None
    invalid: list[tuple[str, str]] = field(default_factory=list)

    @property
    def explicit(self) -> bool:
        return self.keyword is None

    @property
    def no_valid_roles(self) -> bool:
        """True when an explicit index list yielded nothing usable."""
        return self.explicit and not self.roles

    def require_roles(self) -> list[Role]:
        if self.no_valid_roles:
            raise SelectionError("No valid roles selected.", invalid=self.invalid)
        return self.roles


def resolve_selection(expression: Optional[str], catalog: Sequence[Role]) -> Selection:
    """
    Turn ALL / ACTIVE / INACTIVE or a comma-separated list of 1-based indices
    into roles from `catalog`.

    Bad index tokens are collected in `Selection.invalid` and skipped; duplicates
    are kept and the given order is preserved.
    """
    expr = (expression or "").strip()
    keyword = expr.upper()
    if keyword == KEYWORD_ALL:
        return Selection(roles=list(catalog), keyword=KEYWORD_ALL)
    if keyword == KEYWORD_ACTIVE:
        return Selection(roles=[r for r in catalog if r.is_active], keyword=KEYWORD_ACTIVE)
    if keyword == KEYWORD_INACTIVE:
        return Selection(roles=[r for r in catalog if not r.is_active], keyword=KEYWORD_INACTIVE)

    roles: list[Role] = []
    invalid: list[tuple[str, str]] = []
    tokens = [t.strip() for t in expr.split(",")] if expr else []
    for token in tokens:
        if not token:
            continue
        if not _INDEX_RE.match(token):
            invalid.append((token, "not a number"))
            continue
        idx = int(token)
        if idx < 1 or idx > len(catalog):
            invalid.append((token, f"out of range (1-{len(catalog)})"))
            continue
        roles.append(catalog[idx - 1])
    if not expr:
        invalid.append(("", "empty selection"))
    return Selection(roles=roles, invalid=invalid)
