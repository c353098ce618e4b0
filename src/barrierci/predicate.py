# predicate.py
# Branch filters: "master", "!master", "!master !beta !stable", "main release".
from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional

from .errors import ConfigurationError

ALLOW = "allow"
DENY = "deny"


@dataclass(frozen=True)
class BranchFilter:
    """
    A parsed branch filter.

    kind == "allow": the branch must be one of `allowed` and none of `denied`.
    kind == "deny":  the branch must be none of `denied`.
    """
    kind: str
    allowed: FrozenSet[str] = frozenset()
    denied: FrozenSet[str] = frozenset()
    source: str = ""

    def matches(self, branch: str) -> bool:
        if branch in self.denied:
            return False
        if self.kind == ALLOW:
            return branch in self.allowed
        return True

    def __str__(self) -> str:
        return self.source


def parse_branch_filter(text: Optional[str]) -> Optional[BranchFilter]:
    """
    Parse a space separated branch filter.

    Returns None when no filter is given (always match).
    Raises ConfigurationError on an empty filter or a lone "!".
    """
    if text is None:
        return None
    if not isinstance(text, str):
        raise ConfigurationError(
            "branch filter must be a string",
            {"value": repr(text)},
        )

    tokens = text.split()
    if not tokens:
        raise ConfigurationError("branch filter is empty", {"value": repr(text)})

    allowed: set[str] = set()
    denied: set[str] = set()
    for token in tokens:
        if token.startswith("!"):
            name = token[1:]
            if not name or name.startswith("!"):
                raise ConfigurationError(
                    "malformed branch filter token",
                    {"token": token, "filter": text},
                )
            denied.add(name)
        else:
            allowed.add(token)

    return BranchFilter(
        kind=ALLOW if allowed else DENY,
        allowed=frozenset(allowed),
        denied=frozenset(denied),
        source=" ".join(tokens),
    )


def branch_matches(branch_filter: Optional[BranchFilter], branch: str) -> bool:
    """No filter means the step applies to every branch."""
    if branch_filter is None:
        return True
    return branch_filter.matches(branch)
