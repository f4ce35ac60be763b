"""
Filter expressions over repository flags.

Syntax: ``,`` is OR (lowest precedence), ``+`` is AND, a leading ``^``
negates a term. ``dirty+unpushed,^detached`` reads as
``(dirty AND unpushed) OR (NOT detached)``.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .errors import WhereFilterError
from .models import RepoFlags, RepoStatus
from .status import compute_flags, would_lose_work

# Filter term -> RepoFlags attribute
RAW_TERMS: dict[str, str] = {
    "dirty": "dirty",
    "unpushed": "unpushed",
    "behind-share": "behind_share",
    "behind-base": "behind_base",
    "diverged": "diverged",
    "drifted": "drifted",
    "detached": "detached",
    "operation": "operation",
    "local": "local",
    "gone": "gone",
    "shallow": "shallow",
    "merged": "merged",
    "base-merged": "base_merged",
    "base-missing": "base_missing",
    "at-risk": "at_risk",
}

DERIVED_TERMS: dict[str, Callable[[RepoFlags], bool]] = {
    "clean": lambda f: not f.dirty,
    "pushed": lambda f: not f.unpushed,
    "synced-base": lambda f: not f.behind_base and not f.diverged,
    "synced-share": lambda f: not f.behind_share and not f.unpushed,
    "synced": lambda f: not (f.behind_base or f.diverged or f.behind_share or f.unpushed),
    "stale": lambda f: f.behind_share or f.behind_base or f.diverged,
    "safe": lambda f: not would_lose_work(f),
}

VALID_TERMS: tuple[str, ...] = (*RAW_TERMS, *DERIVED_TERMS)


@dataclass(frozen=True)
class WhereTerm:
    """A single, possibly negated, filter term."""

    name: str
    negated: bool = False

    def evaluate(self, flags: RepoFlags) -> bool:
        if self.name in RAW_TERMS:
            value = getattr(flags, RAW_TERMS[self.name])
        else:
            value = DERIVED_TERMS[self.name](flags)
        return not value if self.negated else value


# OR of AND-groups
WhereExpr = tuple[tuple[WhereTerm, ...], ...]


def _split(expr: str) -> tuple[list[list[tuple[str, bool]]], list[str]]:
    groups: list[list[tuple[str, bool]]] = []
    problems: list[str] = []
    if not expr.strip():
        return groups, ["empty expression"]
    for group in expr.split(","):
        if not group.strip():
            problems.append("empty group")
            continue
        terms = []
        for raw in group.split("+"):
            raw = raw.strip()
            negated = raw.startswith("^")
            name = raw[1:].strip() if negated else raw
            if not name:
                problems.append("bare '^'" if negated else "empty term")
                continue
            terms.append((name, negated))
        groups.append(terms)
    return groups, problems


def validate_where(expr: str) -> None:
    """Raise WhereFilterError naming every malformed or unknown term."""
    groups, problems = _split(expr)
    unknown = sorted({name for group in groups for name, _ in group if name not in VALID_TERMS})
    if problems:
        raise WhereFilterError(
            f"Invalid filter expression {expr!r}: {', '.join(dict.fromkeys(problems))}",
            unknown,
        )
    if unknown:
        raise WhereFilterError(
            f"Unknown filter term(s): {', '.join(unknown)}. "
            f"Valid terms: {', '.join(VALID_TERMS)}",
            unknown,
        )


def parse_where(expr: str) -> WhereExpr:
    """Parse and validate a filter expression."""
    validate_where(expr)
    groups, _ = _split(expr)
    return tuple(tuple(WhereTerm(name, negated) for name, negated in group) for group in groups)


def repo_matches_where(flags: RepoFlags, where: WhereExpr | str) -> bool:
    expr = parse_where(where) if isinstance(where, str) else where
    return any(all(term.evaluate(flags) for term in group) for group in expr)


def workspace_matches_where(
    repos: Sequence[RepoStatus], branch: str, where: WhereExpr | str
) -> bool:
    """True when any repository in the workspace matches."""
    expr = parse_where(where) if isinstance(where, str) else where
    return any(repo_matches_where(compute_flags(r, branch), expr) for r in repos)


def filter_repos(
    repos: Sequence[RepoStatus], branch: str, where: WhereExpr | str
) -> list[RepoStatus]:
    expr = parse_where(where) if isinstance(where, str) else where
    return [r for r in repos if repo_matches_where(compute_flags(r, branch), expr)]
