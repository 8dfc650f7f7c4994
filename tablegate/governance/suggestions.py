"""
"Did you mean" column suggestions.

When a caller references a column that does not exist, the error carries a
short ranked list of real column names computed with Levenshtein distance.
Comparison ignores case and underscores, so ``createdat`` still finds
``created_at``.
"""
from __future__ import annotations


def levenshtein(a: str, b: str) -> int:
    """Compute Levenshtein edit distance between two strings."""
    if len(a) < len(b):
        return levenshtein(b, a)
    if not b:
        return len(a)

    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a):
        curr = [i + 1]
        for j, cb in enumerate(b):
            cost = 0 if ca == cb else 1
            curr.append(min(curr[j] + 1, prev[j + 1] + 1, prev[j] + cost))
        prev = curr
    return prev[-1]


def _normalise(name: str) -> str:
    return name.lower().replace("_", "")


def similarity(a: str, b: str) -> float:
    """Normalised similarity (1.0 = identical after normalisation)."""
    na, nb = _normalise(a), _normalise(b)
    max_len = max(len(na), len(nb))
    if max_len == 0:
        return 0.0
    return 1.0 - levenshtein(na, nb) / max_len


def similar_columns(
    target: str,
    columns: list[str] | set[str],
    max_suggestions: int = 3,
    min_similarity: float = 0.4,
) -> list[str]:
    """Return up to *max_suggestions* column names ranked by similarity.

    Only names strictly more similar than *min_similarity* are returned.
    Ties keep catalog order.
    """
    scored = [(col, similarity(target, col)) for col in columns]
    matches = [item for item in scored if item[1] > min_similarity]
    matches.sort(key=lambda item: item[1], reverse=True)
    return [col for col, _ in matches[:max_suggestions]]


def format_suggestions(suggestions: list[str]) -> str:
    if not suggestions:
        return ""
    return " Did you mean: " + ", ".join(f"'{s}'" for s in suggestions) + "?"
