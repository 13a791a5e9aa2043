"""Edit-distance scoring for suggestion ranking and client-side re-ranking.

Pure functions, no I/O. All comparisons are case-folded.
"""

from typing import Any


def levenshtein_distance(str1: str, str2: str) -> int:
    """Compute the Levenshtein edit distance between two strings."""
    a = str(str1 or "").casefold()
    b = str(str2 or "").casefold()

    matrix = [[0] * (len(b) + 1) for _ in range(len(a) + 1)]
    for i in range(len(a) + 1):
        matrix[i][0] = i
    for j in range(len(b) + 1):
        matrix[0][j] = j

    for i in range(1, len(a) + 1):
        for j in range(1, len(b) + 1):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            matrix[i][j] = min(
                matrix[i - 1][j] + 1,  # deletion
                matrix[i][j - 1] + 1,  # insertion
                matrix[i - 1][j - 1] + cost,  # substitution
            )

    return matrix[len(a)][len(b)]


def is_fuzzy_match(str1: str, str2: str, max_distance: int = 2) -> bool:
    """Check whether two strings are within ``max_distance`` edits."""
    return levenshtein_distance(str1, str2) <= max_distance


def similarity_score(str1: str, str2: str) -> float:
    """Similarity between two strings on a 0-100 scale.

    Two empty strings are identical (100).
    """
    a = str(str1 or "").casefold()
    b = str(str2 or "").casefold()
    max_length = max(len(a), len(b))
    if max_length == 0:
        return 100.0

    distance = levenshtein_distance(a, b)
    score = (1 - distance / max_length) * 100
    return round(min(max(score, 0.0), 100.0), 2)


class FuzzyMatcher:
    """Scores candidates against a fixed query text.

    Usage:
        matcher = FuzzyMatcher("Smyth")
        ranked = matcher.filter_and_rank(records, "last_name", threshold=70)
    """

    DEFAULT_MAX_EXPANSIONS = 50

    def __init__(self, query_text: str, max_edits: int = 2, prefix_length: int = 0):
        self.query_text = query_text
        self.max_edits = max_edits
        self.prefix_length = prefix_length

    def fuzzy_config(self) -> dict[str, int]:
        """Fuzzy block in Atlas Search syntax."""
        return {
            "maxEdits": self.max_edits,
            "prefixLength": self.prefix_length,
            "maxExpansions": self.DEFAULT_MAX_EXPANSIONS,
        }

    def filter_and_rank(
        self,
        results: list[dict[str, Any]],
        field_name: str,
        threshold: float = 70,
    ) -> list[dict[str, Any]]:
        """Drop results below ``threshold`` and sort by similarity, best first.

        Returns dicts with ``result``, ``fuzzy_score`` and ``distance``.
        """
        ranked = []
        for result in results:
            value = str(result.get(field_name) or "")
            score = similarity_score(self.query_text, value)
            if score < threshold:
                continue
            ranked.append(
                {
                    "result": result,
                    "fuzzy_score": score,
                    "distance": levenshtein_distance(self.query_text, value),
                }
            )

        ranked.sort(key=lambda r: -r["fuzzy_score"])
        return ranked

    def generate_suggestions(
        self,
        candidates: list[str],
        max_suggestions: int = 5,
        threshold: float = 60,
    ) -> list[dict[str, Any]]:
        """Rank candidate strings; ties broken by smaller edit distance."""
        scored = []
        for candidate in candidates:
            score = similarity_score(self.query_text, candidate)
            if score < threshold:
                continue
            scored.append(
                {
                    "text": candidate,
                    "score": score,
                    "distance": levenshtein_distance(self.query_text, candidate),
                }
            )

        scored.sort(key=lambda s: (-s["score"], s["distance"]))
        return scored[:max_suggestions]
