from rapidfuzz.distance import Levenshtein


def _normalize(text: str) -> str:
    return (text or "").strip().lower()


def similarity(a: str, b: str) -> float:
    """1 - edit distance / longer length, compared case-insensitively.

    Two empty strings are identical (1.0); empty against non-empty scores 0.0.
    """
    a = _normalize(a)
    b = _normalize(b)
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    distance = Levenshtein.distance(a, b)
    return 1.0 - distance / max(len(a), len(b))


def name_similarity(first_a: str, last_a: str, first_b: str, last_b: str) -> float:
    """Average of first-name and last-name similarity."""
    score = (similarity(first_a, first_b) + similarity(last_a, last_b)) / 2
    # keep 0.7 exactly 0.7 when comparing against thresholds
    return round(score, 9)
