import re

from genstore.database.models import PromptRecord

MIN_PROMPT_LENGTH = 10
MAX_PROMPT_LENGTH = 2000

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^\w\s.,!?-]")


def is_valid_prompt(content: str | None) -> bool:
    if not content:
        return False
    return MIN_PROMPT_LENGTH <= len(content.strip()) <= MAX_PROMPT_LENGTH


def clean_prompt(content: str) -> str:
    """Trim, collapse whitespace and drop everything but words and basic punctuation."""
    return _WHITESPACE.sub(" ", _DISALLOWED.sub("", content)).strip()


def jaccard_similarity(first: str, second: str) -> float:
    """Word-set Jaccard index, case-insensitive. Empty text matches nothing."""
    words_a = set(first.lower().split())
    words_b = set(second.lower().split())
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def find_similar(
    content: str, candidates: list[PromptRecord], threshold: float
) -> PromptRecord | None:
    """Return the most similar candidate scoring at least ``threshold``."""
    best: PromptRecord | None = None
    best_score = threshold
    for candidate in candidates:
        score = jaccard_similarity(content, candidate.content)
        if score >= best_score:
            best, best_score = candidate, score
    return best
