import re
from typing import Any, List, Mapping, Sequence

_STRIP_PUNCTUATION = re.compile(r"[?.,!]")


def extract_keywords(question: str) -> List[str]:
    """Lowercase, drop ?.,! and keep space-separated words longer than 3 characters"""
    cleaned = _STRIP_PUNCTUATION.sub("", (question or "").lower())
    return [word for word in cleaned.split(" ") if len(word) > 3]


def _field(memory: Any, name: str, default: Any = None) -> Any:
    if isinstance(memory, Mapping):
        return memory.get(name, default)
    return getattr(memory, name, default)


def match_memories_by_keyword(question: str, memories: Sequence[Any]) -> List[Any]:
    """
    Rank memories against a question by bag-of-substrings overlap.

    A memory is kept when any keyword is a substring of its raw_text or of
    one of its tags. Ordering counts only raw_text hits, so a memory kept
    purely on a tag match sorts with a score of zero. Ties keep input order.
    """
    keywords = extract_keywords(question)
    if not keywords:
        return []

    scored = []
    for memory in memories:
        text = (_field(memory, "raw_text") or "").lower()
        tags = [str(tag).lower() for tag in (_field(memory, "tags") or [])]
        text_hits = sum(1 for keyword in keywords if keyword in text)
        tag_hit = any(keyword in tag for keyword in keywords for tag in tags)
        if text_hits or tag_hit:
            scored.append((text_hits, memory))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [memory for _, memory in scored]
