"""
Relevance - In-memory scoring and snippets for already fetched text.

Independent of the FTS index: used to rank and excerpt rows that came back
from a fallback query (e.g. LIKE over unsegmented text).
"""

import re

SNIPPET_ELLIPSIS = '...'


def is_keyword_in_content(content: str, keyword: str) -> bool:
    """True if every whitespace-separated word of the keyword occurs in the content (case-insensitive)."""
    if not content or not keyword:
        return False
    lowered = content.lower()
    words = [word for word in keyword.lower().split() if word]
    return all(word in lowered for word in words)


def extract_snippet(
    content: str,
    keyword: str,
    max_length: int = 200,
    open_mark: str = '<mark>',
    close_mark: str = '</mark>',
) -> str:
    """
    Extract a window of text around the first match of a keyword.

    Args:
        content: Text to excerpt
        keyword: Keyword to center on (matched case-insensitively)
        max_length: Window size; half of it is kept on each side of the match
        open_mark: Inserted before every occurrence in the window
        close_mark: Inserted after every occurrence in the window

    Returns:
        Highlighted window with '...' where it was cut, the head of the
        content if the keyword does not occur, or '' for empty input
    """
    if not content or not keyword:
        return ''

    index = content.lower().find(keyword.lower())
    if index == -1:
        return content[:max_length] + (SNIPPET_ELLIPSIS if len(content) > max_length else '')

    half = max_length // 2
    start = max(0, index - half)
    end = min(len(content), index + len(keyword) + half)

    snippet = content[start:end]
    if start > 0:
        snippet = SNIPPET_ELLIPSIS + snippet
    if end < len(content):
        snippet = snippet + SNIPPET_ELLIPSIS

    pattern = re.compile(f'({re.escape(keyword)})', re.IGNORECASE)
    return pattern.sub(lambda m: f'{open_mark}{m.group(1)}{close_mark}', snippet)


def calculate_relevance_score(content: str, keyword: str) -> float:
    """
    Score how relevant a text is to a keyword.

    score = occurrences * 10 + density * 1000 + position_weight * 100, where
    density is occurrences per character of content and position_weight is
    1 / (first_index + 1), or 0 without a match.
    """
    if not content or not keyword:
        return 0.0

    lowered = content.lower()
    needle = keyword.lower()

    count = len(re.findall(re.escape(needle), lowered))
    density = count / len(content)

    first_index = lowered.find(needle)
    position_weight = 1 / (first_index + 1) if first_index >= 0 else 0

    return count * 10 + density * 1000 + position_weight * 100
