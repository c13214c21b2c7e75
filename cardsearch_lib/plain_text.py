"""
Plain Text - Extract searchable text from structured card content.

Card bodies are stored as JSON of varying shape: rich text documents,
drawboard element lists, mind-map node trees with nested children, and
multi-table rows. One depth-first walker (iter_text_leaves) serves them all;
callers choose which string leaves to keep with a predicate and, optionally,
which keys hold text.
"""

import json
import logging
import re
from typing import Any, Callable, Generator, Iterable, Optional

from bs4 import BeautifulSoup

from cardsearch_lib.text_filter import DEFAULT_POLICY, TextPlausibilityPolicy

logger = logging.getLogger(__name__)

TEXT_KEYS = frozenset({'text', 'name', 'content', 'description', 'marktext'})

MULTI_TABLE_SYSTEM_FIELDS = frozenset({
    'id', 'createTime', 'updateTime', 'checked', 'relateCardType', 'relateCardId',
})

HYPHENATION_RE = re.compile(r'([A-Za-z])-\s+([A-Za-z])')
LINE_BREAKS_RE = re.compile(r'[\t\r\n\v\f]+')
MULTI_SPACE_RE = re.compile(r'\s{2,}')


def strip_html(value: str) -> str:
    """Text of an HTML fragment, with script and style content dropped and entities decoded."""
    if '<' not in value and '&' not in value:
        return value.replace('\xa0', ' ')

    soup = BeautifulSoup(value, 'html.parser')
    for element in soup(['script', 'style']):
        element.decompose()
    return soup.get_text(' ').replace('\xa0', ' ')


def collapse_whitespace(text: str) -> str:
    text = LINE_BREAKS_RE.sub(' ', text)
    return MULTI_SPACE_RE.sub(' ', text).strip()


def iter_text_leaves(
    node: Any,
    accept: Optional[Callable[[str], bool]] = None,
    keys: Optional[Iterable[str]] = None,
) -> Generator[str, None, None]:
    """
    Walk a JSON-like value depth-first and yield its string leaves.

    Args:
        node: Parsed JSON value (dict, list, str, number, None)
        accept: Predicate a stripped leaf must pass to be yielded
        keys: If given, only strings stored directly under these object
              keys (case-insensitive), or in lists under them, are yielded;
              nested objects are checked key by key

    Yields:
        Stripped, non-empty string leaves in traversal order
    """
    wanted = frozenset(key.lower() for key in keys) if keys is not None else None

    def _walk(value, collecting):
        if isinstance(value, str):
            if collecting:
                text = value.strip()
                if text and (accept is None or accept(text)):
                    yield text
        elif isinstance(value, list):
            for item in value:
                yield from _walk(item, collecting)
        elif isinstance(value, dict):
            for key, child in value.items():
                matched = wanted is None or str(key).lower() in wanted
                yield from _walk(child, matched)

    yield from _walk(node, wanted is None)


def _parse_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def extract_plain_text(
    serialized: Any,
    policy: Optional[TextPlausibilityPolicy] = None,
) -> str:
    """
    Extract plain text from serialized card content.

    JSON content contributes the values stored under text, name, content,
    description and markText keys at any depth. When no such key exists,
    every string leaf that does not look like styling metadata is used
    instead. Anything that is not JSON is treated as HTML or plain text.

    Args:
        serialized: JSON string, already parsed JSON value, or plain/HTML text
        policy: Plausibility policy for the all-strings fallback

    Returns:
        Whitespace-collapsed plain text ('' for empty input)
    """
    if serialized is None or serialized == '':
        return ''
    if policy is None:
        policy = DEFAULT_POLICY

    try:
        data = _parse_json(serialized)
    except (json.JSONDecodeError, TypeError):
        return collapse_whitespace(strip_html(str(serialized)))

    if isinstance(data, str):
        return collapse_whitespace(strip_html(data))
    if not isinstance(data, (dict, list)):
        return collapse_whitespace(str(data))

    parts = [strip_html(text) for text in iter_text_leaves(data, keys=TEXT_KEYS)]
    if not parts:
        parts = [
            strip_html(text)
            for text in iter_text_leaves(data, accept=lambda s: not policy.is_metadata(s))
        ]
    return collapse_whitespace(' '.join(part for part in parts if part.strip()))


def _as_list(value: Any, label: str) -> list:
    if not value:
        return []
    try:
        parsed = _parse_json(value)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse multi-table {label}: {e}")
        return []
    return parsed if isinstance(parsed, list) else []


def extract_multi_table_text(data: Any, attr_list: Any, view_list: Any) -> str:
    """
    Extract text from a multi-table card.

    Args:
        data: Row objects (list or JSON string); system fields are skipped
        attr_list: Column definitions; titles and option labels are used
        view_list: View definitions; view names are used

    Returns:
        Space-joined text of rows, columns and views
    """
    row_texts = []
    for row in _as_list(data, 'data'):
        if not isinstance(row, dict):
            continue
        for key, value in row.items():
            if key in MULTI_TABLE_SYSTEM_FIELDS or isinstance(value, bool):
                continue
            if isinstance(value, str) and value.strip():
                row_texts.append(value.strip())
            elif isinstance(value, (int, float)):
                row_texts.append(str(value))

    attr_texts = []
    for attr in _as_list(attr_list, 'attrList'):
        if not isinstance(attr, dict):
            continue
        if isinstance(attr.get('title'), str) and attr['title']:
            attr_texts.append(attr['title'])
        for option in attr.get('options') or []:
            if isinstance(option, dict) and isinstance(option.get('label'), str) and option['label']:
                attr_texts.append(option['label'])

    view_texts = [
        view['name'] for view in _as_list(view_list, 'viewList')
        if isinstance(view, dict) and isinstance(view.get('name'), str) and view['name']
    ]

    return ' '.join(
        part for part in (' '.join(row_texts), ' '.join(attr_texts), ' '.join(view_texts)) if part
    )


def normalize_for_indexing(text: str) -> str:
    """Rejoin words hyphenated across line breaks and collapse whitespace."""
    if not text:
        return ''
    previous = None
    while previous != text:
        previous = text
        text = HYPHENATION_RE.sub(r'\1\2', text)
    return MULTI_SPACE_RE.sub(' ', LINE_BREAKS_RE.sub(' ', text))
