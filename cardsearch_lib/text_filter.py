"""
Text Filter - Tell human text apart from styling and layout metadata.

Slide XML and drawing JSON mix real text with font names, color codes,
coordinates, GUIDs and style keywords. TextPlausibilityPolicy decides which
strings are worth indexing and cleans the text that survives.

All thresholds and word lists are fields of the policy so they can be tuned
from configuration (see config.build_policy).

Usage:
    from cardsearch_lib.text_filter import DEFAULT_POLICY

    DEFAULT_POLICY.is_meaningful("3C3C3C")         # False
    DEFAULT_POLICY.is_meaningful("季度总结")        # True
    DEFAULT_POLICY.collapse_font_runs("Arial Arial Arial")  # "Arial"
"""

import re
from dataclasses import dataclass
from functools import cached_property

CJK_RE = re.compile(r'[\u4e00-\u9fff]')
DIGIT_RE = re.compile(r'\d')
SPECIAL_RE = re.compile(r'[^a-zA-Z0-9\u4e00-\u9fff\s]')
ENGLISH_WORD_RE = re.compile(r'\b[a-zA-Z]{3,}\b', re.ASCII)
URL_RE = re.compile(r'https?://\S+')
WHITESPACE_RE = re.compile(r'\s+')
HORIZONTAL_SPACE_RE = re.compile(r'[ \t\r\f\v]+')
PARAGRAPH_SPLIT_RE = re.compile(r'\n\s*\n')

DEFAULT_STOP_WORDS = frozenset({
    'the', 'and', 'for', 'with', 'this', 'that', 'from', 'have', 'will',
    'been', 'they', 'were', 'said', 'each', 'which', 'their', 'time', 'would',
    'there', 'could', 'other', 'than', 'first', 'call', 'who', 'its', 'now',
    'find', 'down', 'day', 'did', 'get', 'come', 'made', 'may', 'part',
})

DEFAULT_FONT_NAMES = (
    '华文黑体_易方达', '华文黑体', 'Arial', '黑体', '华文细黑', 'Arial Narrow',
    '腾讯体 W7', '微软雅黑', '迷你简菱心', '冬青黑体简体中文 W3',
)

# (pattern, case_insensitive)
DEFAULT_EXCLUDE_PATTERNS = (
    # Font name followed by panose digits
    (r'^[A-Za-z\s]+_\w+\s+\d{12}\s*-\d+$', False),
    (r'^[A-Za-z\s]+\s+\d{12}\s*-\d+$', False),
    (r'^[A-Za-z\s]+\s+\d{6}$', False),
    (r'^[A-Za-z\s]+\s+\d{6}\s+\d{6}\s+\d{6}\s+\d{6}\s+\d{6}$', False),
    # Colors
    (r'^[0-9A-F]{6}$', True),
    (r'^[0-9A-F]{8}$', True),
    # Coordinates and sizes
    (r'^-?\d+\s+-?\d+\s+\d+\s+\d+$', False),
    (r'^-?\d+\s+\d+$', False),
    (r'^(rect|square|accent\d+|flat|sng|ctr|dash|none|med|horz|just|base|arabicPeriod)$', True),
    (r'^(zh-CN|en-US|fr-FR|ja-JP|ko-KR)$', True),
    (r'^\d{4}$', False),
    # GUIDs and long ids
    (r'^[0-9A-F]{8}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{12}$', True),
    (r'^[0-9A-F]{16,}$', True),
    # Paths
    (r'^[A-Z]:\\.*', False),
    (r'^/.*', False),
    (r'^(tmRoot|title|textNoShape|Picture|Rectangle|TextBox)$', True),
    (r'^(indefinite|never|auto|bg1|tx1)$', True),
    (r'^\+[a-z-]+$', False),
    (r'^[a-z]+[A-Z][a-z]+$', False),
    (r'^(ellipse|minor|RTL|barn|wipe|fade|entr|hold|seek|lin|num|style|visibility|visible|outVertical)$', True),
)

DEFAULT_STYLE_KEYWORDS = (
    'rect', 'square', r'accent\d+', 'flat', 'sng', 'ctr', 'dash', 'none', 'med',
    'horz', 'just', 'base', 'black', 'ellipse', 'minor', 'RTL', 'barn', 'wipe',
    'fade', 'entr', 'hold', 'seek', 'lin', 'num', 'style', 'visibility',
    'visible', 'outVertical',
)

DEFAULT_PLACEHOLDER_NAMES = ('TextBox', 'Title', 'Content Placeholder', 'Rectangle', 'Picture')
DEFAULT_CJK_PLACEHOLDER_NAMES = ('标题', '内容占位符', '矩形', '图片', '图示')


@dataclass(frozen=True)
class TextPlausibilityPolicy:
    """Tunable heuristics for rejecting styling metadata."""
    min_length: int = 2
    max_length: int = 200
    max_digit_ratio: float = 0.3
    max_special_ratio: float = 0.4
    max_font_ratio: float = 0.5
    short_line_length: int = 10
    stop_words: frozenset = DEFAULT_STOP_WORDS
    font_names: tuple = DEFAULT_FONT_NAMES
    exclude_patterns: tuple = DEFAULT_EXCLUDE_PATTERNS
    style_keywords: tuple = DEFAULT_STYLE_KEYWORDS
    placeholder_names: tuple = DEFAULT_PLACEHOLDER_NAMES
    cjk_placeholder_names: tuple = DEFAULT_CJK_PLACEHOLDER_NAMES

    @cached_property
    def _exclude_res(self) -> list[re.Pattern]:
        return [
            re.compile(pattern, re.IGNORECASE if ignore_case else 0)
            for pattern, ignore_case in self.exclude_patterns
        ]

    @cached_property
    def _font_names_lower(self) -> frozenset:
        return frozenset(name.lower() for name in self.font_names)

    @cached_property
    def _font_run_res(self) -> list[tuple[str, re.Pattern]]:
        # Longest names first so "Arial Narrow" runs are not split by "Arial"
        fonts = sorted(self.font_names, key=len, reverse=True)
        return [(font, re.compile(rf'(?:{re.escape(font)}\s*){{2,}}')) for font in fonts]

    @cached_property
    def _font_only_re(self) -> re.Pattern:
        names = '|'.join(re.escape(font) for font in self.font_names)
        return re.compile(rf'^(?:{names})\s*$', re.IGNORECASE)

    @cached_property
    def _placeholder_re(self) -> re.Pattern:
        names = '|'.join(re.escape(name) for name in self.placeholder_names)
        return re.compile(rf'\b(?:{names})\s*\d*\b', re.IGNORECASE | re.ASCII)

    @cached_property
    def _cjk_placeholder_re(self) -> re.Pattern:
        names = '|'.join(re.escape(name) for name in self.cjk_placeholder_names)
        return re.compile(rf'(?:{names})\s*\d+')

    @cached_property
    def _style_re(self) -> re.Pattern:
        words = '|'.join(self.style_keywords)
        return re.compile(rf'\b(?:{words})\b', re.IGNORECASE | re.ASCII)

    def is_metadata(self, text: str) -> bool:
        """True if the string matches a known metadata shape or is a bare font name."""
        text = text.strip()
        if text.lower() in self._font_names_lower:
            return True
        return any(pattern.search(text) for pattern in self._exclude_res)

    def is_meaningful(self, text: str) -> bool:
        """
        Decide whether a string leaf is human text worth indexing.

        Metadata shapes are always rejected, and that check comes first: a
        CJK string that is a bare font name ("黑体") or looks like a path
        ("/计划") is rejected like any other metadata. Other strings with CJK
        characters are accepted when their length is within bounds. Strings
        without CJK must pass the digit and special character density limits
        and contain an English word of 3+ letters that is not a stop word.

        Args:
            text: Candidate string

        Returns:
            True if the string should be kept
        """
        if not text:
            return False
        text = text.strip()
        if len(text) < self.min_length or len(text) > self.max_length:
            return False
        if self.is_metadata(text):
            return False

        if CJK_RE.search(text):
            return True

        length = len(text)
        if len(DIGIT_RE.findall(text)) > length * self.max_digit_ratio:
            return False
        if len(SPECIAL_RE.findall(text)) > length * self.max_special_ratio:
            return False

        return any(
            word.lower() not in self.stop_words
            for word in ENGLISH_WORD_RE.findall(text)
        )

    def collapse_font_runs(self, text: str) -> str:
        """Fold runs of the same repeated font name down to one occurrence."""
        def _fold(font):
            def _replace(match):
                return font + (' ' if match.group(0)[-1].isspace() else '')
            return _replace

        for font, pattern in self._font_run_res:
            text = pattern.sub(_fold(font), text)
        return text

    def _strip_styling(self, text: str) -> str:
        text = URL_RE.sub('', text)
        text = self.collapse_font_runs(text)
        text = self._placeholder_re.sub('', text)
        text = self._cjk_placeholder_re.sub('', text)
        return self._style_re.sub('', text)

    def _keep_line(self, line: str) -> bool:
        if not line:
            return False
        if self._font_only_re.match(line):
            return False
        if re.fullmatch(r'[A-Za-z\s]+', line) and len(line.split()) <= 2:
            return False
        if line.isdigit():
            return False
        if not CJK_RE.search(line) and len(line) < self.short_line_length:
            return False
        return True

    def _font_dominated(self, line: str) -> bool:
        words = len(line.split())
        font_count = sum(
            len(re.findall(re.escape(font), line, re.IGNORECASE))
            for font in self.font_names
        )
        return font_count > 0 and font_count / words > self.max_font_ratio

    def clean_slide_text(self, text: str) -> str:
        """
        Clean the joined text of one slide.

        Removes URLs, repeated font names, placeholder shape names and style
        keywords, collapses whitespace, then drops the result if it is only a
        font name, a one or two word English fragment, a number, or a short
        string without CJK characters.
        """
        if not text:
            return ''
        text = WHITESPACE_RE.sub(' ', self._strip_styling(text)).strip()
        return text if self._keep_line(text) else ''

    def clean_generic_text(self, text: str) -> str:
        """
        Clean raw presentation text that was not parsed slide by slide.

        Paragraphs (blank-line separated) are cleaned line by line. Lines that
        fail the slide line filter or where font names make up more than
        max_font_ratio of the words are dropped.

        Returns:
            Cleaned text with paragraphs separated by blank lines
        """
        if not text:
            return ''
        paragraphs = []
        for paragraph in PARAGRAPH_SPLIT_RE.split(self._strip_styling(text)):
            lines = []
            for line in paragraph.split('\n'):
                line = HORIZONTAL_SPACE_RE.sub(' ', line).strip()
                if self._keep_line(line) and not self._font_dominated(line):
                    lines.append(line)
            if lines:
                paragraphs.append('\n'.join(lines))
        return '\n\n'.join(paragraphs)


DEFAULT_POLICY = TextPlausibilityPolicy()
