"""
Chinese Segmentation - Turn mixed Chinese/Latin text into search keywords.

Two engines produce the token stream:
- JiebaSegmenter: jieba's search mode (cut_for_search)
- MaxMatchSegmenter: dictionary maximum-match segmenter for hosts where
  jieba's dictionary loading is not wanted; same search-mode contract

KeywordExtractor post-processes either stream into the keywords stored in
FTS columns: stop words, punctuation and single characters are dropped, CJK
bigrams are added so substrings that cross word boundaries stay findable.

Usage:
    from cardsearch_lib.segment import KeywordExtractor, get_segmenter

    extractor = KeywordExtractor(get_segmenter('jieba'))
    extractor.to_search_keywords("计算机科学与技术")
"""

import logging
import re
from typing import Iterable, Optional, Protocol

logger = logging.getLogger(__name__)

MAX_WORD_LENGTH = 8
BIGRAM_RUN_LIMIT = 64
BIGRAM_TOKEN_LIMIT = 12

STOP_WORDS = frozenset({
    '的', '了', '在', '是', '我', '有', '和', '就', '不', '人', '都', '一', '一个',
    '上', '也', '很', '到', '说', '要', '去', '你', '会', '着', '没有', '看', '好',
    '自己', '这',
})

ASCII_WORD_RE = re.compile(r'[A-Za-z0-9]')
CJK_CHAR_RE = re.compile(r'[\u4e00-\u9fa5]')
ALL_CJK_RE = re.compile(r'[\u4e00-\u9fff]+')
PUNCTUATION_RE = re.compile(r'[^\w\u4e00-\u9fa5]')
PUNCTUATION_ONLY_RE = re.compile(r'[^\w\u4e00-\u9fa5]+')


class Segmenter(Protocol):
    """Search-mode word segmenter."""

    def cut_for_search(self, text: str) -> list[str]:
        ...


class JiebaSegmenter:
    """Segmenter backed by jieba's search mode."""

    name = 'jieba'

    def __init__(self, user_dict: Optional[str] = None):
        import jieba

        self._tokenizer = jieba.Tokenizer()
        if user_dict:
            self._tokenizer.load_userdict(user_dict)

    def cut_for_search(self, text: str) -> list[str]:
        if not text:
            return []
        return [word for word in self._tokenizer.cut_for_search(text) if word.strip()]


class MaxMatchSegmenter:
    """
    Forward maximum-match segmenter.

    ASCII letter/digit runs become one token, whitespace is dropped and other
    punctuation is kept as single-character tokens. At each CJK position the
    longest dictionary word (up to 8 characters) is taken, or a single
    character when nothing matches. In search mode words longer than two
    characters also emit their dictionary sub-words of length 2 to 4.
    """

    name = 'maxmatch'

    def __init__(self, words: Iterable[str]):
        self.words = {word for word in words if word}

    @classmethod
    def from_jieba_dictionary(cls) -> 'MaxMatchSegmenter':
        """Build the dictionary from the word list shipped with jieba."""
        import jieba

        words = set()
        with jieba.Tokenizer().get_dict_file() as f:
            for line in f:
                if isinstance(line, bytes):
                    line = line.decode('utf-8')
                parts = line.split()
                if parts:
                    words.add(parts[0])
        logger.debug(f"Loaded {len(words)} dictionary words for max-match segmenter")
        return cls(words)

    def _match_at(self, text: str, start: int) -> str:
        best = text[start]
        limit = min(MAX_WORD_LENGTH, len(text) - start)
        for length in range(2, limit + 1):
            candidate = text[start:start + length]
            if not CJK_CHAR_RE.fullmatch(candidate[-1]):
                break
            if candidate in self.words:
                best = candidate
        return best

    def _sub_words(self, word: str) -> list[str]:
        result = [word]
        for i in range(len(word) - 1):
            for length in range(2, min(4, len(word) - i) + 1):
                sub_word = word[i:i + length]
                if sub_word in self.words and sub_word not in result:
                    result.append(sub_word)
        return result

    def cut(self, text: str, search_mode: bool = False) -> list[str]:
        """
        Segment text.

        Args:
            text: Input text
            search_mode: Also emit dictionary sub-words of long words

        Returns:
            Tokens in order, without empty or whitespace-only entries
        """
        tokens = []
        i = 0
        length = len(text)
        while i < length:
            char = text[i]
            if ASCII_WORD_RE.match(char):
                end = i
                while end < length and ASCII_WORD_RE.match(text[end]):
                    end += 1
                tokens.append(text[i:end])
                i = end
            elif PUNCTUATION_RE.match(char):
                if not char.isspace():
                    tokens.append(char)
                i += 1
            elif CJK_CHAR_RE.match(char):
                word = self._match_at(text, i)
                if search_mode and len(word) > 2:
                    tokens.extend(self._sub_words(word))
                else:
                    tokens.append(word)
                i += len(word)
            else:
                tokens.append(char)
                i += 1
        return [token for token in tokens if token.strip()]

    def cut_for_search(self, text: str) -> list[str]:
        if not text:
            return []
        return self.cut(text, search_mode=True)


def get_segmenter(engine: str = 'jieba', user_dict: Optional[str] = None) -> Segmenter:
    """
    Create the segmenter named by configuration.

    Args:
        engine: 'jieba' or 'maxmatch'
        user_dict: Optional jieba user dictionary file

    Raises:
        ValueError: If the engine name is unknown
    """
    if engine == JiebaSegmenter.name:
        return JiebaSegmenter(user_dict)
    if engine == MaxMatchSegmenter.name:
        return MaxMatchSegmenter.from_jieba_dictionary()
    raise ValueError(f"Unknown segmenter engine: {engine}")


def cjk_bigrams(word: str) -> list[str]:
    """All adjacent character pairs of an all-CJK word."""
    if not ALL_CJK_RE.fullmatch(word):
        return []
    return [word[i:i + 2] for i in range(len(word) - 1)]


def cjk_bigrams_from_text(text: str) -> list[str]:
    """Bigrams of every CJK run in raw text, limited to the first 64 characters of a run."""
    bigrams = []
    for run in ALL_CJK_RE.findall(text):
        run = run[:BIGRAM_RUN_LIMIT]
        bigrams.extend(run[i:i + 2] for i in range(len(run) - 1))
    return bigrams


class KeywordExtractor:
    """Build search keywords from a segmenter's token stream."""

    def __init__(self, segmenter: Segmenter, stop_words: Iterable[str] = STOP_WORDS):
        self.segmenter = segmenter
        self.stop_words = frozenset(stop_words)

    def extract_keywords(self, text: str) -> list[str]:
        """
        Extract de-duplicated search keywords in order of first appearance.

        Args:
            text: Arbitrary text

        Returns:
            Keywords of at least two characters, followed by CJK bigrams of
            short all-CJK keywords and of the raw text's CJK runs
        """
        if not text or not isinstance(text, str):
            return []

        words = []
        for word in self.segmenter.cut_for_search(text):
            word = word.strip()
            if len(word) < 2 or word in self.stop_words:
                continue
            if PUNCTUATION_ONLY_RE.fullmatch(word):
                continue
            words.append(word)

        candidates = list(words)
        for word in words:
            if len(word) <= BIGRAM_TOKEN_LIMIT:
                candidates.extend(bg for bg in cjk_bigrams(word) if bg not in self.stop_words)
        candidates.extend(bg for bg in cjk_bigrams_from_text(text) if bg not in self.stop_words)

        return list(dict.fromkeys(candidates))

    def to_search_keywords(self, text: str) -> str:
        """Keywords joined by single spaces, ready to store in an FTS column."""
        return ' '.join(self.extract_keywords(text))

    def contains_keyword(self, text: str, keyword: str) -> bool:
        """True if any keyword of the query appears among the keywords of the text."""
        if not text or not keyword:
            return False
        text_keywords = set(self.extract_keywords(text))
        return any(word in text_keywords for word in self.extract_keywords(keyword))
