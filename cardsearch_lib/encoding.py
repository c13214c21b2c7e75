"""
Encoding Detection - Decode raw bytes from files of unknown encoding.

Detection order:
1. UTF-8 with BOM is accepted immediately
2. UTF-8 is accepted when decoding and re-encoding reproduces the input exactly
3. Platform candidates (gbk, gb2312, big5 on Windows; mac-roman on macOS) with
   the same round-trip check; first exact match wins
4. Lossy decode with the platform's system default encoding

detect_encoding() never raises for undecodable input.
"""

import codecs
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cardsearch_lib.platform_info import PlatformProfile, current_profile

logger = logging.getLogger(__name__)


@dataclass
class DecodedText:
    """Decoded content and the encoding it was decoded with."""
    content: str
    encoding: str


def _round_trips(buffer: bytes, encoding: str) -> Optional[str]:
    """Decode strictly and return the text only if re-encoding gives the same bytes."""
    try:
        text = buffer.decode(encoding)
        if text.encode(encoding) == buffer:
            return text
    except (UnicodeDecodeError, UnicodeEncodeError, LookupError):
        pass
    return None


def detect_encoding(buffer: bytes, profile: Optional[PlatformProfile] = None) -> DecodedText:
    """
    Detect the encoding of a byte buffer and decode it.

    Args:
        buffer: Raw file bytes
        profile: Platform capabilities (default: the running platform)

    Returns:
        DecodedText with the decoded string and the encoding label used
    """
    if profile is None:
        profile = current_profile()

    if buffer.startswith(codecs.BOM_UTF8):
        return DecodedText(buffer[len(codecs.BOM_UTF8):].decode('utf-8', errors='replace'), 'utf-8')

    text = _round_trips(buffer, 'utf-8')
    if text is not None:
        return DecodedText(text, 'utf-8')

    for candidate in profile.encoding_candidates:
        if candidate == 'utf-8':
            continue
        text = _round_trips(buffer, candidate)
        if text is not None:
            return DecodedText(text, candidate)

    logger.debug(f"No exact encoding match, decoding lossy as {profile.system_encoding}")
    return DecodedText(buffer.decode(profile.system_encoding, errors='replace'), profile.system_encoding)


def read_text_file(filepath: Path, profile: Optional[PlatformProfile] = None) -> DecodedText:
    """
    Read a text file and decode it with detect_encoding().

    Raises:
        OSError: If the file cannot be read
    """
    return detect_encoding(Path(filepath).read_bytes(), profile)
