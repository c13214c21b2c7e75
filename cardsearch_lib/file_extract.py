#!/usr/bin/env python3
"""
File Extraction - Extract paginated plain text from documents.

Supported document kinds:
- PDF (.pdf): pypdf page by page, pdfminer.six as a whole-document fallback
- Word (.docx): python-docx paragraphs grouped four to a page
- PowerPoint (.pptx): slide XML read straight from the archive and filtered
  through the text plausibility policy, python-pptx as a fallback
- Excel (.xlsx via openpyxl, .xls via xlrd): rows tab-joined, no pages
- Images: pluggable text recognizer, EXIF metadata as a fallback
- Anything else: decoded as text with encoding detection

Single pages, slides and recognizer calls fail softly with a placeholder.
A file that cannot be read at all raises OSError.
"""

import json
import logging
import mimetypes
import re
import sys
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from cardsearch_lib.encoding import read_text_file
from cardsearch_lib.platform_info import PlatformProfile
from cardsearch_lib.plain_text import iter_text_leaves
from cardsearch_lib.text_filter import DEFAULT_POLICY, TextPlausibilityPolicy

# Configure module logger
logger = logging.getLogger(__name__)

# Document kinds
KIND_PDF = 'pdf'
KIND_WORD = 'word'
KIND_POWERPOINT = 'powerpoint'
KIND_EXCEL = 'excel'
KIND_IMAGE = 'image'

DOCUMENT_EXTENSIONS = {
    '.pdf': KIND_PDF,
    '.doc': KIND_WORD,
    '.docx': KIND_WORD,
    '.ppt': KIND_POWERPOINT,
    '.pptx': KIND_POWERPOINT,
    '.xls': KIND_EXCEL,
    '.xlsx': KIND_EXCEL,
}

IMAGE_EXTENSIONS = {
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.tif', '.tiff', '.heic',
}

PAGED_KINDS = {KIND_PDF, KIND_WORD, KIND_POWERPOINT}

PARAGRAPHS_PER_PAGE = 4
MIN_RECOGNIZED_CHARS = 5

IMAGE_PLACEHOLDER = 'Image file'
SLIDE_EMPTY_PLACEHOLDER = 'Slide {number} (no text content)'
SLIDE_FAILED_PLACEHOLDER = 'Slide {number} (parse failed)'
POWERPOINT_EMPTY_PLACEHOLDER = 'PowerPoint document (no content could be parsed)'
POWERPOINT_FAILED_PLACEHOLDER = 'PowerPoint document (parse failed, file recognized)'

SLIDE_PART_RE = re.compile(r'^ppt/slides/slide(\d+)\.xml$')
PARAGRAPH_SPLIT_RE = re.compile(r'\n\s*\n')
HORIZONTAL_SPACE_RE = re.compile(r'[ \t\r\f\v]+')
BLANK_LINES_RE = re.compile(r'\n\s*\n+')
QUOTED_STRING_PATTERNS = (
    re.compile(r'"([^"]{3,})"'),
    re.compile(r'_":\s*"([^"]+)"'),
    re.compile(r'text":\s*"([^"]+)"'),
)
QUOTE_TRIM_RE = re.compile(r'^["_":\s]+|["\s]+$')


class ExtractionError(Exception):
    """Document could not be extracted by any available engine."""
    pass


class ImageRecognizer(Protocol):
    """Text recognition service for images (large-model OCR or similar)."""

    def process_image(self, file_path: str) -> str:
        ...


class NullImageRecognizer:
    """Recognizer used when no service is configured; recognizes nothing."""

    def process_image(self, file_path: str) -> str:
        return ''


@dataclass
class Page:
    """One page of extracted text."""
    page_number: int
    content: str
    page_type: str = 'text'


@dataclass
class ExtractedDocument:
    """Result of extract_document()."""
    content: str
    encoding: str
    kind: str
    pages: list[Page] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return len(self.pages)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        result = {
            'content': self.content,
            'encoding': self.encoding,
            'kind': self.kind,
        }
        if self.pages:
            result['pages'] = [asdict(page) for page in self.pages]
            result['total_pages'] = self.total_pages
        return result


def get_document_kind(filepath: Path) -> str:
    """
    Map a file to the document kind used to pick an extractor.

    Args:
        filepath: Path to the file

    Returns:
        'pdf', 'word', 'powerpoint', 'excel', 'image', or the bare extension
        (e.g. 'md', 'txt') for files handled as plain text
    """
    suffix = Path(filepath).suffix.lower()

    if suffix in DOCUMENT_EXTENSIONS:
        return DOCUMENT_EXTENSIONS[suffix]
    if suffix in IMAGE_EXTENSIONS:
        return KIND_IMAGE

    mime_type, _ = mimetypes.guess_type(str(filepath))
    if mime_type and mime_type.startswith('image/'):
        return KIND_IMAGE

    return suffix[1:] if suffix else 'unknown'


def is_text_file(filepath: Path) -> bool:
    """
    Check whether a file of unknown type looks like text.

    Reads the first 8 KB; null bytes mean binary, valid UTF-8 means text,
    otherwise the share of printable ASCII bytes decides.
    """
    try:
        with open(filepath, 'rb') as f:
            chunk = f.read(8192)
    except OSError:
        return False

    if b'\x00' in chunk:
        return False
    try:
        chunk.decode('utf-8')
        return True
    except UnicodeDecodeError:
        printable = sum(1 for b in chunk if 32 <= b < 127 or b in (9, 10, 13) or b >= 0x80)
        return printable / len(chunk) > 0.8 if chunk else True


def paginate_paragraphs(text: str, per_page: int = PARAGRAPHS_PER_PAGE) -> list[Page]:
    """
    Split text into blank-line separated paragraphs and group them into pages.

    Args:
        text: Raw text
        per_page: Paragraphs per page

    Returns:
        Pages of `per_page` paragraphs (the last may have fewer), or a single
        page holding the raw text when there are no paragraphs
    """
    paragraphs = [p.strip() for p in PARAGRAPH_SPLIT_RE.split(text or '') if p.strip()]
    if not paragraphs:
        return [Page(page_number=1, content=(text or '').strip())]

    return [
        Page(page_number=index // per_page + 1, content='\n\n'.join(paragraphs[index:index + per_page]))
        for index in range(0, len(paragraphs), per_page)
    ]


def _collapse_page_text(text: str) -> str:
    text = HORIZONTAL_SPACE_RE.sub(' ', text)
    return BLANK_LINES_RE.sub('\n', text).strip()


def _extract_pdf_single_pass(filepath: Path) -> list[Page]:
    """Extract the whole PDF as one page with pdfminer.six."""
    from pdfminer.high_level import extract_text

    text = extract_text(str(filepath))
    return [Page(page_number=1, content=_collapse_page_text(text or ''))]


def _extract_pdf(filepath: Path) -> list[Page]:
    """
    Extract a PDF page by page.

    A page that fails to extract becomes an empty page with its page number.
    If pypdf cannot open the document, pdfminer.six extracts it in one pass.

    Raises:
        ExtractionError: If neither engine can read the document
    """
    try:
        from pypdf import PdfReader

        reader = PdfReader(str(filepath))
        page_count = len(reader.pages)
    except Exception as primary_error:
        logger.warning(f"pypdf could not open {filepath}: {primary_error}; trying pdfminer")
        try:
            return _extract_pdf_single_pass(filepath)
        except Exception as e:
            raise ExtractionError(f"Failed to extract pdf {filepath}: {e}") from primary_error

    pages = []
    for index in range(page_count):
        try:
            text = reader.pages[index].extract_text() or ''
            content = _collapse_page_text(text)
        except Exception as e:
            logger.warning(f"Failed to extract page {index + 1} of {filepath}: {e}")
            content = ''
        pages.append(Page(page_number=index + 1, content=content))

    return pages


def _extract_word(filepath: Path) -> list[Page]:
    """
    Extract a Word document into synthetic pages of four paragraphs.

    Table rows follow the body paragraphs, one paragraph per row.

    Raises:
        ExtractionError: If the document cannot be opened
    """
    try:
        from docx import Document
    except ImportError as e:
        logger.warning("python-docx not installed. Install with: pip install python-docx")
        raise ExtractionError(f"Cannot extract {filepath}: python-docx missing") from e

    try:
        doc = Document(str(filepath))
    except Exception as e:
        raise ExtractionError(f"Failed to open word document {filepath}: {e}") from e

    parts = [para.text for para in doc.paragraphs]
    for table in doc.tables:
        for row in table.rows:
            parts.append(' | '.join(cell.text.strip() for cell in row.cells))

    return paginate_paragraphs('\n\n'.join(parts))


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def xml_to_tree(element: ET.Element) -> dict:
    """
    Convert an XML element into nested dicts.

    Attributes go under '$', element text under '_', and children are lists
    keyed by their local tag name.
    """
    node = {}
    if element.attrib:
        node['$'] = {_local_name(key): value for key, value in element.attrib.items()}
    text = (element.text or '').strip()
    if text:
        node['_'] = text
    for child in element:
        node.setdefault(_local_name(child.tag), []).append(xml_to_tree(child))
    return node


def _scrape_quoted_strings(tree: dict, policy: TextPlausibilityPolicy) -> list[str]:
    serialized = json.dumps(tree, ensure_ascii=False)
    texts = []
    for pattern in QUOTED_STRING_PATTERNS:
        for match in pattern.finditer(serialized):
            text = QUOTE_TRIM_RE.sub('', match.group(0))
            if policy.is_meaningful(text):
                texts.append(text)
    return texts


def _slide_text(tree: dict, policy: TextPlausibilityPolicy) -> str:
    """Meaningful text of one parsed slide, cleaned."""
    content = ' '.join(iter_text_leaves(tree, accept=policy.is_meaningful)).strip()
    if not content:
        content = ' '.join(_scrape_quoted_strings(tree, policy))
    return policy.clean_slide_text(content)


def _extract_powerpoint_slides(filepath: Path, policy: TextPlausibilityPolicy) -> list[Page]:
    """
    Read slide XML parts from the .pptx archive in slide order.

    A slide that fails to parse becomes a placeholder page.

    Raises:
        zipfile.BadZipFile: If the file is not a zip archive
        ExtractionError: If the archive has no slide parts or no slide parses
    """
    pages = []
    failed = 0
    with zipfile.ZipFile(filepath) as archive:
        slides = []
        for name in archive.namelist():
            match = SLIDE_PART_RE.match(name)
            if match:
                slides.append((int(match.group(1)), name))
        slides.sort()
        if not slides:
            raise ExtractionError(f"No slide parts in {filepath}")

        for position, (_, name) in enumerate(slides, start=1):
            try:
                tree = xml_to_tree(ET.fromstring(archive.read(name)))
                content = _slide_text(tree, policy)
                pages.append(Page(
                    page_number=position,
                    content=content or SLIDE_EMPTY_PLACEHOLDER.format(number=position),
                ))
            except Exception as e:
                logger.warning(f"Failed to parse slide {position} of {filepath}: {e}")
                failed += 1
                pages.append(Page(page_number=position, content=SLIDE_FAILED_PLACEHOLDER.format(number=position)))

    if failed == len(slides):
        raise ExtractionError(f"None of the {failed} slides of {filepath} could be parsed")
    return pages


def _extract_powerpoint_generic(filepath: Path, policy: TextPlausibilityPolicy) -> list[Page]:
    """Extract all shape text with python-pptx, clean it and group paragraphs into pages."""
    from pptx import Presentation

    presentation = Presentation(str(filepath))
    paragraphs = []
    for slide in presentation.slides:
        for shape in slide.shapes:
            if shape.has_text_frame and shape.text_frame.text.strip():
                paragraphs.append(shape.text_frame.text)

    cleaned = policy.clean_generic_text('\n\n'.join(paragraphs))
    if not cleaned:
        return [Page(page_number=1, content=POWERPOINT_EMPTY_PLACEHOLDER)]
    return paginate_paragraphs(cleaned)


def _extract_powerpoint(filepath: Path, policy: TextPlausibilityPolicy) -> list[Page]:
    try:
        return _extract_powerpoint_slides(filepath, policy)
    except Exception as e:
        logger.warning(f"Slide parsing failed for {filepath}: {e}; trying generic extraction")

    try:
        return _extract_powerpoint_generic(filepath, policy)
    except Exception as e:
        logger.warning(f"Generic extraction failed for {filepath}: {e}")
        return [Page(page_number=1, content=POWERPOINT_FAILED_PLACEHOLDER)]


def _cell_text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _join_rows(rows) -> list[str]:
    lines = []
    for row in rows:
        cells = [_cell_text(value) for value in row]
        while cells and not cells[-1]:
            cells.pop()
        if any(cells):
            lines.append('\t'.join(cells))
    return lines


def _extract_excel(filepath: Path) -> str:
    """
    Extract every sheet of a spreadsheet as tab-separated rows.

    Raises:
        ExtractionError: If the workbook cannot be opened
    """
    lines = []
    try:
        if Path(filepath).suffix.lower() == '.xls':
            import xlrd

            book = xlrd.open_workbook(str(filepath))
            for sheet in book.sheets():
                lines.extend(_join_rows(sheet.row_values(index) for index in range(sheet.nrows)))
        else:
            from openpyxl import load_workbook

            wb = load_workbook(filepath, read_only=True, data_only=True)
            try:
                for sheet in wb.worksheets:
                    lines.extend(_join_rows(sheet.iter_rows(values_only=True)))
            finally:
                wb.close()
    except ImportError as e:
        logger.warning(f"Spreadsheet library not installed: {e}")
        raise ExtractionError(f"Cannot extract {filepath}: {e}") from e
    except Exception as e:
        raise ExtractionError(f"Failed to extract spreadsheet {filepath}: {e}") from e

    return '\n'.join(lines)


def read_exif_summary(filepath: Path) -> Optional[str]:
    """
    Summarize camera make, model and timestamp from EXIF data.

    Returns:
        "Camera: X, Model: Y, Time: Z" (present fields only), or None
    """
    from PIL import ExifTags, Image

    try:
        with Image.open(filepath) as img:
            exif = img.getexif()
    except Exception as e:
        logger.debug(f"No EXIF data for {filepath}: {e}")
        return None

    tags = {ExifTags.TAGS.get(key, key): value for key, value in exif.items()}
    parts = []
    for tag, label in (('Make', 'Camera'), ('Model', 'Model'), ('DateTime', 'Time')):
        value = str(tags.get(tag, '')).strip('\x00 ')
        if value:
            parts.append(f"{label}: {value}")
    return ', '.join(parts) or None


def _extract_image(filepath: Path, recognizer: ImageRecognizer) -> str:
    """Recognized text of an image, or its EXIF summary, or a placeholder."""
    try:
        text = (recognizer.process_image(str(filepath)) or '').strip()
        if len(text) >= MIN_RECOGNIZED_CHARS:
            return text
        logger.info(f"No text recognized in {filepath}")
    except Exception as e:
        logger.warning(f"Image recognition failed for {filepath}: {e}")

    return read_exif_summary(filepath) or IMAGE_PLACEHOLDER


def extract_document(
    filepath: Path,
    kind: Optional[str] = None,
    image_recognizer: Optional[ImageRecognizer] = None,
    profile: Optional[PlatformProfile] = None,
    policy: Optional[TextPlausibilityPolicy] = None,
) -> ExtractedDocument:
    """
    Extract plain text from a single file.

    Args:
        filepath: Path to the file
        kind: Declared document kind (default: from the extension)
        image_recognizer: Text recognition service for images
        profile: Platform capabilities for plain-text encoding detection
        policy: Plausibility policy for PowerPoint text

    Returns:
        ExtractedDocument; paged kinds carry pages and their content is the
        page contents joined by newlines

    Raises:
        OSError: If the file does not exist or cannot be read
        ExtractionError: If a PDF, Word or Excel file is unreadable by every
                         engine, or a file without extension is binary
    """
    filepath = Path(filepath)
    if not filepath.is_file():
        raise FileNotFoundError(f"Not a file: {filepath}")

    if kind is None:
        kind = get_document_kind(filepath)
    if policy is None:
        policy = DEFAULT_POLICY

    if kind in PAGED_KINDS:
        if kind == KIND_PDF:
            pages = _extract_pdf(filepath)
        elif kind == KIND_WORD:
            pages = _extract_word(filepath)
        else:
            pages = _extract_powerpoint(filepath, policy)
        content = '\n'.join(page.content for page in pages)
        return ExtractedDocument(content=content, encoding='utf-8', kind=kind, pages=pages)

    if kind == KIND_EXCEL:
        return ExtractedDocument(content=_extract_excel(filepath), encoding='utf-8', kind=kind)

    if kind == KIND_IMAGE:
        recognizer = image_recognizer or NullImageRecognizer()
        return ExtractedDocument(content=_extract_image(filepath, recognizer), encoding='utf-8', kind=kind)

    if kind == 'unknown' and not is_text_file(filepath):
        raise ExtractionError(f"Not a text file: {filepath}")

    decoded = read_text_file(filepath, profile)
    return ExtractedDocument(content=decoded.content, encoding=decoded.encoding, kind=kind)


if __name__ == '__main__':
    # Simple test/demo
    import argparse

    parser = argparse.ArgumentParser(description='Extract text from a document')
    parser.add_argument('path', help='File to extract')
    parser.add_argument('--kind', help='Override the detected document kind')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname)s: %(message)s'
    )

    path = Path(args.path)
    try:
        result = extract_document(path, args.kind)
    except (OSError, ExtractionError) as e:
        print(f"Could not extract content from {path}: {e}")
        sys.exit(1)

    print(f"Kind: {result.kind}")
    print(f"Encoding: {result.encoding}")
    if result.pages:
        print(f"Pages: {result.total_pages}")
    print(f"Content preview: {result.content[:200]}...")
