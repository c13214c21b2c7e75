"""Tests for document text extraction."""

import zipfile

import pytest

from cardsearch_lib.file_extract import (
    IMAGE_PLACEHOLDER,
    POWERPOINT_FAILED_PLACEHOLDER,
    ExtractionError,
    Page,
    extract_document,
    get_document_kind,
    is_text_file,
    paginate_paragraphs,
)
from cardsearch_lib.platform_info import PlatformProfile

SLIDE_XML = (
    '<p:sld xmlns:a="http://schemas.openxmlformats.org/drawingml/2006/main" '
    'xmlns:p="http://schemas.openxmlformats.org/presentationml/2006/main">'
    '<p:cSld><p:spTree><p:sp><p:txBody><a:p><a:r><a:rPr lang="zh-CN"/>'
    '<a:t>{text}</a:t></a:r></a:p></p:txBody></p:sp></p:spTree></p:cSld></p:sld>'
)
EMPTY_SLIDE_XML = (
    '<p:sld xmlns:p="http://schemas.openxmlformats.org/presentationml/2006/main"><p:cSld/></p:sld>'
)


class FakePdfPage:
    def __init__(self, text):
        self.text = text

    def extract_text(self):
        if self.text is None:
            raise ValueError("corrupt content stream")
        return self.text


class FakePdfReader:
    texts = ["Page one  text", "Page two", None, "Page four\n\n\nend", "Page five"]

    def __init__(self, path):
        self.pages = [FakePdfPage(text) for text in self.texts]


class BrokenPdfReader:
    def __init__(self, path):
        raise ValueError("EOF marker not found")


class TestDocumentKind:
    """Extension to document kind mapping."""

    @pytest.mark.parametrize('name, kind', [
        ('report.PDF', 'pdf'),
        ('notes.docx', 'word'),
        ('deck.pptx', 'powerpoint'),
        ('sheet.xls', 'excel'),
        ('photo.jpeg', 'image'),
        ('readme.md', 'md'),
        ('Makefile', 'unknown'),
    ])
    def test_kinds(self, name, kind):
        assert get_document_kind(name) == kind


class TestPagination:
    """Synthetic pages of four paragraphs."""

    def test_groups_of_four(self):
        text = '\n\n'.join(f'paragraph {i}' for i in range(1, 10))
        pages = paginate_paragraphs(text)
        assert [page.page_number for page in pages] == [1, 2, 3]
        assert pages[0].content == 'paragraph 1\n\nparagraph 2\n\nparagraph 3\n\nparagraph 4'
        assert pages[2].content == 'paragraph 9'

    def test_no_paragraphs(self):
        assert paginate_paragraphs('') == [Page(page_number=1, content='')]


class TestPdf:
    """Page-by-page PDF extraction and fallbacks."""

    @pytest.fixture
    def pdf_path(self, tmp_path):
        path = tmp_path / "report.pdf"
        path.write_bytes(b'%PDF-1.4 placeholder')
        return path

    def test_failed_page_is_isolated(self, pdf_path, monkeypatch):
        """A page that fails to extract becomes an empty page with its number."""
        import pypdf
        monkeypatch.setattr(pypdf, 'PdfReader', FakePdfReader)

        document = extract_document(pdf_path)

        assert document.kind == 'pdf'
        assert [page.page_number for page in document.pages] == [1, 2, 3, 4, 5]
        assert [page.content for page in document.pages] == [
            'Page one text', 'Page two', '', 'Page four\nend', 'Page five',
        ]
        assert document.total_pages == 5

    def test_falls_back_to_single_pass(self, pdf_path, monkeypatch):
        import pdfminer.high_level
        import pypdf
        monkeypatch.setattr(pypdf, 'PdfReader', BrokenPdfReader)
        monkeypatch.setattr(pdfminer.high_level, 'extract_text', lambda path: "whole  document\n\n\ntext")

        document = extract_document(pdf_path)

        assert document.pages == [Page(page_number=1, content='whole document\ntext')]

    def test_both_engines_fail(self, pdf_path, monkeypatch):
        import pdfminer.high_level
        import pypdf

        def fail(path):
            raise ValueError("not a pdf")

        monkeypatch.setattr(pypdf, 'PdfReader', BrokenPdfReader)
        monkeypatch.setattr(pdfminer.high_level, 'extract_text', fail)

        with pytest.raises(ExtractionError):
            extract_document(pdf_path)


class TestWord:
    """Word documents built with python-docx."""

    def _write_docx(self, path, paragraphs):
        from docx import Document

        doc = Document()
        for text in paragraphs:
            doc.add_paragraph(text)
        doc.save(str(path))

    def test_pages_are_deterministic(self, tmp_path):
        path = tmp_path / "notes.docx"
        self._write_docx(path, [f'第{i}段 会议内容' for i in range(1, 11)])

        first = extract_document(path)
        second = extract_document(path)

        assert [len(page.content.split('\n\n')) for page in first.pages] == [4, 4, 2]
        assert first.pages == second.pages
        assert first.pages[0].content.startswith('第1段 会议内容')

    def test_table_rows_follow_paragraphs(self, tmp_path):
        from docx import Document

        path = tmp_path / "table.docx"
        doc = Document()
        doc.add_paragraph('Body text')
        table = doc.add_table(rows=1, cols=2)
        table.rows[0].cells[0].text = '姓名'
        table.rows[0].cells[1].text = '张三'
        doc.save(str(path))

        document = extract_document(path)
        assert document.content == 'Body text\n\n姓名 | 张三'

    def test_corrupt_document(self, tmp_path):
        path = tmp_path / "broken.docx"
        path.write_bytes(b'not a zip archive')
        with pytest.raises(ExtractionError):
            extract_document(path)


class TestPowerPoint:
    """Slide XML parsing and fallbacks."""

    def _write_pptx(self, path, slides):
        with zipfile.ZipFile(path, 'w') as archive:
            for name, xml in slides:
                archive.writestr(name, xml)

    def test_slides_in_numeric_order(self, tmp_path):
        path = tmp_path / "deck.pptx"
        self._write_pptx(path, [
            ('ppt/slides/slide10.xml', SLIDE_XML.format(text='第十页内容')),
            ('ppt/slides/slide1.xml', SLIDE_XML.format(text='第一页内容')),
            ('ppt/slides/slide2.xml', SLIDE_XML.format(text='第二页内容')),
            ('ppt/slides/_rels/slide1.xml.rels', '<Relationships/>'),
        ])

        document = extract_document(path)

        assert [page.content for page in document.pages] == ['第一页内容', '第二页内容', '第十页内容']
        assert [page.page_number for page in document.pages] == [1, 2, 3]

    def test_empty_slide_placeholder(self, tmp_path):
        path = tmp_path / "deck.pptx"
        self._write_pptx(path, [
            ('ppt/slides/slide1.xml', SLIDE_XML.format(text='季度报告')),
            ('ppt/slides/slide2.xml', EMPTY_SLIDE_XML),
        ])

        document = extract_document(path)

        assert document.pages[0].content == '季度报告'
        assert document.pages[1].content == 'Slide 2 (no text content)'

    def test_unreadable_archive_gives_placeholder(self, tmp_path):
        path = tmp_path / "broken.pptx"
        path.write_bytes(b'garbage')

        document = extract_document(path)

        assert document.pages == [Page(page_number=1, content=POWERPOINT_FAILED_PLACEHOLDER)]

    def test_quoted_strings_rescue_overlong_text(self, tmp_path):
        """A text run too long to accept whole still yields its quoted parts."""
        path = tmp_path / "deck.pptx"
        text = '季度报告"' + '甲' * 200
        self._write_pptx(path, [('ppt/slides/slide1.xml', SLIDE_XML.format(text=text))])

        document = extract_document(path)

        assert '季度报告' in document.pages[0].content
        assert document.pages[0].content != 'Slide 1 (no text content)'

    def _renamed_slide_deck(self, tmp_path, text):
        from pptx import Presentation
        from pptx.util import Inches

        presentation = Presentation()
        slide = presentation.slides.add_slide(presentation.slide_layouts[6])
        box = slide.shapes.add_textbox(Inches(1), Inches(1), Inches(4), Inches(1))
        box.text_frame.text = text
        original = tmp_path / "original.pptx"
        presentation.save(str(original))

        # Same deck with the slide part stored under a non-standard name
        path = tmp_path / "renamed.pptx"
        with zipfile.ZipFile(original) as src, zipfile.ZipFile(path, 'w') as dst:
            for item in src.infolist():
                data = src.read(item.filename)
                if item.filename.endswith(('.xml', '.rels')):
                    data = data.replace(b'slide1.xml', b'intro.xml')
                dst.writestr(item.filename.replace('slide1.xml', 'intro.xml'), data)
        return path

    def test_deck_without_slide_parts_uses_generic_pass(self, tmp_path):
        path = self._renamed_slide_deck(tmp_path, '季度报告 项目计划')

        document = extract_document(path)

        assert len(document.pages) == 1
        assert '季度报告 项目计划' in document.pages[0].content

    def test_unparseable_slides_fall_through_to_placeholder(self, tmp_path):
        path = tmp_path / "deck.pptx"
        self._write_pptx(path, [
            ('ppt/slides/slide1.xml', '<p:sld><unclosed>'),
            ('ppt/slides/slide2.xml', 'not xml at all <'),
        ])

        document = extract_document(path)

        assert document.pages == [Page(page_number=1, content=POWERPOINT_FAILED_PLACEHOLDER)]

    def test_one_bad_slide_keeps_the_others(self, tmp_path):
        path = tmp_path / "deck.pptx"
        self._write_pptx(path, [
            ('ppt/slides/slide1.xml', SLIDE_XML.format(text='季度报告')),
            ('ppt/slides/slide2.xml', '<p:sld><unclosed>'),
        ])

        document = extract_document(path)

        assert [page.content for page in document.pages] == ['季度报告', 'Slide 2 (parse failed)']


class TestExcel:
    """Spreadsheets flattened into tab-separated rows."""

    def test_all_sheets(self, tmp_path):
        from openpyxl import Workbook

        path = tmp_path / "sheet.xlsx"
        wb = Workbook()
        ws = wb.active
        ws.append(['名称', '数量'])
        ws.append(['苹果', 3])
        other = wb.create_sheet('Second')
        other.append(['note'])
        wb.save(path)

        document = extract_document(path)

        assert document.kind == 'excel'
        assert document.pages == []
        assert document.content == '名称\t数量\n苹果\t3\nnote'

    def test_corrupt_workbook(self, tmp_path):
        path = tmp_path / "broken.xlsx"
        path.write_bytes(b'not a workbook')
        with pytest.raises(ExtractionError):
            extract_document(path)


class TestImage:
    """Recognizer, EXIF and placeholder chain."""

    @pytest.fixture
    def png_path(self, tmp_path):
        from PIL import Image

        path = tmp_path / "photo.png"
        Image.new('RGB', (4, 4)).save(path)
        return path

    def test_recognized_text(self, png_path):
        class Recognizer:
            def process_image(self, file_path):
                return '白板上的会议记录'

        document = extract_document(png_path, image_recognizer=Recognizer())
        assert document.content == '白板上的会议记录'

    def test_recognizer_failure_uses_placeholder(self, png_path):
        class Recognizer:
            def process_image(self, file_path):
                raise ConnectionError("service unavailable")

        document = extract_document(png_path, image_recognizer=Recognizer())
        assert document.content == IMAGE_PLACEHOLDER

    def test_exif_summary(self, tmp_path):
        from PIL import Image

        path = tmp_path / "camera.jpg"
        img = Image.new('RGB', (4, 4))
        exif = img.getexif()
        exif[0x010F] = 'Canon'
        exif[0x0110] = 'EOS R5'
        img.save(path, exif=exif)

        document = extract_document(path)
        assert document.content == 'Camera: Canon, Model: EOS R5'


class TestPlainText:
    """Text files decoded through encoding detection."""

    def test_gbk_text(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_bytes("课程安排".encode('gbk'))
        profile = PlatformProfile.for_platform('windows', home=tmp_path)

        document = extract_document(path, profile=profile)

        assert document.content == "课程安排"
        assert document.encoding == 'gbk'
        assert document.kind == 'txt'

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            extract_document(tmp_path / "missing.txt")

    def test_binary_without_extension(self, tmp_path):
        path = tmp_path / "blob"
        path.write_bytes(b'\x00\x01\x02binary')
        assert not is_text_file(path)
        with pytest.raises(ExtractionError):
            extract_document(path)

    def test_text_without_extension(self, tmp_path):
        path = tmp_path / "README"
        path.write_text("plain readme", encoding='utf-8')
        assert extract_document(path).content == "plain readme"

    def test_to_dict_omits_pages_for_flat_documents(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("# 标题", encoding='utf-8')
        result = extract_document(path).to_dict()
        assert 'pages' not in result
        assert result['content'] == "# 标题"
