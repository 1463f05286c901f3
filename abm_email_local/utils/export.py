"""
Word document export for email sequences.

Each email is rendered as a bordered one-column table: a shaded header row
with the email number and subject, a body row, and a footer row with the
word count. Colours follow the Class brand palette.
"""

import io
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from docx import Document
from docx.document import Document as DocumentType
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Pt, RGBColor

from .logger import get_logger

logger = get_logger("export")

COLORS = {
    'navy': '0A1849',
    'purple': '4739E7',
    'light_purple': 'EBE9FC',
    'footer_bg': 'F6F6FE',
}

# Points
SIZES = {
    'title': 16,
    'subtitle': 11,
    'header': 12,
    'body': 11,
    'footer': 9,
}

DOCX_MEDIA_TYPE = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'

EmailLike = Union[Mapping[str, Any], Any]


def sanitize_filename(name: str) -> str:
    """Lower-case, spaces to dashes, then drop anything but a-z, 0-9 and dash."""
    lowered = re.sub(r'\s+', '-', name.lower())
    return re.sub(r'[^a-z0-9-]', '', lowered)


def export_filename(contact_name: str) -> str:
    return f"{sanitize_filename(contact_name)}-emails.docx"


def _email_fields(email: EmailLike) -> Dict[str, Any]:
    if isinstance(email, Mapping):
        return dict(email)
    return email.model_dump()


def _styled_run(paragraph, text: str, size: int, color: str, bold: bool = False, italic: bool = False):
    run = paragraph.add_run(text)
    run.bold = bold
    run.italic = italic
    run.font.size = Pt(size)
    run.font.color.rgb = RGBColor.from_string(color)
    return run


def _shade_cell(cell, fill: str) -> None:
    shading = OxmlElement('w:shd')
    shading.set(qn('w:val'), 'clear')
    shading.set(qn('w:color'), 'auto')
    shading.set(qn('w:fill'), fill)
    cell._tc.get_or_add_tcPr().append(shading)


def _style_table(table) -> None:
    tbl_pr = table._tbl.tblPr

    width = tbl_pr.find(qn('w:tblW'))
    if width is None:
        width = OxmlElement('w:tblW')
        tbl_pr.append(width)
    # pct is in fiftieths of a percent
    width.set(qn('w:type'), 'pct')
    width.set(qn('w:w'), '5000')

    borders = OxmlElement('w:tblBorders')
    edges = [
        ('top', COLORS['purple']),
        ('left', COLORS['purple']),
        ('bottom', COLORS['purple']),
        ('right', COLORS['purple']),
        ('insideH', COLORS['light_purple']),
    ]
    for edge, color in edges:
        element = OxmlElement(f'w:{edge}')
        element.set(qn('w:val'), 'single')
        element.set(qn('w:sz'), '4')
        element.set(qn('w:space'), '0')
        element.set(qn('w:color'), color)
        borders.append(element)
    tbl_pr.append(borders)


def _add_email_table(document: DocumentType, email: Dict[str, Any]) -> None:
    table = document.add_table(rows=3, cols=1)
    _style_table(table)

    header_cell = table.rows[0].cells[0]
    _shade_cell(header_cell, COLORS['light_purple'])
    header = header_cell.paragraphs[0]
    _styled_run(header, f"Email {email['email_number']}: ", SIZES['header'], COLORS['navy'], bold=True)
    _styled_run(header, email['subject_line'], SIZES['header'], COLORS['navy'])

    # One paragraph per body line so line breaks survive
    body_cell = table.rows[1].cells[0]
    lines = str(email['body']).split('\n')
    _styled_run(body_cell.paragraphs[0], lines[0], SIZES['body'], COLORS['navy'])
    for line in lines[1:]:
        _styled_run(body_cell.add_paragraph(), line, SIZES['body'], COLORS['navy'])

    footer_cell = table.rows[2].cells[0]
    _shade_cell(footer_cell, COLORS['footer_bg'])
    _styled_run(footer_cell.paragraphs[0], f"Word count: {email['word_count']}",
                SIZES['footer'], COLORS['purple'], italic=True)


def create_email_document(
    contact_name: str,
    contact_title: str,
    account_name: str,
    emails: Sequence[EmailLike],
) -> DocumentType:
    """
    Build a Word document for one contact's sequence.

    Args:
        contact_name: Contact's full name, used in the title
        contact_title: Contact's job title
        account_name: Organization name
        emails: Email dicts or EmailVariant models

    Returns:
        python-docx Document
    """
    document = Document()

    title = document.add_paragraph()
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER
    title.paragraph_format.space_after = Pt(5)
    _styled_run(title, f"Email Sequence for {contact_name}", SIZES['title'], COLORS['navy'], bold=True)

    subtitle = document.add_paragraph()
    subtitle.alignment = WD_ALIGN_PARAGRAPH.CENTER
    subtitle.paragraph_format.space_after = Pt(20)
    _styled_run(subtitle, f"{contact_title} at {account_name}", SIZES['subtitle'], COLORS['navy'])

    for position, email in enumerate(emails):
        _add_email_table(document, _email_fields(email))
        if position < len(emails) - 1:
            spacer = document.add_paragraph()
            spacer.paragraph_format.space_after = Pt(10)

    return document


def document_to_bytes(document: DocumentType) -> bytes:
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def write_email_document(
    output_dir: str,
    contact_name: str,
    contact_title: str,
    account_name: str,
    emails: Sequence[EmailLike],
    filename: Optional[str] = None,
) -> Path:
    """
    Render a sequence and write it to ``<output_dir>/<name>-emails.docx``.

    ``filename`` overrides the name derived from ``contact_name``.

    Returns:
        Path of the written file
    """
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)

    path = directory / (filename or export_filename(contact_name))
    document = create_email_document(contact_name, contact_title, account_name, emails)
    document.save(str(path))

    logger.info(f"Exported {len(emails)} emails for {contact_name} to {path}")
    return path
