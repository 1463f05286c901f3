import io

from docx import Document
from docx.shared import RGBColor

from abm_email_local.schemas import validate_email_sequence
from abm_email_local.utils.export import (
    COLORS,
    create_email_document,
    document_to_bytes,
    export_filename,
    sanitize_filename,
    write_email_document,
)

from conftest import make_sequence


def reopen(document):
    return Document(io.BytesIO(document_to_bytes(document)))


def test_sanitize_filename():
    assert sanitize_filename("Mary O'Neil  Jr.") == "mary-oneil-jr"
    assert export_filename("Jane Park") == "jane-park-emails.docx"


def test_document_layout():
    emails = make_sequence()

    doc = reopen(create_email_document("Jane Park", "Chief Learning Officer", "Riverside Health", emails))

    assert doc.paragraphs[0].text == "Email Sequence for Jane Park"
    assert doc.paragraphs[1].text == "Chief Learning Officer at Riverside Health"
    assert len(doc.tables) == 3

    first = doc.tables[0]
    assert len(first.rows) == 3
    assert first.rows[0].cells[0].text == "Email 1: Epic go-live training plan"
    assert first.rows[1].cells[0].text == emails[0]["body"]
    assert first.rows[2].cells[0].text == "Word count: 170"


def test_body_lines_become_paragraphs():
    emails = make_sequence()

    doc = reopen(create_email_document("Jane Park", "CLO", "Riverside Health", emails))

    body_cell = doc.tables[2].rows[1].cells[0]
    assert len(body_cell.paragraphs) == len(emails[2]["body"].split("\n"))
    assert body_cell.paragraphs[-1].text == "Dalton"


def test_brand_styling():
    doc = reopen(create_email_document("Jane Park", "CLO", "Riverside Health", make_sequence()))

    title_run = doc.paragraphs[0].runs[0]
    assert title_run.bold
    assert title_run.font.color.rgb == RGBColor.from_string(COLORS["navy"])

    footer_run = doc.tables[0].rows[2].cells[0].paragraphs[0].runs[0]
    assert footer_run.italic
    assert footer_run.font.color.rgb == RGBColor.from_string(COLORS["purple"])


def test_accepts_validated_models():
    sequence = validate_email_sequence(make_sequence())

    doc = reopen(create_email_document("Jane Park", "CLO", "Riverside Health", sequence.root))

    assert doc.tables[1].rows[0].cells[0].text == "Email 2: Training time away from patients"


def test_write_email_document(tmp_path):
    path = write_email_document(str(tmp_path / "exports"), "Jane Park", "CLO", "Riverside Health", make_sequence())

    assert path == tmp_path / "exports" / "jane-park-emails.docx"
    assert len(Document(str(path)).tables) == 3
