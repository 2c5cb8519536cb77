"""
Test Export Service - PDF Generation

Exports a generated test as:
- Question paper (header, examinee block, instructions, items grouped by type; no answers)
- Answer key (item number → correct answer, separate document)

Both render from the same grouped view as the on-screen preview.
"""

import logging
from io import BytesIO
from typing import Any, Dict, List, Optional

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY, TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from database.models import GeneratedTest
from generation.exam_preview import build_preview, build_print_view

log = logging.getLogger(__name__)


# ─── Configuration ──────────────────────────────────────────────────────────────

DEFAULT_INSTITUTION_NAME = "School / Institution Name"
CONTENT_WIDTH = 17*cm

# name → (parent, font, size, alignment, extra ParagraphStyle kwargs)
PAPER_STYLES = {
    "InstitutionName": ("Heading1", "Helvetica-Bold", 16, TA_CENTER, {"spaceAfter": 6}),
    "TestTitle": ("Heading2", "Helvetica-Bold", 14, TA_CENTER, {"spaceAfter": 4}),
    "TestDetails": ("Normal", "Helvetica", 11, TA_CENTER, {"spaceAfter": 12}),
    "SectionHeader": ("Heading3", "Helvetica-Bold", 12, TA_LEFT, {"spaceBefore": 12, "spaceAfter": 8}),
    "QuestionText": ("Normal", "Helvetica", 11, TA_JUSTIFY, {"spaceAfter": 6, "leading": 14}),
    "ChoiceText": ("Normal", "Helvetica", 10, TA_LEFT, {"leftIndent": 20, "spaceAfter": 3}),
    "Instructions": ("Normal", "Helvetica", 10, TA_LEFT, {"leftIndent": 30, "spaceAfter": 4}),
    "AnswerText": ("Normal", "Helvetica", 10, TA_LEFT, {"leftIndent": 10, "spaceAfter": 4, "leading": 13}),
}


# ─── Helpers ────────────────────────────────────────────────────────────────────

def _escape_html(text: Any) -> str:
    """Escape so ReportLab Paragraph treats the text literally."""
    if text is None:
        return ""
    text = str(text)
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _rule() -> HRFlowable:
    return HRFlowable(width=CONTENT_WIDTH, thickness=1.5, color=colors.black, spaceBefore=2, spaceAfter=2)


def get_custom_styles():
    """Sample stylesheet plus the paper / answer key styles."""
    styles = getSampleStyleSheet()
    for name, (parent, font, size, alignment, extra) in PAPER_STYLES.items():
        styles.add(ParagraphStyle(
            name=name, parent=styles[parent], fontName=font, fontSize=size, alignment=alignment, **extra,
        ))
    return styles


def _new_document(buffer: BytesIO, title: str) -> SimpleDocTemplate:
    return SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=2*cm,
        leftMargin=2*cm,
        topMargin=2*cm,
        bottomMargin=2*cm,
        title=title,
    )


def _header(story: List, styles, view: Dict[str, Any], institution_name: Optional[str], suffix: str = "") -> None:
    story.append(Paragraph(_escape_html(institution_name or DEFAULT_INSTITUTION_NAME), styles['InstitutionName']))
    story.append(Spacer(1, 0.2*cm))
    story.append(Paragraph(f"<b>{_escape_html(view['title'])}{suffix}</b>", styles['TestTitle']))

    details = [
        d for d in (
            view.get("course"),
            f"Subject No. {view['subject_no']}" if view.get("subject_no") else None,
            view.get("exam_period"),
            f"S.Y. {view['school_year']}" if view.get("school_year") else None,
        ) if d
    ]
    if details:
        story.append(Paragraph(_escape_html(" | ".join(details)), styles['TestDetails']))
    story.append(Paragraph(
        f"Total Items: {view['total_items']} ({view['total_points']:g} points)", styles['TestDetails'],
    ))
    story.append(_rule())
    story.append(Spacer(1, 0.3*cm))


def format_answer(entry: Dict[str, Any], choices: Optional[Dict[str, Any]] = None) -> str:
    """Answer key entry → display text."""
    answer = entry.get("answer")
    if answer is None:
        return "(scored by rubric)"
    if isinstance(answer, bool):
        return "TRUE" if answer else "FALSE"
    if isinstance(answer, dict):
        return "; ".join(f"{k} = {v}" for k, v in answer.items())
    if choices and answer in choices:
        return f"{answer}. {choices[answer]}"
    return str(answer)


# ─── Question Paper Generator ───────────────────────────────────────────────────

def generate_question_paper(
    test: GeneratedTest,
    institution_name: Optional[str] = None,
    instructions: Optional[List[str]] = None,
) -> BytesIO:
    """
    Question paper PDF (no answers). Built from the print view, so the answer
    key can never leak into the hard copy.
    Returns BytesIO buffer containing the PDF.
    """
    view = build_print_view(test)
    buffer = BytesIO()
    doc = _new_document(buffer, view["title"])
    styles = get_custom_styles()
    story: List = []

    # ─── Header ─────────────────────────────────────────────────────────────────
    _header(story, styles, view, institution_name)

    examinee = Table(
        [["Name: ______________________________", "Score: ________"],
         ["Section: ___________________________", "Date: _________"]],
        colWidths=[11*cm, 6*cm],
    )
    examinee.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
    ]))
    story.append(examinee)
    story.append(Spacer(1, 0.3*cm))

    # ─── Instructions ───────────────────────────────────────────────────────────
    story.append(Paragraph("<b>General Instructions:</b>", styles['Normal']))
    story.append(Spacer(1, 0.2*cm))
    for i, instruction in enumerate(instructions or view["instructions"], 1):
        story.append(Paragraph(f"{i}) {_escape_html(instruction)}", styles['Instructions']))
    story.append(Spacer(1, 0.3*cm))
    story.append(_rule())
    story.append(Spacer(1, 0.4*cm))

    # ─── Items by type ──────────────────────────────────────────────────────────
    roman = ["I", "II", "III", "IV", "V", "VI", "VII"]
    for g, group in enumerate(view["groups"]):
        story.append(Paragraph(
            f"{roman[g] if g < len(roman) else g + 1}. {group['label'].upper()} ({group['points']:g} points)",
            styles['SectionHeader'],
        ))
        for item in group["items"]:
            story.append(Paragraph(
                f"<b>{item['number']}.</b> {_escape_html(item['question_text'])}", styles['QuestionText'],
            ))
            for label, text in (item.get("choices") or {}).items():
                story.append(Paragraph(f"<b>{_escape_html(label)}.</b> {_escape_html(text)}", styles['ChoiceText']))
            if group["question_type"] == "matching":
                rows = []
                premises = item.get("premises", [])
                responses = list(item.get("responses", {}).items())
                for r in range(max(len(premises), len(responses))):
                    left = f"____ {r + 1}. {premises[r]}" if r < len(premises) else ""
                    right = f"{responses[r][0]}. {responses[r][1]}" if r < len(responses) else ""
                    rows.append([Paragraph(_escape_html(left), styles['ChoiceText']),
                                 Paragraph(_escape_html(right), styles['ChoiceText'])])
                if rows:
                    story.append(Table(rows, colWidths=[8.5*cm, 8.5*cm]))
            if group["question_type"] == "essay":
                story.append(Spacer(1, 2.5*cm))
            story.append(Spacer(1, 0.25*cm))

    doc.build(story)
    buffer.seek(0)
    log.info("Question paper PDF built for test %s (%d items)", test.id, view["total_items"])
    return buffer


# ─── Answer Key Generator ───────────────────────────────────────────────────────

def generate_answer_key(
    test: GeneratedTest,
    institution_name: Optional[str] = None,
) -> BytesIO:
    """
    Answer key PDF, one table per question-type group, numbered as on the paper.
    Returns BytesIO buffer containing the PDF.
    """
    view = build_preview(test, show_answer_key=True)
    keys = {entry["item_number"]: entry for entry in view["answer_key"]}
    buffer = BytesIO()
    doc = _new_document(buffer, f"{view['title']} - Answer Key")
    styles = get_custom_styles()
    story: List = []

    _header(story, styles, view, institution_name, suffix=" - ANSWER KEY")

    cell_style = styles['AnswerText']
    for group in view["groups"]:
        story.append(Paragraph(group["label"].upper(), styles['SectionHeader']))
        table_data = [[Paragraph("<b>No.</b>", cell_style), Paragraph("<b>Answer</b>", cell_style)]]
        for item in group["items"]:
            entry = keys.get(item["item_number"], {})
            table_data.append([
                Paragraph(str(item["number"]), cell_style),
                Paragraph(_escape_html(format_answer(entry, item.get("choices"))), cell_style),
            ])
        tbl = Table(table_data, colWidths=[2*cm, 15*cm])
        tbl.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.lightgrey),
            ('ALIGN', (0, 0), (0, -1), 'CENTER'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
            ('TOPPADDING', (0, 0), (-1, -1), 4),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
        ]))
        story.append(tbl)
        story.append(Spacer(1, 0.4*cm))

    doc.build(story)
    buffer.seek(0)
    return buffer
