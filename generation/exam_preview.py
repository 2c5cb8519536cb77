"""
Test Preview — generation/exam_preview.py

Pure rendering of a GeneratedTest into the structure the preview and print
screens show:

    Multiple Choice   (items 1..n, choices listed)
    True or False
    Fill in the Blank
    Matching Type     (premises + lettered responses)
    Essay

The answer key block is only attached when asked for; the print view never
carries it, whatever the on-screen toggle says.
"""

from typing import Any, Dict, List

from database.models import GeneratedTest

TYPE_ORDER = ["multiple_choice", "true_false", "fill_blank", "matching", "essay"]

TYPE_LABELS = {
    "multiple_choice": "Multiple Choice",
    "true_false": "True or False",
    "fill_blank": "Fill in the Blank",
    "matching": "Matching Type",
    "essay": "Essay",
}

GENERAL_INSTRUCTIONS = [
    "Write your Name, Section, and Student Number on your answer sheet.",
    "Read each item carefully before answering.",
    "For Multiple Choice: Encircle the letter of the correct answer.",
    "For True or False: Write TRUE or FALSE on the blank.",
    "For Fill in the Blank: Write the correct answer on the blank provided.",
    "For Matching Type: Write the letter of the correct match.",
    "For Essay: Answer in complete sentences with clear explanations.",
]


def _points(item: Dict[str, Any]) -> float:
    return item.get("points") or 1


def _render_item(item: Dict[str, Any], number: int) -> Dict[str, Any]:
    rendered = {
        "number": number,
        "item_number": item["item_number"],
        "question_id": item["question_id"],
        "question_text": item["question_text"],
        "points": _points(item),
    }
    qtype = item["question_type"]
    if qtype == "multiple_choice":
        rendered["choices"] = item.get("choices") or {}
    elif qtype == "true_false":
        rendered["question_text"] = f"__________ {item['question_text']}"
    elif qtype == "matching":
        pairs = item.get("choices") or {}
        responses = sorted(pairs.values())
        rendered["premises"] = list(pairs.keys())
        rendered["responses"] = {chr(ord("A") + i): r for i, r in enumerate(responses)}
    return rendered


def group_items(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Items grouped by question type in fixed display order; numbering restarts per group."""
    buckets: Dict[str, List[Dict[str, Any]]] = {}
    for item in sorted(items, key=lambda i: i["item_number"]):
        buckets.setdefault(item["question_type"], []).append(item)

    groups = []
    for qtype in TYPE_ORDER + sorted(set(buckets) - set(TYPE_ORDER)):
        bucket = buckets.get(qtype)
        if not bucket:
            continue
        groups.append({
            "question_type": qtype,
            "label": TYPE_LABELS.get(qtype, qtype.replace("_", " ").title()),
            "items": [_render_item(item, n) for n, item in enumerate(bucket, 1)],
            "points": sum(_points(item) for item in bucket),
        })
    return groups


def total_points(items: List[Dict[str, Any]]) -> float:
    return sum(_points(item) for item in items)


def build_preview(test: GeneratedTest, show_answer_key: bool = False) -> Dict[str, Any]:
    items = test.items or []
    preview = {
        "test_id": test.id,
        "tos_id": test.tos_id,
        "title": test.title,
        "subject_no": test.subject_no,
        "course": test.course,
        "exam_period": test.exam_period,
        "school_year": test.school_year,
        "total_items": len(items),
        "total_points": total_points(items),
        "instructions": GENERAL_INSTRUCTIONS,
        "groups": group_items(items),
        "show_answer_key": show_answer_key,
        "warnings": (test.generation_metadata or {}).get("warnings", []),
    }
    if show_answer_key:
        preview["answer_key"] = sorted(test.answer_key or [], key=lambda k: k["item_number"])
    return preview


def build_print_view(test: GeneratedTest) -> Dict[str, Any]:
    """Printable content: same layout, answer key always suppressed."""
    view = build_preview(test, show_answer_key=False)
    view["warnings"] = []
    return view
