"""
Question Authoring

Drafts new questions for TOS cells the bank cannot fill.
Two modes:
  - "ai"       → GPT drafts in the requested question type (JSON array)
  - "template" → Bloom-level essay prompts, used when AI is disabled, not
                 configured, or fails

Drafts are plain dicts that already passed QuestionCreate validation; the
test generator persists them as pending questions flagged for review.
"""

import logging
from typing import Any, Dict, List

from openai import OpenAIError
from pydantic import ValidationError

from config import AI_GENERATION_ENABLED
from database.models import BLOOM_TO_DIFFICULTY, ApprovalStatus, QuestionSource
from database.schemas import QuestionCreate
from generation.gpt_client import ai_configured, call_gpt, extract_json_array

log = logging.getLogger("generation.pipeline")


# ─── AI prompt ─────────────────────────────────────────────────────────────────

TYPE_INSTRUCTIONS = {
    "multiple_choice": (
        '"question_type": "multiple_choice", "choices": {{"A": "...", "B": "...", "C": "...", "D": "..."}}, '
        '"correct_answer": "<A|B|C|D>"'
    ),
    "true_false": '"question_type": "true_false", "correct_answer": <true|false>',
    "essay": '"question_type": "essay", "correct_answer": "<model answer or rubric>"',
    "fill_blank": '"question_type": "fill_blank", "correct_answer": "<the missing word or phrase>"',
    "matching": '"question_type": "matching", "choices": {{"<premise>": "<matching response>", ...}}',
}

AUTHOR_PROMPT = """You are an expert exam question setter.

Write exactly {count} NEW exam question(s) for the specification below.

SPECIFICATION:
- Topic: {topic}
- Bloom's Level: {bloom_level}
- Difficulty: {difficulty}
- Question type: {question_type}

Do NOT repeat or paraphrase these existing questions:
{avoid}

OUTPUT FORMAT — respond with ONLY a JSON array, no markdown, no explanation:
[
  {{"question_text": "<clear, self-contained question>", {type_fields}}},
  ...
]

RULES:
1. The question must demand the "{bloom_level}" cognitive level
2. Multiple choice: 4 plausible options, exactly ONE correct
3. Do NOT use "All of the above" or "None of the above"
4. Return ONLY the JSON array
"""


# ─── Templates ─────────────────────────────────────────────────────────────────

BLOOM_TEMPLATES: Dict[str, List[str]] = {
    "remember": [
        "Define the key terms associated with {topic}.",
        "List the main facts a student should recall about {topic}.",
        "Identify the basic components of {topic}.",
    ],
    "understand": [
        "Explain the main idea behind {topic} in your own words.",
        "Summarize the most important concepts of {topic}.",
        "Describe how the parts of {topic} relate to each other.",
    ],
    "apply": [
        "Apply the principles of {topic} to solve a practical problem of your choice.",
        "Demonstrate how {topic} is used in a real-world situation.",
        "Use what you know about {topic} to work through a concrete example.",
    ],
    "analyze": [
        "Analyze the relationship between the core elements of {topic}.",
        "Differentiate between two competing approaches within {topic}.",
        "Examine the underlying assumptions of {topic}.",
    ],
    "evaluate": [
        "Evaluate the strengths and weaknesses of a common approach to {topic}.",
        "Justify which method in {topic} is most appropriate for a given case.",
        "Critique a typical argument made about {topic}.",
    ],
    "create": [
        "Design a new solution or model that applies {topic}.",
        "Propose an original project that demonstrates mastery of {topic}.",
        "Develop a plan that uses {topic} to address a real problem.",
    ],
}


def template_drafts(topic: str, bloom_level: str, count: int, start_index: int = 0) -> List[Dict[str, Any]]:
    """Essay drafts from the Bloom templates; cycles with a part number once templates run out."""
    templates = BLOOM_TEMPLATES[bloom_level]
    drafts = []
    for i in range(start_index, start_index + count):
        text = templates[i % len(templates)].format(topic=topic)
        if i >= len(templates):
            text = f"{text} (Part {i // len(templates) + 1})"
        drafts.append(_draft({"question_text": text, "question_type": "essay"}, topic, bloom_level, QuestionSource.TEMPLATE))
    return drafts


def _draft(raw: Dict[str, Any], topic: str, bloom_level: str, source: QuestionSource) -> Dict[str, Any]:
    payload = dict(raw)
    payload.update({
        "topic": topic,
        "bloom_level": bloom_level,
        "difficulty": BLOOM_TO_DIFFICULTY[bloom_level],
        "created_by": source.value,
        "status": ApprovalStatus.PENDING.value,
    })
    return QuestionCreate(**payload).model_dump(mode="json")


async def ai_drafts(
    topic: str,
    bloom_level: str,
    count: int,
    question_type: str,
    avoid_texts: List[str],
) -> List[Dict[str, Any]]:
    """Ask GPT for count drafts; malformed drafts are dropped (and logged)."""
    avoid = "\n".join(f"- {t[:200]}" for t in avoid_texts[:10]) or "- (none)"
    prompt = AUTHOR_PROMPT.format(
        count=count,
        topic=topic,
        bloom_level=bloom_level,
        difficulty=BLOOM_TO_DIFFICULTY[bloom_level],
        question_type=question_type,
        avoid=avoid,
        type_fields=TYPE_INSTRUCTIONS[question_type].format(),
    )
    raw = await call_gpt(prompt, temperature=0.5, max_tokens=min(400 * count + 200, 4000))
    drafts = []
    for item in extract_json_array(raw)[:count]:
        if not isinstance(item, dict):
            continue
        item.setdefault("question_type", question_type)
        try:
            drafts.append(_draft(item, topic, bloom_level, QuestionSource.AI))
        except ValidationError as e:
            log.warning("Dropping malformed AI draft for %s/%s: %s", topic, bloom_level, e.errors()[:1])
    return drafts


async def author_questions(
    topic: str,
    bloom_level: str,
    count: int,
    question_type: str = "multiple_choice",
    avoid_texts: List[str] = (),
    template_offset: int = 0,
) -> List[Dict[str, Any]]:
    """
    Draft count questions for one TOS cell.
    AI first (when enabled and configured); whatever it cannot supply comes from templates.
    """
    if count <= 0:
        return []

    drafts: List[Dict[str, Any]] = []
    if AI_GENERATION_ENABLED and ai_configured():
        try:
            drafts = await ai_drafts(topic, bloom_level, count, question_type, list(avoid_texts))
        except (OpenAIError, RuntimeError, ValueError) as e:
            log.warning("AI authoring failed for %s/%s, falling back to templates: %s", topic, bloom_level, e)
            drafts = []

    if len(drafts) < count:
        missing = count - len(drafts)
        log.info("[AUTHOR] %s/%s: %d template draft(s)", topic, bloom_level, missing)
        drafts.extend(template_drafts(topic, bloom_level, missing, start_index=template_offset))
    return drafts
