"""
Shared OpenAI GPT helper.

Used by:
  - analysis/classifier.py        (optional Bloom verifier, JSON object reply)
  - generation/question_author.py (drafting missing items, JSON array reply)

Model: gpt-4o-mini  (override with GPT_MODEL env var, e.g. "gpt-4o")
"""

import json
import re
from typing import Optional

from openai import AsyncOpenAI

from config import GPT_MODEL, OPENAI_API_KEY

EXAM_SETTER_SYSTEM = (
    "You write and review school exam questions. "
    "Reply with JSON only, exactly in the shape the user asks for."
)

# Lazy singleton
_client: Optional[AsyncOpenAI] = None


def ai_configured() -> bool:
    return bool(OPENAI_API_KEY)


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        if not ai_configured():
            raise RuntimeError("OPENAI_API_KEY is not set. Add it to your .env file.")
        _client = AsyncOpenAI(api_key=OPENAI_API_KEY, timeout=60.0)
    return _client


async def call_gpt(prompt: str, temperature: float = 0.4, max_tokens: int = 2048,
                   system: str = EXAM_SETTER_SYSTEM) -> str:
    """Single chat completion; returns the reply text ('' when the model sends none)."""
    completion = await _get_client().chat.completions.create(
        model=GPT_MODEL,
        temperature=temperature,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
    )
    return completion.choices[0].message.content or ""


# ─── Reply parsing ─────────────────────────────────────────────────────────────

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def _json_slice(raw: str, opener: str, closer: str):
    text = _FENCE.sub("", raw.strip())
    start, end = text.find(opener), text.rfind(closer)
    if start == -1 or end < start:
        raise ValueError(f"No JSON {'object' if opener == '{' else 'array'} in model reply")
    return json.loads(text[start:end + 1])


def extract_json_object(raw: str) -> dict:
    return _json_slice(raw, "{", "}")


def extract_json_array(raw: str) -> list:
    return _json_slice(raw, "[", "]")
