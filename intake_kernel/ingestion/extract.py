"""Text extraction and summarization of fetched artifact content."""

import logging
import re
from typing import Optional, Tuple

from intake_kernel.llm.provider import LLMProvider, safe_generate_json

logger = logging.getLogger(__name__)

EXTRACT_TOO_SMALL = "EXTRACT_TOO_SMALL"
SUMMARY_INPUT_CHARS = 6000

_SCRIPT_STYLE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_BLOCK_BREAK = re.compile(r"<br\s*/?>|</(p|div|section|article|li|h[1-6])\s*>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_SPACES = re.compile(r"[ \t\f\v\r]+")
_NEWLINES = re.compile(r"\s*\n\s*")
_SENTENCE = re.compile(r"(?<=[.!?])\s+")

_ENTITIES = {
    "&nbsp;": " ",
    "&quot;": '"',
    "&#39;": "'",
    "&lt;": "<",
    "&gt;": ">",
    "&amp;": "&",   # last, so "&amp;lt;" decodes to "&lt;" and not "<"
}


def html_to_text(html: str) -> str:
    """Flatten HTML to plain text: drop scripts/styles/comments, keep block breaks."""
    text = _SCRIPT_STYLE.sub(" ", html or "")
    text = _COMMENT.sub(" ", text)
    text = _BLOCK_BREAK.sub("\n", text)
    text = _ANY_TAG.sub(" ", text)
    for entity, replacement in _ENTITIES.items():
        text = text.replace(entity, replacement)
    text = _SPACES.sub(" ", text)
    text = _NEWLINES.sub("\n", text)
    return text.strip()


def extract_text(body: str, content_type: Optional[str], min_chars: int) -> Tuple[str, Optional[str]]:
    """Returns (text, error_code). Plain text passes through with whitespace collapsed."""
    if content_type == "text/plain":
        text = _NEWLINES.sub("\n", _SPACES.sub(" ", body or "")).strip()
    else:
        text = html_to_text(body)
    if len(text) < min_chars:
        return text, EXTRACT_TOO_SMALL
    return text, None


def deterministic_summary(url: str, text: str, partial: bool) -> Tuple[str, float]:
    """First three sentences with a low-confidence framing."""
    flat = " ".join(text.split())
    sentences = [s for s in _SENTENCE.split(flat) if s.strip()][:3]
    lead = " ".join(sentences) if sentences else flat[:300]
    summary = f"Based on extracted website content from {url}, this appears to describe: {lead}"
    return summary, 0.55 if partial else 0.75


SUMMARY_SYSTEM_PROMPT = (
    "You summarize a business website for a product intake interview. "
    "Use only provided extracted text. Do not invent facts, features, or prices. "
    'Respond with a JSON object: {"summary": string (2-4 sentences), "confidence": number 0-1}.'
)


def summarize(
    llm: LLMProvider, url: str, text: str, partial: bool
) -> Tuple[str, float, str]:
    """Returns (summary, confidence, generated_by)."""
    payload = safe_generate_json(
        llm,
        "artifact summary",
        SUMMARY_SYSTEM_PROMPT,
        f"URL: {url}\n\nExtracted text:\n{text[:SUMMARY_INPUT_CHARS]}",
        temperature=0.1,
        max_tokens=300,
    )
    if payload:
        summary = str(payload.get("summary") or "").strip()
        try:
            confidence = float(payload.get("confidence", 0.6))
        except (TypeError, ValueError):
            confidence = 0.6
        if len(summary) >= 20:
            return summary, max(0.0, min(1.0, confidence)), "llm"
        logger.warning("LLM summary unusable for %s, using deterministic fallback", url)

    summary, confidence = deterministic_summary(url, text, partial)
    return summary, confidence, "deterministic"
