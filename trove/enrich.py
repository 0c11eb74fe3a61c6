"""
trove/enrich.py — Tag, summary, embedding and image-analysis generation.

Every function takes the provider explicitly and degrades instead of
raising: a missing provider, a provider error or malformed model output
yields [] / None / an empty ImageAnalysis, logged at WARNING.

  generate_tags(provider, text, file_type)      -> list[str]   (3–7, lowercase)
  generate_summary(provider, text, file_type)   -> str | None
  generate_embedding(provider, text)            -> list[float] | None
  analyze_image(provider, image_bytes, mime)    -> ImageAnalysis
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from trove.models import normalize_tags
from trove.providers import EnrichmentProvider, ProviderError

logger = logging.getLogger(__name__)

MAX_TAGS = 7
PROMPT_MAX_CHARS = 4_000
EMBED_MAX_CHARS = 8_000

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_TAGS_PROMPT = """Analyze this {kind} content and generate relevant tags for a marketing asset library.

Rules:
- Generate 3-7 tags
- Tags should be lowercase, single words or short phrases
- Include: subject matter, style, mood, colors (if distinctive), use case
- Be specific: "woman running" not just "person"
- Think about what someone might search for

Content: {content}

Respond in JSON only:
{{ "tags": ["tag1", "tag2", ...] }}"""

_SUMMARY_PROMPT = """Write a 1-2 sentence summary of this marketing asset. Be specific and descriptive.

Content: {content}

Respond with just the summary, no JSON."""

_IMAGE_PROMPT = """Analyze this marketing asset image and provide:

1. A detailed description of what's in the image (2-4 sentences)
2. 3-7 relevant tags for a marketing asset library (lowercase, specific, searchable)
3. A 1-2 sentence TLDR summary suitable for quick browsing

Respond in this exact JSON format:
{
  "description": "...",
  "tags": ["tag1", "tag2", ...],
  "summary": "..."
}"""


@dataclass
class ImageAnalysis:
    description: str = ""
    tags:        list[str] = field(default_factory=list)
    summary:     str | None = None


def _kind(file_type: str) -> str:
    return "document" if file_type == "pdf" else "image"


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Pull the first {...} block out of model output. None if absent or invalid."""
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        return None
    try:
        value = json.loads(match.group(0))
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------

def generate_tags(
    provider: EnrichmentProvider,
    text: str,
    file_type: str,
    *,
    max_tags: int = MAX_TAGS,
    max_chars: int = PROMPT_MAX_CHARS,
) -> list[str]:
    if not provider.available:
        logger.warning("AI provider not configured, skipping tag generation")
        return []
    prompt = _TAGS_PROMPT.format(kind=_kind(file_type), content=text[:max_chars])
    try:
        reply = provider.chat(prompt, max_tokens=256)
    except ProviderError as e:
        logger.error("Tag generation failed: %s", e)
        return []
    parsed = parse_json_object(reply)
    if parsed is None:
        logger.warning("Tag generation returned no JSON object")
        return []
    return normalize_tags(parsed.get("tags"), limit=max_tags)


def generate_summary(
    provider: EnrichmentProvider,
    text: str,
    file_type: str,
    *,
    max_chars: int = PROMPT_MAX_CHARS,
) -> str | None:
    if not provider.available:
        logger.warning("AI provider not configured, skipping summary generation")
        return None
    prompt = _SUMMARY_PROMPT.format(content=text[:max_chars])
    try:
        reply = provider.chat(prompt, max_tokens=256)
    except ProviderError as e:
        logger.error("Summary generation failed: %s", e)
        return None
    return reply.strip() or None


def generate_embedding(
    provider: EnrichmentProvider,
    text: str,
    *,
    max_chars: int = EMBED_MAX_CHARS,
) -> list[float] | None:
    """Embed text truncated to max_chars. Blank input never reaches the provider."""
    if not text or not text.strip():
        return None
    if not provider.available:
        logger.warning("AI provider not configured, skipping embedding generation")
        return None
    try:
        vec = provider.embed(text[:max_chars])
    except ProviderError as e:
        logger.error("Embedding generation failed: %s", e)
        return None
    return vec or None


def analyze_image(
    provider: EnrichmentProvider,
    image_bytes: bytes,
    mime_type: str,
    *,
    max_tags: int = MAX_TAGS,
) -> ImageAnalysis:
    """Description, tags and summary from one vision pass."""
    if not provider.available:
        logger.warning("AI provider not configured, skipping image analysis")
        return ImageAnalysis()
    try:
        reply = provider.vision(_IMAGE_PROMPT, image_bytes, mime_type)
    except ProviderError as e:
        logger.error("Image analysis failed: %s", e)
        return ImageAnalysis()
    parsed = parse_json_object(reply)
    if parsed is None:
        logger.warning("Image analysis returned no JSON object")
        return ImageAnalysis()
    description = parsed.get("description")
    summary = parsed.get("summary")
    return ImageAnalysis(
        description = description.strip() if isinstance(description, str) else "",
        tags        = normalize_tags(parsed.get("tags"), limit=max_tags),
        summary     = (summary.strip() or None) if isinstance(summary, str) else None,
    )
