"""
Module: connectors.content_generator

Listing copy generators. OpenAIContentGenerator asks a chat model for
rewritten titles/descriptions and A/B variants; TemplateContentGenerator
produces deterministic copy without any external call.
"""

import logging
from datetime import datetime

from openai import AsyncOpenAI

from models.content import ContentDraft, VariantBatch
from utils.openai_utils import completion_text, extract_json_object, safe_chat_completion

from .errors import ContentGenerationError

IMPROVE_INSTRUCTION = "improve"
REFRESH_INSTRUCTION = "refresh"

_INSTRUCTIONS = {
    IMPROVE_INSTRUCTION: (
        "The listing gets plenty of views but converts poorly. Make the value "
        "proposition concrete and the outcome measurable."
    ),
    REFRESH_INSTRUCTION: (
        "The listing is old. Update the copy so it reads as current, without "
        "changing what the product does."
    ),
}


def build_rewrite_prompt(title: str, description: str, instruction: str) -> str:
    goal = _INSTRUCTIONS.get(instruction, instruction)
    return "\n".join(
        [
            "You write marketplace listing copy.",
            f"Goal: {goal}",
            f'Current title: "{title}"',
            f'Current description: "{description}"',
            'Reply with JSON only: {"title": "<max 70 chars>", "description": "<max 150 chars>"}',
        ]
    )


def build_variants_prompt(topic: str, count: int) -> str:
    return "\n".join(
        [
            "You write marketplace listing copy for A/B tests.",
            f'Product: "{topic}"',
            f"Write {count} distinct titles (max 70 chars) and {count} matching descriptions (max 150 chars).",
            'Reply with JSON only: {"titles": ["..."], "descriptions": ["..."]}',
        ]
    )


class OpenAIContentGenerator:
    """Content generator backed by the OpenAI chat completions API."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        retry_attempts: int = 3,
        retry_backoff: float = 1.0,
    ):
        self.client = client or AsyncOpenAI()
        self.model = model
        self.temperature = temperature
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.logger = logging.getLogger(__name__)

    async def _ask_json(self, prompt: str) -> dict:
        completion = await safe_chat_completion(
            self.client,
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            logger=self.logger,
            retry_attempts=self.retry_attempts,
            retry_backoff=self.retry_backoff,
            temperature=self.temperature,
        )
        try:
            return extract_json_object(completion_text(completion))
        except ValueError as e:
            raise ContentGenerationError(str(e)) from e

    async def rewrite(
        self, title: str, description: str, instruction: str = IMPROVE_INSTRUCTION
    ) -> ContentDraft:
        payload = await self._ask_json(build_rewrite_prompt(title, description, instruction))
        try:
            return ContentDraft(
                title=str(payload.get("title", "")).strip(),
                description=str(payload.get("description", "")).strip(),
            )
        except ValueError as e:
            raise ContentGenerationError(f"Incomplete rewrite for '{title}': {e}") from e

    async def generate_variants(self, topic: str, count: int = 3) -> VariantBatch:
        payload = await self._ask_json(build_variants_prompt(topic, count))
        titles = [str(t).strip() for t in payload.get("titles", []) if str(t).strip()]
        descriptions = [str(d).strip() for d in payload.get("descriptions", []) if str(d).strip()]
        return VariantBatch(titles=titles[:count], descriptions=descriptions[:count])


class TemplateContentGenerator:
    """Deterministic copy generator used when no LLM is configured."""

    def __init__(self, year: int | None = None):
        self.year = year or datetime.now().year

    async def rewrite(
        self, title: str, description: str, instruction: str = IMPROVE_INSTRUCTION
    ) -> ContentDraft:
        if instruction == REFRESH_INSTRUCTION:
            return ContentDraft(
                title=f"{title} [{self.year} Edition]",
                description=f"{description} Updated for {self.year} with current techniques.",
            )
        return ContentDraft(
            title=f"{title} - Optimized",
            description=f"{description} This version delivers more precise, tailored results.",
        )

    async def generate_variants(self, topic: str, count: int = 3) -> VariantBatch:
        angles = ["Save hours with", "The complete", "Pro-grade", "Step-by-step", "Instant"]
        titles = [f"{angles[i % len(angles)]} {topic}" for i in range(count)]
        descriptions = [f"{topic}: variant {i + 1} focused on {angles[i % len(angles)].lower()} results." for i in range(count)]
        return VariantBatch(titles=titles, descriptions=descriptions)
