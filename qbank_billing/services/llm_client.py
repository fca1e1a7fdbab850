"""
Gemini client — the generation backend for question analyses.

Uses Google's generateContent REST API via httpx. Only called on a cache
miss (or to regenerate an analysis the user already owns), so every call
here is metered against someone's wallet or the house.

Configuration:
  GEMINI_API_KEY              — server-side only (never exposed to clients)
  GEMINI_BASE_URL             — defaults to the public v1beta endpoint
  GENERATION_TIMEOUT_SECONDS  — the caller blocks for the whole call

No retries: a partial retry against a metered API can bill twice, so
failures surface to the caller as GenerationBackendError.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from qbank_billing.core.config import Settings, settings
from qbank_billing.services.errors import GenerationBackendError
from qbank_billing.services.stores import AnalysisRequest, GenerationResult

logger = logging.getLogger(__name__)

# ── Prompt ──────────────────────────────────────────────────
PROMPT_TEMPLATE = """\
You are an expert medical professor at HKU (University of Hong Kong).
Analyze this medical finals question.

Question: "{question}"
{options_block}Official Answer: "{official_answer}"

Provide a response with this exact structure:
1. **Official Answer Analysis**: Agree or disagree with the official answer.
2. **Pathophysiology/Mechanism**: Explain your thought process into why the answer is correct or incorrect.
3. **Why others are wrong** (If MCQ): Brief dismissal of distractors.
4. **Clinical Pearl**: A high-yield fact or mnemonic.

Keep it concise, professional, and academic. Use bullet points and ordered lists to help with communication if needed.\
"""


def build_prompt(request: AnalysisRequest) -> str:
    """Render the analysis prompt. MCQ options are lettered A., B., …"""
    options_block = ""
    if request.question_type.upper() == "MCQ" and request.options:
        lettered = "\n".join(
            f"{chr(ord('A') + i)}. {option}" for i, option in enumerate(request.options)
        )
        options_block = f"Options: \n{lettered}\n"

    return PROMPT_TEMPLATE.format(
        question=request.question_text,
        options_block=options_block,
        official_answer=request.official_answer,
    )


class GeminiClient:
    """GenerationBackend backed by the Gemini REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 120.0,
        max_output_tokens: int = 8192,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_output_tokens = max_output_tokens
        self._transport = transport

    @classmethod
    def from_settings(cls, config: Settings = settings) -> GeminiClient:
        return cls(
            api_key=config.GEMINI_API_KEY,
            base_url=config.GEMINI_BASE_URL,
            timeout=config.GENERATION_TIMEOUT_SECONDS,
            max_output_tokens=config.GENERATION_MAX_OUTPUT_TOKENS,
        )

    async def generate(self, prompt: str, model_id: str) -> GenerationResult:
        """
        Generate an analysis for `prompt` with `model_id`.

        Returns:
            GenerationResult with the text and usage metadata token counts.

        Raises:
            GenerationBackendError: missing key, transport failure, non-200
                status, or a response without usable text.
        """
        if not self._api_key:
            logger.error("GEMINI_API_KEY is not configured")
            raise GenerationBackendError()

        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.2,
                "maxOutputTokens": self._max_output_tokens,
            },
        }
        headers = {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }
        url = f"{self._base_url}/models/{model_id}:generateContent"

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("Gemini request failed for model %s: %s", model_id, exc)
            raise GenerationBackendError() from exc

        if response.status_code != 200:
            logger.error(
                "Gemini API error: model=%s status=%d body=%s",
                model_id,
                response.status_code,
                response.text[:500],
            )
            raise GenerationBackendError()

        try:
            result = parse_generation(response.json())
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.error("Failed to parse Gemini response: %s", exc)
            raise GenerationBackendError("Could not parse AI analysis") from exc

        logger.info(
            "Generated analysis with %s (in=%d out=%d thinking=%d)",
            model_id,
            result.input_tokens,
            result.output_tokens,
            result.thinking_tokens,
        )
        return result


def parse_generation(data: dict[str, Any]) -> GenerationResult:
    """Extract answer text and token usage from a generateContent body."""
    parts = data["candidates"][0]["content"]["parts"]
    # Thought-summary parts are not part of the answer
    text = "".join(part.get("text", "") for part in parts if not part.get("thought"))
    if not text.strip():
        raise ValueError("Response contained no analysis text")

    usage = data.get("usageMetadata") or {}
    return GenerationResult(
        text=text,
        input_tokens=int(usage.get("promptTokenCount", 0)),
        output_tokens=int(usage.get("candidatesTokenCount", 0)),
        thinking_tokens=int(usage.get("thoughtsTokenCount", 0)),
    )
