# hirehub/services/scorers/gemini_adapter.py
"""Google Gemini scorer (google-genai SDK, optional `gemini` extra)."""

import logging
from typing import Optional

from hirehub.core.errors import InvalidScoringResponseError

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are an expert ATS resume reviewer. Return ONLY a JSON object, "
    "no markdown and no explanation."
)


class GeminiScorer:
    name = "gemini"

    def __init__(self, api_key: Optional[str], timeout: float = 60.0):
        if not api_key:
            raise ValueError("GEMINI_API_KEY is required for the gemini scorer")
        try:
            from google import genai
            from google.genai import types as genai_types
        except ImportError:
            raise ImportError(
                "google-genai is required for the gemini scorer. Install with: pip install 'hirehub[gemini]'"
            ) from None
        self._types = genai_types
        self._client = genai.Client(
            api_key=api_key,
            http_options=genai_types.HttpOptions(timeout=int(timeout * 1000)),
        )

    async def score(self, prompt: str, model: str) -> str:
        logger.info("Sending grading prompt to Gemini (%s)", model)
        response = await self._client.aio.models.generate_content(
            model=model,
            contents=prompt,
            config=self._types.GenerateContentConfig(
                system_instruction=SYSTEM_INSTRUCTION,
                response_mime_type="application/json",
            ),
        )
        if not response.text:
            raise InvalidScoringResponseError(f"Empty response from {model}")
        return response.text


def build(settings=None, **kwargs) -> GeminiScorer:
    if settings is not None:
        kwargs.setdefault("api_key", settings.GEMINI_API_KEY or settings.SCORER_API_KEY)
        kwargs.setdefault("timeout", settings.SCORER_TIMEOUT_SEC)
    return GeminiScorer(**kwargs)
