import re
import asyncio
import logging
from typing import List, Optional

import requests

import config

logger = logging.getLogger(__name__)

COACH_INSTRUCTIONS = (
    "You are a concise trivia coach. Provide the single most likely correct choice "
    "and a one-sentence reasoning. If unsure, give your best guess."
)


class AiHelpError(Exception):
    """Base error for the AI helper; carries the HTTP status to report."""
    status_code = 500


class AiConfigMissing(AiHelpError):
    status_code = 500


class BadAiRequest(AiHelpError):
    status_code = 400


class UpstreamAiFailure(AiHelpError):
    status_code = 502


def _sanitize_text(text: str) -> str:
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


def build_prompt(text: str, choices: List[str]) -> str:
    prompt = (
        "Here is a trivia question. Reply with the single most likely correct answer "
        f"and a one-sentence explanation.\n\nQuestion: {text}\nChoices:\n"
    )
    for idx, choice in enumerate(choices):
        prompt += f"- ({idx + 1}) {choice}\n"
    return prompt


class AiEngine:
    def _endpoint(self) -> str:
        return f"{config.GEMINI_BASE_URL}/{config.GEMINI_MODEL}:generateContent"

    def _call_gemini(self, prompt: str) -> Optional[str]:
        payload = {
            "contents": [
                {"role": "user", "parts": [{"text": COACH_INSTRUCTIONS}]},
                {"role": "user", "parts": [{"text": prompt}]},
            ],
            "generationConfig": {
                "temperature": config.AI_TEMPERATURE,
                "maxOutputTokens": config.AI_MAX_OUTPUT_TOKENS,
            },
        }
        headers = {"x-goog-api-key": config.GEMINI_API_KEY}
        try:
            response = requests.post(self._endpoint(), json=payload, headers=headers,
                                     timeout=config.AI_TIMEOUT)
        except requests.Timeout:
            logger.warning("Gemini timed out after %ds", config.AI_TIMEOUT)
            raise UpstreamAiFailure("Upstream AI request timed out")
        except requests.RequestException as e:
            logger.error("HTTP error calling Gemini: %s", e)
            raise UpstreamAiFailure("Upstream AI request failed")

        if not response.ok:
            logger.warning("Gemini returned %d: %s", response.status_code, response.text[:200])
            raise UpstreamAiFailure("Upstream AI request failed")

        try:
            result = response.json()
        except ValueError:
            logger.error("Gemini returned a non-JSON body")
            raise UpstreamAiFailure("Upstream AI returned an invalid response")

        try:
            text = result["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            logger.warning("Unexpected Gemini response structure: %s", e)
            return None
        return text.strip() if isinstance(text, str) else None

    async def ask(self, text: str, choices: Optional[List[str]] = None) -> Optional[str]:
        """Ask the model for the likely answer to a trivia question.

        The HTTP call runs in a worker thread so the game loop keeps ticking.
        """
        if not config.GEMINI_API_KEY:
            logger.error("Gemini API key not configured")
            raise AiConfigMissing("Gemini API key missing. Set GEMINI_API_KEY env var.")
        text = _sanitize_text(text or "")
        if not text:
            raise BadAiRequest("Missing question text")

        prompt = build_prompt(text, [_sanitize_text(str(c)) for c in choices or []])
        logger.info("AI help requested for: '%s'", text[:100])
        return await asyncio.to_thread(self._call_gemini, prompt)


ai_engine = AiEngine()
