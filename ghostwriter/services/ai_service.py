"""
AI text service

Wraps the OpenAI chat completions API for the pipeline's prompts. Two call
shapes are offered: JSON-object completions (topic extraction, suggestion
generation, style analysis, trending digests) and plain text completions
(topic inference, voice descriptions).

Malformed JSON raises AIResponseError so each caller can fall back to its own
neutral default. Transport and API errors from the openai client propagate.
"""
import json
import logging
from typing import Dict, Any, Optional

from openai import OpenAI

from ghostwriter.core.config import get_settings
from ghostwriter.core.exceptions import AIResponseError
from ghostwriter.core.monitoring import pipeline_metrics

logger = logging.getLogger(__name__)


class AIService:
    """OpenAI chat completion wrapper used by every pipeline stage"""

    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None):
        settings = get_settings()
        self.model = model or settings.openai_model
        if client is None:
            if not settings.openai_api_key:
                logger.warning("OpenAI API key not configured - AI calls will fail")
            client = OpenAI(api_key=settings.openai_api_key or "missing", timeout=settings.openai_timeout)
        self.client = client

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 500,
        operation: str = "json_completion",
    ) -> Dict[str, Any]:
        """
        Run a JSON-object completion and return the parsed object.

        Raises:
            AIResponseError: empty content, invalid JSON, or a non-object payload
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except Exception:
            pipeline_metrics.record_ai_request(operation, "error")
            raise

        content = response.choices[0].message.content if response.choices else None
        if not content:
            pipeline_metrics.record_ai_request(operation, "malformed")
            raise AIResponseError(f"Empty response for {operation}")

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            pipeline_metrics.record_ai_request(operation, "malformed")
            raise AIResponseError(f"Invalid JSON for {operation}: {e}", raw_response=content) from e

        if not isinstance(parsed, dict):
            pipeline_metrics.record_ai_request(operation, "malformed")
            raise AIResponseError(f"Expected a JSON object for {operation}", raw_response=content)

        pipeline_metrics.record_ai_request(operation, "ok")
        return parsed

    def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 100,
        operation: str = "text_completion",
    ) -> str:
        """Run a plain text completion and return the stripped text"""
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except Exception:
            pipeline_metrics.record_ai_request(operation, "error")
            raise

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            pipeline_metrics.record_ai_request(operation, "malformed")
            raise AIResponseError(f"Empty response for {operation}")

        pipeline_metrics.record_ai_request(operation, "ok")
        return content.strip()


_ai_service: Optional[AIService] = None


def get_ai_service() -> AIService:
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service


def set_ai_service(service: Optional[AIService]):
    global _ai_service
    _ai_service = service
