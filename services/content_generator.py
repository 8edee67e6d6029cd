"""AI content generation collaborator (fit analysis, optimized CV and cover letter)."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from config import settings

logger = logging.getLogger(__name__)


class ContentGenerationError(RuntimeError):
    """Raised when the provider fails or returns unusable output."""


class ContentGeneratorUnavailableError(RuntimeError):
    """Raised when no AI provider is configured."""


class ContentGenerator(ABC):
    provider_name: str

    @abstractmethod
    async def generate_fit_analysis(self, resume_text: str, job_text: str) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    async def generate_optimized_content(
        self,
        resume_text: str,
        job_text: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        raise NotImplementedError


def get_openai_client(api_key: str) -> Optional[AsyncOpenAI]:
    """Get OpenAI client, handling placeholders."""
    if not api_key or "your_" in api_key or api_key == "test-key":
        return None
    return AsyncOpenAI(api_key=api_key)


def _fit_analysis_prompt(resume_text: str, job_text: str) -> str:
    return (
        "You are a recruiter assessing how well a candidate fits a job.\n"
        "Return JSON with keys: fit_score (0-100 integer), summary (string), "
        "matched_skills (list of strings), missing_skills (list of strings), "
        "interview_questions (list of 5 strings).\n\n"
        f"JOB DESCRIPTION:\n{job_text}\n\nRESUME:\n{resume_text}"
    )


def _optimized_content_prompt(resume_text: str, job_text: str, context: Dict[str, Any]) -> str:
    return (
        "Rewrite the candidate's CV for the job below and draft a cover letter.\n"
        "Keep every claim truthful to the original resume.\n"
        "Return JSON with keys: cv (string, markdown), cover_letter (string).\n\n"
        f"CONTEXT:\n{json.dumps(context, default=str)}\n\n"
        f"JOB DESCRIPTION:\n{job_text}\n\nRESUME:\n{resume_text}"
    )


class OpenAIContentGenerator(ContentGenerator):
    provider_name = "openai"

    def __init__(self, client: AsyncOpenAI, *, model: str, max_tokens: int) -> None:
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    async def _complete_json(self, prompt: str) -> Dict[str, Any]:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
                max_tokens=self.max_tokens,
            )
        except Exception as exc:
            logger.warning("openai_generation_failed model=%s error=%s", self.model, exc)
            raise ContentGenerationError(f"openai_error: {exc}") from exc

        raw_content = response.choices[0].message.content if response.choices else None
        try:
            parsed = json.loads(raw_content or "")
        except json.JSONDecodeError as exc:
            raise ContentGenerationError("AI provider returned malformed JSON") from exc
        if not isinstance(parsed, dict):
            raise ContentGenerationError("AI provider returned a non-object payload")
        return parsed

    async def generate_fit_analysis(self, resume_text: str, job_text: str) -> Dict[str, Any]:
        parsed = await self._complete_json(_fit_analysis_prompt(resume_text, job_text))
        try:
            fit_score = max(0, min(100, int(parsed.get("fit_score", 0))))
        except (TypeError, ValueError) as exc:
            raise ContentGenerationError("AI provider returned a non-numeric fit_score") from exc
        return {
            "fit_score": fit_score,
            "summary": str(parsed.get("summary") or ""),
            "matched_skills": [str(item) for item in parsed.get("matched_skills") or []],
            "missing_skills": [str(item) for item in parsed.get("missing_skills") or []],
            "interview_questions": [str(item) for item in parsed.get("interview_questions") or []],
        }

    async def generate_optimized_content(
        self,
        resume_text: str,
        job_text: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        parsed = await self._complete_json(_optimized_content_prompt(resume_text, job_text, context or {}))
        cv = str(parsed.get("cv") or "").strip()
        cover_letter = str(parsed.get("cover_letter") or "").strip()
        if not cv:
            raise ContentGenerationError("AI provider returned an empty CV")
        return {"cv": cv, "cover_letter": cover_letter}


def get_content_generator() -> ContentGenerator:
    """FastAPI dependency returning the configured content generator."""
    client = get_openai_client(settings.OPENAI_API_KEY)
    if client is None:
        raise ContentGeneratorUnavailableError("AI content generation is not configured.")
    return OpenAIContentGenerator(client, model=settings.OPENAI_MODEL, max_tokens=settings.OPENAI_MAX_TOKENS)
