"""Calls to the external AI provider.

Every call is bounded by ``ai_timeout_seconds`` and never raises to the
caller: failures come back as ``ResumeParseFailed`` or ``None``. These calls
must not be made while a store transaction is held open.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Union
from urllib import error as urllib_error
from urllib import request as urllib_request

from workforce.settings import get_settings, is_ai_enabled

logger = logging.getLogger("workforce.ai")

MAX_RESUME_CHARS = 5000
_RESPONSE_LIMIT_BYTES = 256 * 1024


@dataclass(frozen=True)
class ResumeParsed:
    skills: list[str]
    experience_years: float
    experience_summary: str
    summary: str


@dataclass(frozen=True)
class ResumeParseFailed:
    reason: str


ResumeParseResult = Union[ResumeParsed, ResumeParseFailed]


class _ProviderError(Exception):
    pass


def _post_json(*, task: str, payload: dict[str, Any]) -> dict[str, Any]:
    settings = get_settings()
    body = json.dumps({"task": task, "input": payload}).encode("utf-8")
    request = urllib_request.Request(
        url=str(settings.ai_provider_url).strip(),
        data=body,
        method="POST",
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {str(settings.ai_api_key).strip()}",
        },
    )
    try:
        with urllib_request.urlopen(request, timeout=max(1, settings.ai_timeout_seconds)) as response:
            raw = response.read(_RESPONSE_LIMIT_BYTES).decode("utf-8", errors="replace")
    except urllib_error.HTTPError as exc:
        raise _ProviderError(f"HTTP_{exc.code}") from exc
    except (urllib_error.URLError, TimeoutError, OSError) as exc:
        raise _ProviderError("UNREACHABLE") from exc

    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise _ProviderError("INVALID_JSON") from exc
    if not isinstance(decoded, dict):
        raise _ProviderError("INVALID_PAYLOAD")
    return decoded


def interpret_resume_payload(payload: dict[str, Any]) -> ResumeParseResult:
    """Validate a provider payload field by field; a missing field is a failure, never an empty value."""
    for name in ("skills", "experience", "summary"):
        if name not in payload:
            return ResumeParseFailed(reason=f"MISSING_FIELD:{name}")

    skills = payload["skills"]
    if not isinstance(skills, list) or not all(isinstance(item, str) for item in skills):
        return ResumeParseFailed(reason="INVALID_FIELD:skills")

    experience = payload["experience"]
    if not isinstance(experience, dict):
        return ResumeParseFailed(reason="INVALID_FIELD:experience")
    if "years" not in experience:
        return ResumeParseFailed(reason="MISSING_FIELD:experience.years")
    years = experience["years"]
    if isinstance(years, bool) or not isinstance(years, (int, float)) or years < 0:
        return ResumeParseFailed(reason="INVALID_FIELD:experience.years")
    description = experience.get("description", "")
    if not isinstance(description, str):
        return ResumeParseFailed(reason="INVALID_FIELD:experience.description")

    summary = payload["summary"]
    if not isinstance(summary, str):
        return ResumeParseFailed(reason="INVALID_FIELD:summary")

    return ResumeParsed(
        skills=[item.strip() for item in skills if item.strip()],
        experience_years=float(years),
        experience_summary=description,
        summary=summary,
    )


def parse_resume(resume_text: str) -> ResumeParseResult:
    if not is_ai_enabled():
        return ResumeParseFailed(reason="AI_NOT_CONFIGURED")
    text = (resume_text or "").strip()
    if not text:
        return ResumeParseFailed(reason="EMPTY_INPUT")

    try:
        payload = _post_json(task="parse_resume", payload={"text": text[:MAX_RESUME_CHARS]})
    except _ProviderError as exc:
        logger.warning("ai_resume_parse_failed", extra={"reason": str(exc)})
        return ResumeParseFailed(reason=f"PROVIDER_{exc}")
    return interpret_resume_payload(payload)


def generate_summary(prompt: str) -> str | None:
    if not is_ai_enabled():
        return None
    try:
        payload = _post_json(task="summarize", payload={"text": prompt})
    except _ProviderError as exc:
        logger.warning("ai_summary_failed", extra={"reason": str(exc)})
        return None
    text = payload.get("text")
    if not isinstance(text, str) or not text.strip():
        return None
    return text.strip()
