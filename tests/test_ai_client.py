from __future__ import annotations

import unittest
from unittest.mock import patch

from workforce.services import ai_client
from workforce.services.ai_client import (
    ResumeParsed,
    ResumeParseFailed,
    generate_summary,
    interpret_resume_payload,
    parse_resume,
)
from workforce.settings import Settings

_ENABLED = Settings(ai_provider_url="https://ai.example.com/v1/tasks", ai_api_key="key", ai_timeout_seconds=3)


class InterpretResumePayloadTests(unittest.TestCase):
    def test_complete_payload_is_parsed(self) -> None:
        result = interpret_resume_payload(
            {
                "skills": ["Python", " SQL ", ""],
                "experience": {"years": 6, "description": "Backend teams"},
                "summary": "Senior engineer",
            }
        )

        self.assertIsInstance(result, ResumeParsed)
        self.assertEqual(result.skills, ["Python", "SQL"])
        self.assertEqual(result.experience_years, 6.0)
        self.assertEqual(result.summary, "Senior engineer")

    def test_missing_field_is_a_failure_not_an_empty_value(self) -> None:
        result = interpret_resume_payload({"experience": {"years": 2}, "summary": "x"})
        self.assertEqual(result, ResumeParseFailed(reason="MISSING_FIELD:skills"))

        result = interpret_resume_payload({"skills": [], "experience": {}, "summary": "x"})
        self.assertEqual(result, ResumeParseFailed(reason="MISSING_FIELD:experience.years"))

    def test_wrongly_typed_field_is_rejected(self) -> None:
        result = interpret_resume_payload({"skills": "python", "experience": {"years": 1}, "summary": ""})
        self.assertEqual(result, ResumeParseFailed(reason="INVALID_FIELD:skills"))


class AiClientCallTests(unittest.TestCase):
    def test_unconfigured_provider_short_circuits(self) -> None:
        with patch("workforce.settings.get_settings", return_value=Settings(ai_provider_url=None, ai_api_key=None)):
            self.assertEqual(parse_resume("cv text"), ResumeParseFailed(reason="AI_NOT_CONFIGURED"))
            self.assertIsNone(generate_summary("prompt"))

    def test_provider_failure_becomes_tagged_failure(self) -> None:
        with patch("workforce.settings.get_settings", return_value=_ENABLED), patch.object(
            ai_client, "_post_json", side_effect=ai_client._ProviderError("UNREACHABLE")
        ):
            self.assertEqual(parse_resume("cv text"), ResumeParseFailed(reason="PROVIDER_UNREACHABLE"))
            self.assertIsNone(generate_summary("prompt"))

    def test_provider_payload_is_interpreted(self) -> None:
        payload = {"skills": ["Go"], "experience": {"years": 1.5}, "summary": "Junior"}
        with patch("workforce.settings.get_settings", return_value=_ENABLED), patch.object(
            ai_client, "_post_json", return_value=payload
        ) as post:
            result = parse_resume("  cv text  ")

        self.assertEqual(result.skills, ["Go"])
        post.assert_called_once_with(task="parse_resume", payload={"text": "cv text"})

    def test_timeout_is_passed_to_transport(self) -> None:
        with patch("workforce.services.ai_client.get_settings", return_value=_ENABLED), patch(
            "workforce.services.ai_client.urllib_request.urlopen", side_effect=TimeoutError("slow")
        ) as urlopen:
            with self.assertRaises(ai_client._ProviderError):
                ai_client._post_json(task="summarize", payload={"text": "x"})

        self.assertEqual(urlopen.call_args.kwargs["timeout"], 3)

    def test_summary_text_is_returned(self) -> None:
        with patch("workforce.settings.get_settings", return_value=_ENABLED), patch.object(
            ai_client, "_post_json", return_value={"text": "  Short summary. "}
        ):
            self.assertEqual(generate_summary("prompt"), "Short summary.")


if __name__ == "__main__":
    unittest.main()
