"""
Tests for the text classifiers - response parsing and fail-soft fallbacks.

Provider clients are mocked; no network calls are made.
"""

import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from ai.base_classifier import (
    extract_json_from_response,
    parse_distraction_response,
    parse_question_response,
    parse_websites_response,
)
from ai.gemini_classifier import GeminiClassifier
from ai.openai_classifier import OpenAIClassifier


def openai_reply(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


class TestResponseParsing(unittest.TestCase):

    def test_extract_json_from_fenced_block(self):
        content = 'Sure!\n```json\n{"question": "Done with the intro?"}\n```'
        self.assertEqual(extract_json_from_response(content), '{"question": "Done with the intro?"}')

    def test_extract_json_from_prose(self):
        content = 'Here you go: {"websites": ["github.com"]} hope that helps'
        self.assertEqual(extract_json_from_response(content), '{"websites": ["github.com"]}')

    def test_websites_normalised(self):
        content = '{"websites": ["https://docs.google.com/", "google.com", "Google.com", "VS Code"]}'
        self.assertEqual(parse_websites_response(content), ["docs.google.com", "google.com"])

    def test_websites_must_be_list(self):
        with self.assertRaises(ValueError):
            parse_websites_response('{"websites": "github.com"}')

    def test_distraction_camel_case(self):
        result = parse_distraction_response('{"isDistracted": true, "distractionReason": "Social media"}')
        self.assertEqual(result, {"is_distracted": True, "reason": "Social media"})

    def test_distraction_string_boolean(self):
        result = parse_distraction_response('{"isDistracted": "false", "distractionReason": ""}')
        self.assertFalse(result["is_distracted"])

    def test_blank_question_rejected(self):
        with self.assertRaises(ValueError):
            parse_question_response('{"question": "  "}')


class TestOpenAIClassifier(unittest.TestCase):

    def setUp(self):
        self.client = MagicMock()
        self.classifier = OpenAIClassifier(api_key="sk-test", client=self.client)

    def test_extract_websites(self):
        self.client.chat.completions.create.return_value = openai_reply(
            '{"websites": ["docs.google.com", "google.com", "confluence.com"]}'
        )

        websites = self.classifier.extract_websites("Google Docs and Confluence")

        self.assertEqual(websites, ["docs.google.com", "google.com", "confluence.com"])
        kwargs = self.client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], config.OPENAI_MODEL)
        self.assertEqual(kwargs["response_format"], {"type": "json_object"})
        self.assertIn("Google Docs and Confluence", kwargs["messages"][1]["content"])

    def test_detect_distraction(self):
        self.client.chat.completions.create.return_value = openai_reply(
            '{"isDistracted": true, "distractionReason": "YouTube is unrelated"}'
        )
        result = self.classifier.detect_distraction("youtube.com", ["github.com"], "Fix the login bug")
        self.assertEqual(result, {"is_distracted": True, "reason": "YouTube is unrelated"})

    def test_generate_focus_question(self):
        self.client.chat.completions.create.return_value = openai_reply(
            '{"question": "Have you reproduced the login bug yet?"}'
        )
        self.assertEqual(
            self.classifier.generate_focus_question("Fix the login bug"),
            "Have you reproduced the login bug yet?",
        )

    def test_failures_fall_back(self):
        """Any provider error yields the neutral fallback value."""
        self.client.chat.completions.create.side_effect = RuntimeError("boom")

        self.assertEqual(self.classifier.extract_websites("Google Docs"), [])
        self.assertEqual(
            self.classifier.detect_distraction("youtube.com", [], "task"),
            {"is_distracted": False, "reason": "Could not check activity due to an AI service error."},
        )
        self.assertEqual(self.classifier.generate_focus_question("task"), "Are you staying on task?")

    def test_malformed_json_falls_back(self):
        self.client.chat.completions.create.return_value = openai_reply("not json at all")
        self.assertEqual(self.classifier.extract_websites("Google Docs"), [])

    def test_empty_content_falls_back(self):
        self.client.chat.completions.create.return_value = openai_reply("")
        self.assertEqual(self.classifier.generate_focus_question("task"), "Are you staying on task?")

    @patch("ai.openai_classifier.config")
    def test_without_api_key(self, mock_config):
        mock_config.OPENAI_API_KEY = ""
        mock_config.OPENAI_MODEL = "gpt-4o-mini"
        mock_config.FALLBACK_CHECKIN_QUESTION = "Are you staying on task?"

        classifier = OpenAIClassifier()

        self.assertFalse(classifier.is_available())
        self.assertEqual(classifier.extract_websites("GitHub and Jira"), [])


class TestGeminiClassifier(unittest.TestCase):

    def setUp(self):
        self.model = MagicMock()
        self.classifier = GeminiClassifier(api_key="AItest", model=self.model)

    def _reply(self, text):
        response = MagicMock()
        response.text = text
        response.prompt_feedback = None
        response.candidates = []
        return response

    def test_extract_websites(self):
        self.model.generate_content.return_value = self._reply('{"websites": ["notion.so"]}')
        self.assertEqual(self.classifier.extract_websites("My Notion workspace"), ["notion.so"])

    def test_safety_block_falls_back(self):
        response = self._reply('{"question": "ignored"}')
        response.prompt_feedback = MagicMock(block_reason="SAFETY")
        self.model.generate_content.return_value = response

        self.assertEqual(self.classifier.generate_focus_question("task"), config.FALLBACK_CHECKIN_QUESTION)


class TestClassifierFactory(unittest.TestCase):

    @patch("ai.config")
    def test_gemini_selected(self, mock_config):
        mock_config.CLASSIFIER_PROVIDER = "gemini"
        with patch("ai.gemini_classifier.GeminiClassifier") as mock_cls:
            from ai import create_classifier
            create_classifier()
            mock_cls.assert_called_once()

    @patch("ai.config")
    def test_unknown_provider_defaults_to_openai(self, mock_config):
        mock_config.CLASSIFIER_PROVIDER = "llama"
        with patch("ai.openai_classifier.OpenAIClassifier") as mock_cls:
            from ai import create_classifier
            create_classifier()
            mock_cls.assert_called_once()


if __name__ == "__main__":
    unittest.main()
