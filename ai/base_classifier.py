"""Shared prompts, parsing and fallback behaviour for text classifiers."""

import json
import logging
import time
from typing import Protocol, Dict, Any, List, Optional, Sequence

import config
from tracking.domains import normalise_domains

logger = logging.getLogger(__name__)


# Fallbacks used whenever a provider call fails
FALLBACK_DISTRACTION_REASON = "Could not check activity due to an AI service error."

SYSTEM_PROMPT = (
    "You are an AI assistant that helps users stay focused on their tasks. "
    "Always respond with a single valid JSON object and nothing else."
)


def get_fallback_distraction() -> Dict[str, Any]:
    """Neutral distraction verdict used on errors (never flags the user)."""
    return {"is_distracted": False, "reason": FALLBACK_DISTRACTION_REASON}


def build_extract_websites_prompt(tools_description: str) -> str:
    return f"""You are an AI assistant that helps users configure their focus sessions. Your task is to extract a list of relevant website domains from a user's description of the tools they need.

From the user's description below, identify the key websites, services, or applications they will use. For each, provide the root domain and any common subdomains. For example, if they say "Google Docs and my company's GitHub", you should extract "docs.google.com", "google.com", and "github.com". If they mention a specific app like "VS Code", you don't need to add a website unless they specify using a web version.

User's Description of Tools: {tools_description}

Respond as JSON: {{"websites": ["domain1", "domain2"]}}"""


def build_detect_distraction_prompt(
    current_activity: str, approved_websites: Sequence[str], task_description: str
) -> str:
    approved = ", ".join(approved_websites) if approved_websites else "(none)"
    return f"""You will be given the user's current activity (application or website), a list of approved websites for the current task, and a description of the task.

Your job is to determine if the user is distracted from their task. If the user is on an unapproved website, or using an application unrelated to the task, set isDistracted to true and provide a reason for the distraction.

If the user is on an approved website or using an application related to the task, set isDistracted to false and the reason to "".

Current Task: {task_description}
Approved Websites: {approved}
Current Activity: {current_activity}

Respond as JSON: {{"isDistracted": true/false, "distractionReason": "..."}}"""


def build_focus_question_prompt(task_description: str) -> str:
    return f"""You are a friendly and encouraging productivity coach. Your goal is to help the user stay focused.

Based on the user's current task description, generate a single, short, and friendly question to check on their progress. The question should be specific to their task and sound encouraging.

Do not ask generic questions like "How is it going?". Instead, ask about a potential milestone or part of the task.

Example Task: 'Write a blog post about AI in marketing'
Good Question: 'Have you outlined the main points for your blog post yet?'

Example Task: 'Refactor the user authentication flow'
Good Question: 'How is the refactoring of the login component coming along?'

User's Task: {task_description}

Respond as JSON: {{"question": "..."}}"""


def extract_json_from_response(content: str) -> str:
    """
    Extract JSON from an API response that may contain markdown or extra text.

    Handles pure JSON, ```json fenced blocks, bare ``` fences and JSON
    embedded in surrounding prose.

    Raises:
        ValueError: If the content is empty
    """
    if not content or not content.strip():
        raise ValueError("Empty response content")

    content = content.strip()

    if '```json' in content:
        try:
            return content.split('```json')[1].split('```')[0].strip()
        except IndexError:
            pass

    if '```' in content:
        try:
            return content.split('```')[1].split('```')[0].strip()
        except IndexError:
            pass

    if '{' in content and '}' in content:
        start = content.index('{')
        depth = 0
        for i, char in enumerate(content[start:], start):
            if char == '{':
                depth += 1
            elif char == '}':
                depth -= 1
                if depth == 0:
                    return content[start:i + 1]

    return content


def parse_json_object(content: str) -> Dict[str, Any]:
    """Parse a provider response into a dict, rejecting non-object JSON."""
    result = json.loads(extract_json_from_response(content))
    if not isinstance(result, dict):
        raise ValueError(f"Expected a JSON object, got {type(result).__name__}")
    return result


def parse_websites_response(content: str) -> List[str]:
    """Parse {"websites": [...]} into a normalised, de-duplicated domain list."""
    result = parse_json_object(content)
    websites = result.get("websites", [])
    if not isinstance(websites, list):
        raise ValueError("'websites' must be a list")
    return normalise_domains(websites)


def parse_distraction_response(content: str) -> Dict[str, Any]:
    """Parse {"isDistracted", "distractionReason"} into the internal shape."""
    result = parse_json_object(content)
    is_distracted = result.get("isDistracted", result.get("is_distracted", False))
    if isinstance(is_distracted, str):
        is_distracted = is_distracted.strip().lower() == "true"
    reason = result.get("distractionReason", result.get("reason", "")) or ""
    return {"is_distracted": bool(is_distracted), "reason": str(reason)}


def parse_question_response(content: str) -> str:
    """Parse {"question": "..."}; raises ValueError when the question is blank."""
    result = parse_json_object(content)
    question = str(result.get("question", "") or "").strip()
    if not question:
        raise ValueError("Empty question in response")
    return question


def retry_with_backoff(
    func,
    max_retries: int = 2,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    backoff_factor: float = 2.0,
    retryable_exceptions: tuple = (Exception,)
):
    """
    Execute a function with exponential backoff retry on transient errors.

    Args:
        func: Callable to execute (no arguments)
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds between retries
        max_delay: Maximum delay in seconds
        backoff_factor: Multiplier for delay after each retry
        retryable_exceptions: Tuple of exception types to retry on

    Returns:
        Result from successful function call

    Raises:
        Last exception if all retries fail
    """
    last_exception = None
    delay = initial_delay

    for attempt in range(max_retries + 1):
        try:
            return func()
        except retryable_exceptions as e:
            last_exception = e
            if attempt < max_retries:
                logger.warning(
                    f"Retry {attempt + 1}/{max_retries} after error: {e}. "
                    f"Waiting {delay:.1f}s..."
                )
                time.sleep(delay)
                delay = min(delay * backoff_factor, max_delay)
            else:
                logger.error(f"All {max_retries} retries failed: {e}")

    raise last_exception


class TextClassifierProtocol(Protocol):
    """
    Interface shared by the OpenAI and Gemini classifiers.

    None of these methods raise: on any provider failure they log and
    return a neutral fallback.
    """

    def extract_websites(self, tools_description: str) -> List[str]:
        """Derive approved domains from a free-text tools description ([] on failure)."""
        ...

    def detect_distraction(
        self, current_activity: str, approved_websites: Sequence[str], task_description: str
    ) -> Dict[str, Any]:
        """Return {"is_distracted": bool, "reason": str}."""
        ...

    def generate_focus_question(self, task_description: str) -> str:
        """Return a short check-in question for the task."""
        ...


class BaseTextClassifier:
    """
    Fail-soft implementation of the three classification calls.

    Subclasses implement _complete(prompt) which returns the raw text of
    the model's reply and may raise on any provider error.
    """

    provider_name = "base"

    def _complete(self, prompt: str) -> str:
        raise NotImplementedError

    def is_available(self) -> bool:
        return False

    def extract_websites(self, tools_description: str) -> List[str]:
        if not self.is_available():
            logger.warning(f"{self.provider_name} classifier not configured - no websites extracted")
            return []
        try:
            websites = parse_websites_response(
                self._complete(build_extract_websites_prompt(tools_description))
            )
            logger.info(f"Extracted {len(websites)} website(s) from tools description")
            return websites
        except Exception as e:
            logger.error(f"Error extracting websites via {self.provider_name}: {e}")
            return []

    def detect_distraction(
        self, current_activity: str, approved_websites: Sequence[str], task_description: str
    ) -> Dict[str, Any]:
        if not self.is_available():
            return get_fallback_distraction()
        try:
            return parse_distraction_response(
                self._complete(build_detect_distraction_prompt(
                    current_activity, approved_websites, task_description
                ))
            )
        except Exception as e:
            logger.error(f"Error checking distraction via {self.provider_name}: {e}")
            return get_fallback_distraction()

    def generate_focus_question(self, task_description: str) -> str:
        if not self.is_available():
            return config.FALLBACK_CHECKIN_QUESTION
        try:
            return parse_question_response(
                self._complete(build_focus_question_prompt(task_description))
            )
        except Exception as e:
            logger.error(f"Error generating focus question via {self.provider_name}: {e}")
            return config.FALLBACK_CHECKIN_QUESTION
