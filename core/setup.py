"""
Session setup: validate a task, derive its approved websites and create
the flow record the engine runs against.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import config
from sync.errors import StoreError, StoreErrorKind
from tracking.presets import PresetHistory, TaskPreset
from tracking.session import FlowSession

logger = logging.getLogger(__name__)


def _parse_duration(value: Any) -> Optional[int]:
    """Whole minutes from an int or numeric string, None if not an integer."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def validate_task_details(description: str, tools_description: str, duration: Any) -> Dict[str, str]:
    """
    Check the setup form fields.

    Returns:
        Mapping of field name ("description", "tools", "duration") to an
        error message. Empty when everything is valid.
    """
    errors: Dict[str, str] = {}

    if len((description or "").strip()) < config.MIN_DESCRIPTION_LENGTH:
        errors["description"] = "Please provide a more detailed task description."
    if len((tools_description or "").strip()) < config.MIN_DESCRIPTION_LENGTH:
        errors["tools"] = "Please describe the tools and websites you need."

    minutes = _parse_duration(duration)
    if minutes is None:
        errors["duration"] = "Please enter the task duration in minutes."
    elif minutes < config.MIN_DURATION_MINUTES:
        errors["duration"] = "Task must be at least 1 minute long."
    elif minutes > config.MAX_DURATION_MINUTES:
        errors["duration"] = f"Task cannot exceed {config.MAX_DURATION_MINUTES} minutes."

    return errors


class FlowSetup:
    """
    Turns the setup form into a running-ready FlowSession.

    Steps: validation, allow-list extraction, flow insert (retried only on
    transient store errors), preset history update.
    """

    def __init__(
        self,
        classifier,
        store,
        presets: Optional[PresetHistory] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.classifier = classifier
        self.store = store
        self.presets = presets
        self._sleep = sleep
        self._now = clock

    @staticmethod
    def _failure(error: str, error_type: str, field_errors: Optional[Dict[str, str]] = None) -> Dict:
        return {
            "success": False,
            "flow": None,
            "error": error,
            "error_type": error_type,
            "field_errors": field_errors or {},
        }

    def start_flow(self, description: str, tools_description: str, duration: Any) -> Dict:
        """
        Validate the task and create its flow record.

        Args:
            description: What the user is going to work on
            tools_description: Free text naming the tools/websites needed
            duration: Planned length in minutes (int or numeric string)

        Returns:
            {"success": bool, "flow": FlowSession | None, "error": str | None,
             "error_type": str | None, "field_errors": dict}
        """
        field_errors = validate_task_details(description, tools_description, duration)
        if field_errors:
            first = next(iter(field_errors.values()))
            return self._failure(first, "validation", field_errors)

        description = description.strip()
        tools_description = tools_description.strip()
        minutes = _parse_duration(duration)

        approved = self.classifier.extract_websites(tools_description)
        if not approved:
            logger.info("No websites extracted from tools description")
            return self._failure(
                "No websites found. Please describe the tools and websites you need more specifically.",
                "no_websites",
            )

        user = self.store.get_current_user()
        if not user:
            return self._failure("Please sign in to start a focus session.", StoreErrorKind.AUTH_REQUIRED)

        start_time = self._now()
        end_time = start_time + timedelta(minutes=minutes)

        try:
            row = self._insert_with_retry(user["id"], description, approved, start_time, end_time)
        except StoreError as e:
            # Exhausted retries carry their own message
            message = e.message if e.is_transient else e.user_message
            return self._failure(message, e.kind)

        flow_id = row.get("id")
        if not flow_id:
            logger.error("Flow insert succeeded but returned no id")
            return self._failure("Failed to get flow ID from database.", "missing_flow_id")

        flow = FlowSession(
            flow_id=str(flow_id),
            user_id=user["id"],
            task_description=description,
            tools_description=tools_description,
            duration_minutes=minutes,
            approved_websites=approved,
            start_time=start_time,
        )
        logger.info(f"Flow {flow.flow_id} created with {len(approved)} approved website(s)")

        if self.presets is not None:
            try:
                self.presets.add(TaskPreset(description, tools_description, minutes))
            except OSError as e:
                logger.warning(f"Could not save task preset: {e}")

        return {"success": True, "flow": flow, "error": None, "error_type": None, "field_errors": {}}

    def _insert_with_retry(self, user_id, description, approved, start_time, end_time) -> Dict[str, Any]:
        """
        Insert the flow row, retrying transient failures with linear backoff.

        Raises:
            StoreError: non-transient failure, or transient failure on the last attempt
        """
        max_attempts = config.FLOW_INSERT_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            try:
                return self.store.create_flow(
                    user_id,
                    description,
                    approved,
                    start_time,
                    end_time,
                    config.FLOW_STATUS_ACTIVE,
                )
            except StoreError as e:
                if not e.is_transient:
                    logger.error(f"Flow insert failed ({e.kind}): {e.message}")
                    raise
                if attempt == max_attempts:
                    logger.error(f"Flow insert failed after {max_attempts} attempts: {e.message}")
                    raise StoreError(
                        e.kind,
                        f"Failed to start session after {max_attempts} attempts. {e.user_message}",
                        e.code,
                    ) from e
                delay = attempt * config.FLOW_INSERT_BACKOFF_SECONDS
                logger.warning(
                    f"Transient error on flow insert (attempt {attempt}/{max_attempts}), "
                    f"retrying in {delay:.0f}s: {e.message}"
                )
                self._sleep(delay)
        # Unreachable: the loop either returns or raises
        raise StoreError(StoreErrorKind.UNKNOWN, "Flow insert failed")
