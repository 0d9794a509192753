"""
Tests for core/engine.py - verifies the SessionEngine lifecycle with
timers replaced by fakes that fire on demand. Only the slow-store test
uses real threads.
"""

import sys
import threading
import unittest
import logging
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from core.engine import SessionEngine
from tracking.session import FlowSession

logger = logging.getLogger(__name__)


class FakeTimer:
    """Stands in for RepeatingTimer; fire() runs the callback synchronously."""

    def __init__(self, interval, function, first_delay=None, name="timer"):
        self.interval = interval
        self.first_delay = interval if first_delay is None else first_delay
        self.function = function
        self.name = name
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True
        return self

    def cancel(self):
        self.cancelled = True

    def fire(self, times=1):
        # A cancelled timer never calls back again
        for _ in range(times):
            if self.cancelled:
                return
            self.function()


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def make_flow(duration_minutes=1, approved=("docs.google.com",)):
    return FlowSession(
        flow_id="flow-1",
        user_id="user-1",
        task_description="Draft the Q3 report",
        tools_description="Google Docs and Confluence",
        duration_minutes=duration_minutes,
        approved_websites=approved,
    )


class EngineTestCase(unittest.TestCase):
    """Builds an engine wired to fakes."""

    def setUp(self):
        self.timers = []
        self.clock = FakeClock(datetime(2024, 5, 1, 9, 0, 0))
        self.classifier = MagicMock()
        self.classifier.generate_focus_question.return_value = "How is the intro section coming along?"
        self.classifier.detect_distraction.return_value = {"is_distracted": False, "reason": ""}
        self.store = MagicMock()
        self.store.update_flow_status.return_value = {"success": True, "error": None, "error_type": None}

        def factory(interval, function, first_delay=None, name="timer"):
            timer = FakeTimer(interval, function, first_delay=first_delay, name=name)
            self.timers.append(timer)
            return timer

        self.engine = SessionEngine(
            classifier=self.classifier,
            store=self.store,
            timer_factory=factory,
            clock=self.clock,
        )

    def countdown(self):
        return [t for t in self.timers if t.name == "focusflow-countdown"][-1]

    def checkin_timer(self):
        return [t for t in self.timers if t.name == "focusflow-checkin"][-1]

    def run_seconds(self, seconds):
        timer = self.countdown()
        for _ in range(seconds):
            self.clock.advance(1)
            timer.fire()


class TestSessionEngineInit(EngineTestCase):
    """Test engine initialisation and default state."""

    def test_init_defaults(self):
        """Engine initialises idle with no callbacks."""
        self.assertEqual(self.engine.status, config.STATUS_IDLE)
        self.assertFalse(self.engine.is_running)
        self.assertIsNone(self.engine.flow)
        self.assertIsNone(self.engine.on_status_change)
        self.assertIsNone(self.engine.on_session_ended)
        self.assertIsNone(self.engine.on_error)

    def test_get_status_idle(self):
        status = self.engine.get_status()
        self.assertEqual(status["status"], "idle")
        self.assertEqual(status["time_remaining"], 0)
        self.assertIsNone(status["flow_id"])
        self.assertEqual(status["activity_count"], 0)


class TestSessionLifecycle(EngineTestCase):
    """Test start / pause / resume / end transitions."""

    def test_start_session(self):
        """Starting sets remaining time from the duration and schedules both timers."""
        flow = make_flow(duration_minutes=45)
        result = self.engine.start_session(flow)

        self.assertTrue(result["success"])
        self.assertEqual(self.engine.status, config.STATUS_RUNNING)
        self.assertEqual(self.engine.time_remaining, 2700)
        self.assertEqual(flow.start_time, self.clock.now)
        self.assertEqual(len(self.timers), 2)
        self.assertTrue(all(t.started for t in self.timers))

    def test_checkin_schedule(self):
        """First check-in after 45 seconds, then every 90."""
        self.engine.start_session(make_flow())
        timer = self.checkin_timer()
        self.assertEqual(timer.first_delay, 45)
        self.assertEqual(timer.interval, 90)
        self.assertEqual(self.countdown().interval, 1)

    def test_start_twice_rejected(self):
        self.engine.start_session(make_flow())
        result = self.engine.start_session(make_flow())
        self.assertFalse(result["success"])
        self.assertEqual(result["error_type"], "already_running")

    def test_tick_decrements(self):
        self.engine.start_session(make_flow(duration_minutes=2))
        self.run_seconds(5)
        self.assertEqual(self.engine.time_remaining, 115)

    def test_pause_freezes_countdown(self):
        """Ticks after pausing are discarded and remaining time is kept."""
        self.engine.start_session(make_flow(duration_minutes=2))
        self.run_seconds(10)
        old_countdown = self.countdown()

        result = self.engine.pause_session()

        self.assertTrue(result["success"])
        self.assertEqual(self.engine.status, config.STATUS_PAUSED)
        self.assertTrue(old_countdown.cancelled)
        self.assertTrue(self.checkin_timer().cancelled)
        # Even a callback that slips past cancellation is ignored
        old_countdown.function()
        self.assertEqual(self.engine.time_remaining, 110)

    def test_resume_restarts_timers(self):
        self.engine.start_session(make_flow(duration_minutes=2))
        self.run_seconds(10)
        self.engine.pause_session()

        result = self.engine.resume_session()

        self.assertTrue(result["success"])
        self.assertEqual(self.engine.status, config.STATUS_RUNNING)
        self.assertEqual(len(self.timers), 4)
        self.assertFalse(self.countdown().cancelled)
        self.run_seconds(1)
        self.assertEqual(self.engine.time_remaining, 109)

    def test_stale_tick_from_previous_run_ignored(self):
        """A tick captured before pause/resume doesn't count in the new run."""
        self.engine.start_session(make_flow(duration_minutes=2))
        first_countdown = self.countdown()
        self.engine.pause_session()
        self.engine.resume_session()

        first_countdown.function()

        self.assertEqual(self.engine.time_remaining, 120)

    def test_invalid_transitions(self):
        """Operations invalid for the current state are refused."""
        self.assertEqual(self.engine.pause_session()["error_type"], "invalid_state")
        self.assertEqual(self.engine.resume_session()["error_type"], "invalid_state")
        self.assertEqual(self.engine.end_session()["error_type"], "invalid_state")

        self.engine.start_session(make_flow())
        self.assertEqual(self.engine.resume_session()["error_type"], "invalid_state")
        self.assertEqual(self.engine.reset()["error_type"], "invalid_state")

    def test_natural_completion(self):
        """Unattended 1-minute session completes and persists status=completed."""
        flow = make_flow(duration_minutes=1)
        start = self.clock.now
        ended = []
        self.engine.on_session_ended = ended.append

        self.engine.start_session(flow)
        self.run_seconds(60)

        self.assertEqual(self.engine.status, config.STATUS_COMPLETED)
        self.assertEqual(self.engine.time_remaining, 0)
        self.store.update_flow_status.assert_called_once_with(
            "flow-1", "user-1", config.FLOW_STATUS_COMPLETED, start + timedelta(seconds=60)
        )
        self.assertEqual(flow.end_time, start + timedelta(seconds=60))
        self.assertEqual(len(ended), 1)
        self.assertEqual(ended[0]["total_checks"], 0)

    def test_completion_persists_before_local_transition(self):
        seen = []

        def record_status(*args):
            seen.append(self.engine.status)
            return {"success": True, "error": None, "error_type": None}

        self.store.update_flow_status.side_effect = record_status
        self.engine.start_session(make_flow(duration_minutes=1))
        self.run_seconds(60)

        self.assertEqual(seen, [config.STATUS_RUNNING])
        self.assertEqual(self.engine.status, config.STATUS_COMPLETED)

    def test_slow_store_write_does_not_block_status(self):
        """get_status answers while the closing write is still in flight."""
        write_started = threading.Event()
        release_write = threading.Event()

        def slow_update(*args):
            write_started.set()
            release_write.wait(5)
            return {"success": True, "error": None, "error_type": None}

        self.store.update_flow_status.side_effect = slow_update
        self.engine.start_session(make_flow(duration_minutes=1))
        self.run_seconds(59)

        closer = threading.Thread(target=self.countdown().fire, daemon=True)
        closer.start()
        self.assertTrue(write_started.wait(2))

        statuses = []
        poller = threading.Thread(target=lambda: statuses.append(self.engine.get_status()), daemon=True)
        poller.start()
        poller.join(1)
        blocked = poller.is_alive()

        release_write.set()
        closer.join(2)

        self.assertFalse(blocked)
        self.assertEqual(statuses[0]["time_remaining"], 0)
        self.assertEqual(self.engine.status, config.STATUS_COMPLETED)

    def test_no_transitions_while_closing(self):
        """Pause, resume and end are refused while the closing write runs."""
        during_write = []

        def update(*args):
            during_write.append((
                self.engine.pause_session()["error_type"],
                self.engine.end_session()["error_type"],
            ))
            return {"success": True, "error": None, "error_type": None}

        self.store.update_flow_status.side_effect = update
        self.engine.start_session(make_flow(duration_minutes=1))
        self.engine.end_session()

        self.assertEqual(during_write, [("invalid_state", "invalid_state")])
        self.assertEqual(self.store.update_flow_status.call_count, 1)
        self.assertEqual(self.engine.status, config.STATUS_COMPLETED)
        self.assertEqual(self.engine.persisted_status, config.FLOW_STATUS_ABANDONED)

    def test_ticks_after_completion_ignored(self):
        self.engine.start_session(make_flow(duration_minutes=1))
        countdown = self.countdown()
        self.run_seconds(60)

        countdown.function()

        self.assertEqual(self.engine.time_remaining, 0)
        self.assertEqual(self.store.update_flow_status.call_count, 1)

    def test_end_early_is_abandoned(self):
        self.engine.start_session(make_flow(duration_minutes=1))
        self.run_seconds(20)

        result = self.engine.end_session()

        self.assertTrue(result["success"])
        self.assertTrue(result["persisted"])
        self.assertEqual(result["status"], config.FLOW_STATUS_ABANDONED)
        self.assertEqual(self.engine.status, config.STATUS_COMPLETED)
        self.assertEqual(self.store.update_flow_status.call_args[0][2], config.FLOW_STATUS_ABANDONED)
        self.assertTrue(all(t.cancelled for t in self.timers))

    def test_end_from_paused(self):
        self.engine.start_session(make_flow(duration_minutes=1))
        self.engine.pause_session()
        result = self.engine.end_session()
        self.assertTrue(result["success"])
        self.assertEqual(self.engine.status, config.STATUS_COMPLETED)

    def test_end_store_failure_still_completes(self):
        """A failed closing write is reported but the session still completes locally."""
        self.store.update_flow_status.return_value = {
            "success": False, "error": "boom", "error_type": "unknown",
        }
        errors = []
        self.engine.on_error = lambda error_type, message: errors.append((error_type, message))

        self.engine.start_session(make_flow())
        result = self.engine.end_session()

        self.assertTrue(result["success"])
        self.assertFalse(result["persisted"])
        self.assertEqual(self.engine.status, config.STATUS_COMPLETED)
        self.assertEqual(errors, [("store_update_failed", "Session ended locally, but failed to update database.")])

    def test_end_store_exception_still_completes(self):
        self.store.update_flow_status.side_effect = RuntimeError("network down")
        self.engine.start_session(make_flow())
        result = self.engine.end_session()
        self.assertFalse(result["persisted"])
        self.assertEqual(self.engine.status, config.STATUS_COMPLETED)

    def test_reset_returns_to_idle(self):
        self.engine.start_session(make_flow())
        self.engine.end_session()

        result = self.engine.reset()

        self.assertTrue(result["success"])
        self.assertEqual(self.engine.status, config.STATUS_IDLE)
        self.assertIsNone(self.engine.flow)
        self.assertEqual(len(self.engine.activity_log), 0)
        # A fresh session can start again
        self.assertTrue(self.engine.start_session(make_flow())["success"])

    def test_status_callbacks(self):
        statuses = []
        self.engine.on_status_change = statuses.append
        self.engine.start_session(make_flow())
        self.engine.pause_session()
        self.engine.resume_session()
        self.engine.end_session()
        self.assertEqual(statuses, ["running", "paused", "running", "completed"])

    def test_callback_exception_swallowed(self):
        """A raising callback never breaks the engine."""
        self.engine.on_status_change = MagicMock(side_effect=RuntimeError("UI gone"))
        result = self.engine.start_session(make_flow())
        self.assertTrue(result["success"])
        self.assertEqual(self.engine.status, config.STATUS_RUNNING)

    def test_cleanup_cancels_timers(self):
        self.engine.start_session(make_flow())
        self.engine.cleanup()
        self.assertTrue(all(t.cancelled for t in self.timers))


class TestCheckins(EngineTestCase):
    """Test check-in prompts and answers."""

    def setUp(self):
        super().setUp()
        self.engine.start_session(make_flow(duration_minutes=10))

    def test_checkin_opens_prompt(self):
        prompts = []
        self.engine.on_checkin = prompts.append

        self.checkin_timer().fire()

        self.assertIsNotNone(self.engine.checkin)
        self.assertTrue(self.engine.checkin.open)
        self.assertEqual(prompts[0].question, "How is the intro section coming along?")
        self.classifier.generate_focus_question.assert_called_once_with("Draft the Q3 report")

    def test_checkin_fallback_question(self):
        self.classifier.generate_focus_question.side_effect = RuntimeError("gateway down")
        self.checkin_timer().fire()
        self.assertEqual(self.engine.checkin.question, "Are you staying on task?")

    def test_second_checkin_skipped_while_open(self):
        self.checkin_timer().fire()
        first = self.engine.checkin
        self.checkin_timer().fire()
        self.assertIs(self.engine.checkin, first)
        self.assertEqual(self.classifier.generate_focus_question.call_count, 1)

    def test_confirm_focus_logs_entry(self):
        self.checkin_timer().fire()

        result = self.engine.confirm_focus()

        self.assertTrue(result["success"])
        self.assertIsNone(self.engine.checkin)
        entry = self.engine.activity_log.entries[0]
        self.assertEqual(entry.activity, "Focus Confirmed")
        self.assertFalse(entry.is_distraction)
        self.assertEqual(entry.reason, "User confirmed they are on task during a check-in.")

    def test_report_distraction_logs_and_alerts(self):
        alerts = []
        self.engine.on_distraction_alert = alerts.append
        self.checkin_timer().fire()

        result = self.engine.report_distraction()

        self.assertTrue(result["success"])
        entry = self.engine.activity_log.entries[0]
        self.assertEqual(entry.activity, "Self-Reported Distraction")
        self.assertTrue(entry.is_distraction)
        self.assertEqual(alerts, ["You reported getting distracted."])
        self.assertEqual(self.engine.distraction_alert, "You reported getting distracted.")

        self.engine.dismiss_distraction_alert()
        self.assertIsNone(self.engine.distraction_alert)

    def test_answers_use_engine_clock(self):
        self.clock.advance(45)
        self.checkin_timer().fire()
        self.engine.confirm_focus()
        self.clock.advance(90)
        self.checkin_timer().fire()
        self.engine.report_distraction()

        start = datetime(2024, 5, 1, 9, 0, 0)
        stamps = [entry.timestamp for entry in self.engine.activity_log.entries]
        self.assertEqual(stamps, [start + timedelta(seconds=45), start + timedelta(seconds=135)])

    def test_answer_without_prompt_rejected(self):
        self.assertEqual(self.engine.confirm_focus()["error_type"], "no_checkin")
        self.assertEqual(self.engine.report_distraction()["error_type"], "no_checkin")
        self.assertEqual(len(self.engine.activity_log), 0)

    def test_question_discarded_if_paused_while_generating(self):
        """A question that arrives after the user paused is never shown."""
        prompts = []
        self.engine.on_checkin = prompts.append

        def pause_then_answer(task):
            self.engine.pause_session()
            return "Late question?"

        self.classifier.generate_focus_question.side_effect = pause_then_answer
        result = self.engine.trigger_checkin()

        self.assertIsNone(result)
        self.assertIsNone(self.engine.checkin)
        self.assertEqual(prompts, [])

    def test_question_discarded_after_pause_and_resume(self):
        """A reply from a previous running period is stale even if running again."""
        def pause_resume_then_answer(task):
            self.engine.pause_session()
            self.engine.resume_session()
            return "Late question?"

        self.classifier.generate_focus_question.side_effect = pause_resume_then_answer
        self.checkin_timer().fire()

        self.assertIsNone(self.engine.checkin)

    def test_completion_closes_open_prompt(self):
        self.checkin_timer().fire()
        prompt = self.engine.checkin
        self.engine.end_session()
        self.assertFalse(prompt.open)
        self.assertIsNone(self.engine.checkin)

    def test_report_reflects_answers(self):
        for answer in (self.engine.confirm_focus, self.engine.report_distraction, self.engine.confirm_focus):
            self.checkin_timer().fire()
            answer()

        result = self.engine.end_session()

        report = result["report"]
        self.assertEqual(report["total_checks"], 3)
        self.assertEqual(report["distraction_count"], 1)
        self.assertAlmostEqual(report["distraction_percentage"], 100 / 3)


class TestRecordActivity(EngineTestCase):
    """Test classification of observed activities."""

    def setUp(self):
        super().setUp()
        self.engine.start_session(make_flow(duration_minutes=10, approved=("docs.google.com", "github.com")))

    def test_approved_site_skips_classifier(self):
        result = self.engine.record_activity("https://github.com/org/repo/pull/1")

        self.assertTrue(result["success"])
        self.assertFalse(result["entry"].is_distraction)
        self.classifier.detect_distraction.assert_not_called()

    def test_unapproved_site_classified_as_distraction(self):
        self.classifier.detect_distraction.return_value = {
            "is_distracted": True, "reason": "YouTube is not related to the report.",
        }
        alerts = []
        self.engine.on_distraction_alert = alerts.append

        result = self.engine.record_activity("youtube.com")

        self.assertTrue(result["entry"].is_distraction)
        self.assertEqual(alerts, ["YouTube is not related to the report."])
        self.classifier.detect_distraction.assert_called_once_with(
            "youtube.com", ["docs.google.com", "github.com"], "Draft the Q3 report"
        )

    def test_lookalike_domain_not_approved(self):
        self.engine.record_activity("notgithub.com")
        self.classifier.detect_distraction.assert_called_once()

    def test_verdict_discarded_after_session_ended(self):
        def end_then_answer(*args):
            self.engine.end_session()
            return {"is_distracted": True, "reason": "Off task"}

        self.classifier.detect_distraction.side_effect = end_then_answer
        result = self.engine.record_activity("reddit.com")

        self.assertFalse(result["success"])
        self.assertEqual(len(self.engine.activity_log), 0)

    def test_rejected_when_idle(self):
        self.engine.end_session()
        self.engine.reset()
        result = self.engine.record_activity("reddit.com")
        self.assertEqual(result["error_type"], "invalid_state")


if __name__ == "__main__":
    unittest.main()
