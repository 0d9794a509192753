"""
SessionEngine - focus session lifecycle for FocusFlow.

Owns the idle/running/paused/completed state machine of one flow: the
countdown, periodic check-ins, the activity log, and the closing status
write to the record store.

This module has ZERO UI dependencies. The terminal front end (or any
future UI) calls engine methods and receives updates via callbacks.

Callbacks:
    on_status_change(status: str)
    on_tick(remaining_seconds: int)
    on_checkin(prompt: CheckinPrompt)
    on_distraction_alert(reason: str)
    on_session_ended(report: dict)
    on_error(error_type: str, message: str)

Threading: timers call back on their own threads. Every state change
happens under one re-entrant lock, so callbacks and user actions are
applied one at a time. Remote calls (check-in questions, activity
classification and the closing status write) run outside the lock.
Check-in and classification results are dropped if the session left
(or re-entered) the running state in the meantime.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import config
from core.timers import RepeatingTimer
from tracking.analytics import compute_report
from tracking.domains import is_domain_allowed
from tracking.session import ActivityLog, CheckinPrompt, FlowSession

logger = logging.getLogger(__name__)


class SessionEngine:
    """
    Core session lifecycle engine.

    Handles:
    - Session lifecycle (start, pause, resume, end, reset)
    - One-second countdown while running
    - Check-in scheduling (first after 45s, then every 90s)
    - Activity log bookkeeping and distraction alerts
    - Closing status write (completed / abandoned)
    """

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def __init__(
        self,
        classifier=None,
        store=None,
        timer_factory: Callable[..., Any] = RepeatingTimer,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialise the engine in the idle state.

        Args:
            classifier: Text classifier (defaults to ai.create_classifier()).
            store: Record store (defaults to FlowStore()).
            timer_factory: Builds timers as factory(interval, function, first_delay=..., name=...).
            clock: Returns the current time.
        """
        if classifier is None:
            from ai import create_classifier
            classifier = create_classifier()
        if store is None:
            from sync.supabase_client import FlowStore
            store = FlowStore()

        self.classifier = classifier
        self.store = store
        self._timer_factory = timer_factory
        self._now = clock

        # Session state
        self.flow: Optional[FlowSession] = None
        self.status: str = config.STATUS_IDLE
        self.time_remaining: int = 0
        self.activity_log: ActivityLog = ActivityLog()
        self.checkin: Optional[CheckinPrompt] = None
        self.distraction_alert: Optional[str] = None
        self.report: Optional[Dict[str, Any]] = None
        self.persisted_status: Optional[str] = None

        self._lock = threading.RLock()
        self._countdown_timer = None
        self._checkin_timer = None
        # Bumped every time the session enters running; stale timer
        # callbacks and remote replies carry an old value
        self._run_epoch: int = 0
        # Set while the closing status write is in flight (lock released)
        self._closing: bool = False

        # ---- Callbacks (set by the front end) ----
        self.on_status_change: Optional[Callable[[str], None]] = None
        self.on_tick: Optional[Callable[[int], None]] = None
        self.on_checkin: Optional[Callable[[CheckinPrompt], None]] = None
        self.on_distraction_alert: Optional[Callable[[str], None]] = None
        self.on_session_ended: Optional[Callable[[Dict[str, Any]], None]] = None
        self.on_error: Optional[Callable[[str, str], None]] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.status == config.STATUS_RUNNING

    @property
    def is_paused(self) -> bool:
        return self.status == config.STATUS_PAUSED

    def start_session(self, flow: FlowSession) -> Dict:
        """
        Start a focus session from a successful setup.

        Returns:
            {"success": bool, "error": str | None, "error_type": str | None}
        """
        with self._lock:
            if self.status in (config.STATUS_RUNNING, config.STATUS_PAUSED):
                return {"success": False, "error": "Session already running", "error_type": "already_running"}
            if self.status != config.STATUS_IDLE:
                return self._invalid_state("start")

            self.flow = flow
            if self.flow.start_time is None:
                self.flow.start_time = self._now()
            self.time_remaining = int(flow.duration_minutes) * 60
            self.activity_log.clear()
            self.checkin = None
            self.distraction_alert = None
            self.report = None
            self.persisted_status = None

            self._enter_running()

        logger.info(
            f"Session started: flow={flow.flow_id}, duration={flow.duration_minutes}m, "
            f"approved={list(flow.approved_websites)}"
        )
        self._notify_status_change(config.STATUS_RUNNING)
        return {"success": True, "error": None, "error_type": None}

    def pause_session(self) -> Dict:
        """Pause the countdown and check-ins. Remaining time is frozen."""
        with self._lock:
            if self.status != config.STATUS_RUNNING or self._closing:
                return self._invalid_state("pause")
            self._leave_running()
            self.status = config.STATUS_PAUSED

        logger.info(f"Session paused with {self.time_remaining}s remaining")
        self._notify_status_change(config.STATUS_PAUSED)
        return {"success": True, "error": None, "error_type": None}

    def resume_session(self) -> Dict:
        """Resume a paused session. The check-in schedule restarts from now."""
        with self._lock:
            if self.status != config.STATUS_PAUSED or self._closing:
                return self._invalid_state("resume")
            self._enter_running()

        logger.info("Session resumed")
        self._notify_status_change(config.STATUS_RUNNING)
        return {"success": True, "error": None, "error_type": None}

    def end_session(self) -> Dict:
        """
        End the session on user request.

        Ending with time left is persisted as abandoned, otherwise as
        completed. The local status becomes completed either way, even
        when the database write fails.

        Returns:
            {"success": bool, "persisted": bool, "status": str | None,
             "report": dict | None, "error": str | None, "error_type": str | None}
        """
        with self._lock:
            if self.status not in (config.STATUS_RUNNING, config.STATUS_PAUSED) or self._closing:
                result = self._invalid_state("end")
                result.update({"persisted": False, "status": None, "report": None})
                return result

            flow_status = (
                config.FLOW_STATUS_ABANDONED if self.time_remaining > 0
                else config.FLOW_STATUS_COMPLETED
            )
            end_time = self._begin_finish()

        persisted, report = self._finish(flow_status, end_time)

        if not persisted:
            self._notify_error("store_update_failed", "Session ended locally, but failed to update database.")
        self._notify_status_change(config.STATUS_COMPLETED)
        self._notify_session_ended(report)
        return {
            "success": True,
            "persisted": persisted,
            "status": flow_status,
            "report": report,
            "error": None,
            "error_type": None,
        }

    def reset(self) -> Dict:
        """Discard a completed session and return to idle."""
        with self._lock:
            if self.status == config.STATUS_IDLE:
                return {"success": True, "error": None, "error_type": None}
            if self.status != config.STATUS_COMPLETED:
                return self._invalid_state("reset")

            self.flow = None
            self.time_remaining = 0
            self.activity_log.clear()
            self.checkin = None
            self.distraction_alert = None
            self.report = None
            self.persisted_status = None
            self.status = config.STATUS_IDLE

        self._notify_status_change(config.STATUS_IDLE)
        return {"success": True, "error": None, "error_type": None}

    def confirm_focus(self) -> Dict:
        """Answer the open check-in with "still on task"."""
        with self._lock:
            if not self.checkin or not self.checkin.open:
                return {"success": False, "error": "No check-in is open", "error_type": "no_checkin"}
            self.checkin.close()
            self.checkin = None
            entry = self.activity_log.log_focus_confirmed(timestamp=self._now())

        logger.info("Check-in: focus confirmed")
        return {"success": True, "entry": entry, "error": None, "error_type": None}

    def report_distraction(self) -> Dict:
        """Answer the open check-in with "I got distracted" and raise an alert."""
        with self._lock:
            if not self.checkin or not self.checkin.open:
                return {"success": False, "error": "No check-in is open", "error_type": "no_checkin"}
            self.checkin.close()
            self.checkin = None
            entry = self.activity_log.log_self_reported_distraction(timestamp=self._now())
            self.distraction_alert = entry.reason

        logger.info("Check-in: distraction self-reported")
        self._notify_distraction_alert(entry.reason)
        return {"success": True, "entry": entry, "error": None, "error_type": None}

    def dismiss_distraction_alert(self) -> None:
        with self._lock:
            self.distraction_alert = None

    def record_activity(self, activity: str) -> Dict:
        """
        Classify an observed activity (URL, domain or app name) and log it.

        Activities on an approved website are logged as on-task without a
        remote call. Everything else goes to the distraction classifier;
        a distracting verdict also raises an alert.

        Returns:
            {"success": bool, "entry": ActivityLogEntry | None, "error": ..., "error_type": ...}
        """
        with self._lock:
            if self.status not in (config.STATUS_RUNNING, config.STATUS_PAUSED):
                return self._invalid_state("record activity")
            flow = self.flow

            if is_domain_allowed(activity, flow.approved_websites):
                entry = self.activity_log.append(activity, is_distraction=False, reason="On an approved website.",
                                                 timestamp=self._now())
                return {"success": True, "entry": entry, "error": None, "error_type": None}

        try:
            verdict = self.classifier.detect_distraction(
                activity, list(flow.approved_websites), flow.task_description
            )
        except Exception as e:
            logger.error(f"Distraction check failed: {e}")
            verdict = {"is_distracted": False, "reason": "Could not check activity due to an AI service error."}

        with self._lock:
            if self.flow is not flow or self.status not in (config.STATUS_RUNNING, config.STATUS_PAUSED):
                logger.debug(f"Discarding distraction verdict for '{activity}' - session no longer running")
                return {"success": False, "entry": None, "error": "Session no longer running",
                        "error_type": "stale"}
            is_distracted = bool(verdict.get("is_distracted"))
            reason = verdict.get("reason", "") or ""
            entry = self.activity_log.append(activity, is_distraction=is_distracted, reason=reason,
                                             timestamp=self._now())
            if is_distracted:
                self.distraction_alert = reason or "This activity doesn't look related to your task."
                alert = self.distraction_alert

        if is_distracted:
            logger.info(f"Distraction detected: {activity}")
            self._notify_distraction_alert(alert)
        return {"success": True, "entry": entry, "error": None, "error_type": None}

    def get_status(self) -> Dict:
        """
        Snapshot of the engine state (polled by the front end).

        Returns:
            dict with keys: status, time_remaining, flow_id, task_description,
            checkin_question, distraction_alert, activity_count.
        """
        with self._lock:
            return {
                "status": self.status,
                "time_remaining": self.time_remaining,
                "flow_id": self.flow.flow_id if self.flow else None,
                "task_description": self.flow.task_description if self.flow else None,
                "checkin_question": self.checkin.question if self.checkin else None,
                "distraction_alert": self.distraction_alert,
                "activity_count": len(self.activity_log),
            }

    def cleanup(self) -> None:
        """Cancel all timers (application teardown)."""
        with self._lock:
            self._cancel_timers()
            # Anything still scheduled from the current run is now stale
            self._run_epoch += 1

    # ------------------------------------------------------------------
    # Timer callbacks
    # ------------------------------------------------------------------

    def tick(self, epoch: Optional[int] = None) -> None:
        """
        Advance the countdown by one second.

        Ticks from a cancelled run (or arriving after the session left
        running) are ignored.
        """
        completed = False
        with self._lock:
            if epoch is None:
                epoch = self._run_epoch
            if self.status != config.STATUS_RUNNING or epoch != self._run_epoch:
                logger.debug("Discarding tick - session not running")
                return

            self.time_remaining = max(0, self.time_remaining - 1)
            remaining = self.time_remaining

            if remaining <= 0:
                end_time = self._begin_finish()
                completed = True

        self._notify_tick(remaining)
        if completed:
            persisted, report = self._finish(config.FLOW_STATUS_COMPLETED, end_time)
            logger.info("Time's up! Focus session completed")
            if not persisted:
                self._notify_error("store_update_failed", "Session completed locally, but failed to update database.")
            self._notify_status_change(config.STATUS_COMPLETED)
            self._notify_session_ended(report)

    def trigger_checkin(self, epoch: Optional[int] = None) -> Optional[CheckinPrompt]:
        """
        Ask a check-in question.

        The question comes from the classifier (fallback question on any
        failure). Nothing is shown if a prompt is already open or if the
        session stopped running while the question was being generated.

        Returns:
            The opened prompt, or None if nothing was opened.
        """
        with self._lock:
            if epoch is None:
                epoch = self._run_epoch
            if self.status != config.STATUS_RUNNING or epoch != self._run_epoch:
                return None
            if self.checkin and self.checkin.open:
                logger.debug("Check-in skipped - previous prompt still open")
                return None
            task_description = self.flow.task_description

        try:
            question = self.classifier.generate_focus_question(task_description)
        except Exception as e:
            logger.error(f"Error generating focus question: {e}")
            question = None
        question = question or config.FALLBACK_CHECKIN_QUESTION

        with self._lock:
            if self.status != config.STATUS_RUNNING or epoch != self._run_epoch:
                logger.debug("Discarding check-in question - session left running while it was generated")
                return None
            if self.checkin and self.checkin.open:
                return None
            prompt = CheckinPrompt(question=question, asked_at=self._now())
            self.checkin = prompt

        logger.info(f"Check-in: {question}")
        self._notify_checkin(prompt)
        return prompt

    # ------------------------------------------------------------------
    # State transitions (caller holds self._lock)
    # ------------------------------------------------------------------

    def _enter_running(self) -> None:
        self._cancel_timers()
        self.status = config.STATUS_RUNNING
        self._run_epoch += 1
        epoch = self._run_epoch

        self._countdown_timer = self._timer_factory(
            config.TICK_INTERVAL,
            lambda: self.tick(epoch),
            first_delay=config.TICK_INTERVAL,
            name="focusflow-countdown",
        )
        self._checkin_timer = self._timer_factory(
            config.CHECKIN_INTERVAL,
            lambda: self.trigger_checkin(epoch),
            first_delay=config.CHECKIN_FIRST_DELAY,
            name="focusflow-checkin",
        )
        self._countdown_timer.start()
        self._checkin_timer.start()

    def _leave_running(self) -> None:
        self._cancel_timers()
        self._run_epoch += 1

    def _cancel_timers(self) -> None:
        for timer in (self._countdown_timer, self._checkin_timer):
            if timer is not None:
                timer.cancel()
        self._countdown_timer = None
        self._checkin_timer = None

    def _begin_finish(self) -> datetime:
        """Stop the timers and block further transitions. Returns the end time."""
        self._leave_running()
        self._closing = True
        return self._now()

    # ------------------------------------------------------------------
    # Closing (called WITHOUT self._lock held)
    # ------------------------------------------------------------------

    def _finish(self, flow_status: str, end_time: datetime):
        """
        Close the session: persist the final status, then complete locally.

        The store write happens outside the lock so status polls and user
        input are not held up by the network.

        Returns:
            (persisted, report)
        """
        flow = self.flow
        persisted = self._persist_status(flow, flow_status, end_time)

        with self._lock:
            self._closing = False
            flow.mark_ended(end_time)
            self.status = config.STATUS_COMPLETED
            self.persisted_status = flow_status
            if self.checkin:
                self.checkin.close()
                self.checkin = None
            self.report = compute_report(self.activity_log.entries, flow.duration_minutes)
            return persisted, self.report

    def _persist_status(self, flow: Optional[FlowSession], flow_status: str, end_time: datetime) -> bool:
        if not flow or not flow.flow_id:
            return False
        try:
            result = self.store.update_flow_status(
                flow.flow_id, flow.user_id, flow_status, end_time
            )
        except Exception as e:
            logger.error(f"Error updating flow status to {flow_status}: {e}")
            return False
        if not result.get("success"):
            logger.error(f"Failed to update flow status to {flow_status}: {result.get('error')}")
            return False
        return True

    def _invalid_state(self, action: str) -> Dict:
        state = "closing" if self._closing else self.status
        logger.debug(f"Ignoring {action} while {state}")
        return {
            "success": False,
            "error": f"Cannot {action} while session is {state}",
            "error_type": "invalid_state",
        }

    # ------------------------------------------------------------------
    # Callback helpers (a broken callback never breaks the engine)
    # ------------------------------------------------------------------

    def _safe_call(self, callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Engine callback failed: {e}", exc_info=True)

    def _notify_status_change(self, status: str) -> None:
        self._safe_call(self.on_status_change, status)

    def _notify_tick(self, remaining: int) -> None:
        self._safe_call(self.on_tick, remaining)

    def _notify_checkin(self, prompt: CheckinPrompt) -> None:
        self._safe_call(self.on_checkin, prompt)

    def _notify_distraction_alert(self, reason: str) -> None:
        self._safe_call(self.on_distraction_alert, reason)

    def _notify_session_ended(self, report: Optional[Dict[str, Any]]) -> None:
        self._safe_call(self.on_session_ended, report)

    def _notify_error(self, error_type: str, message: str) -> None:
        logger.warning(f"{error_type}: {message}")
        self._safe_call(self.on_error, error_type, message)
