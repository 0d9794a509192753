#!/usr/bin/env python3
"""
FocusFlow - Main Entry Point

An AI-assisted focus session tracker: describe a task and the tools it
needs, work through a countdown with periodic check-ins, and get a
productivity report at the end. Sessions are stored in Supabase; the
browser extension reports activity through the local extension API.

Usage:
    python main.py                  # Interactive focus session (default)
    python main.py --serve          # Run the extension API server
    python main.py --check-db       # Test the database connection
    python main.py --login EMAIL    # Sign in and store tokens
    python main.py --logout         # Clear stored tokens
"""

import sys
import getpass
import logging
import argparse
import threading
from typing import Optional

import config
from core.engine import SessionEngine
from core.setup import FlowSetup
from tracking.analytics import format_countdown, generate_summary_text
from tracking.presets import PresetHistory, TaskPreset
from tracking.session import CheckinPrompt

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)

# Suppress noisy third-party library logs (HTTP requests, etc.)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)


class FocusFlowCLI:
    """
    Terminal front end: sign-in, task setup and a single focus session.
    """

    def __init__(self, store=None, classifier=None, presets: Optional[PresetHistory] = None):
        if store is None:
            from sync.supabase_client import FlowStore
            store = FlowStore()
        if classifier is None:
            from ai import create_classifier
            classifier = create_classifier()

        self.store = store
        self.classifier = classifier
        self.presets = presets if presets is not None else PresetHistory()
        self.setup = FlowSetup(classifier, store, presets=self.presets)
        self.engine = SessionEngine(classifier=classifier, store=store)
        self._finished = threading.Event()

        self.engine.on_status_change = self._on_status_change
        self.engine.on_checkin = self._on_checkin
        self.engine.on_distraction_alert = self._on_distraction_alert
        self.engine.on_session_ended = self._on_session_ended
        self.engine.on_error = self._on_error

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    def _on_status_change(self, status: str) -> None:
        if status == config.STATUS_PAUSED:
            remaining = format_countdown(self.engine.time_remaining)
            print(f"\n⏸️  Paused with {remaining} remaining. Type 'r' to resume.")
        elif status == config.STATUS_RUNNING:
            print("\n▶️  Running. Commands: p=pause, e=end, s=status, a <site>=log activity")

    def _on_checkin(self, prompt: CheckinPrompt) -> None:
        print(f"\n🔔 Check-in: {prompt.question}")
        print("   Type 'y' if you're on task, 'n' if you got distracted.")

    def _on_distraction_alert(self, reason: str) -> None:
        print(f"\n⚠️  Distraction: {reason}")
        print("   Take a breath and get back to your task.")

    def _on_session_ended(self, report: dict) -> None:
        if self.engine.persisted_status == config.FLOW_STATUS_COMPLETED:
            print("\n⏰ Time's up! Great work.")
        task = self.engine.flow.task_description if self.engine.flow else ""
        print("\n" + "=" * 60)
        print(generate_summary_text(report, task))
        print("=" * 60)
        print("Press Enter to exit.")
        self._finished.set()

    def _on_error(self, error_type: str, message: str) -> None:
        print(f"\n❌ {message}")

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------

    def ensure_signed_in(self) -> bool:
        """Prompt for credentials if no user session is stored."""
        if not self.store.is_available():
            print("\n❌ Supabase is not configured.")
            print("   Set SUPABASE_URL and SUPABASE_ANON_KEY in your .env file.")
            return False

        user = self.store.get_current_user()
        if user:
            print(f"✓ Signed in as {user['email']}")
            return True

        print("\n🔐 Please sign in to start a focus session.")
        email = input("   Email: ").strip()
        password = getpass.getpass("   Password: ")
        result = self.store.login_with_email(email, password)
        if not result["success"]:
            print(f"❌ Sign in failed: {result['error']}")
            return False
        print(f"✓ Signed in as {email}")
        return True

    def _choose_preset(self) -> Optional[TaskPreset]:
        presets = self.presets.presets
        if not presets:
            return None
        print("\n📋 Recent tasks:")
        for i, preset in enumerate(presets, 1):
            print(f"   {i}. {preset.description} ({preset.time} min)")
        choice = input("   Pick a number to reuse, or press Enter for a new task: ").strip()
        if choice.isdigit() and 1 <= int(choice) <= len(presets):
            return presets[int(choice) - 1]
        return None

    def prompt_task(self) -> Optional[dict]:
        """Collect task details until setup succeeds (or the user gives up)."""
        preset = self._choose_preset()
        while True:
            if preset:
                description = preset.description
                tools = preset.approved_tools_description
                duration = str(preset.time)
                preset = None
            else:
                print("\n📝 New focus session")
                description = input("   What are you working on? ").strip()
                tools = input("   Which tools and websites do you need? ").strip()
                duration = input(f"   Duration in minutes [{config.DEFAULT_DURATION_MINUTES}]: ").strip()
                duration = duration or str(config.DEFAULT_DURATION_MINUTES)

            print("\n⚙️  Setting up your session...")
            result = self.setup.start_flow(description, tools, duration)
            if result["success"]:
                return result

            if result["field_errors"]:
                for message in result["field_errors"].values():
                    print(f"   ❌ {message}")
            else:
                print(f"   ❌ {result['error']}")
            if result["error_type"] == "auth_required":
                return None
            retry = input("   Try again? [Y/n] ").strip().lower()
            if retry == "n":
                return None

    def run_session(self, flow) -> None:
        """Run the engine and translate keyboard commands until the session ends."""
        print("\n" + "=" * 60)
        print(f"🎯 {flow.task_description}")
        print(f"   Approved: {', '.join(flow.approved_websites)}")
        print(f"   Duration: {flow.duration_minutes} min")
        print("=" * 60)

        self.engine.start_session(flow)
        try:
            while not self._finished.is_set():
                try:
                    line = input().strip()
                except EOFError:
                    break
                if self._finished.is_set():
                    break
                self._handle_command(line)
        finally:
            if self.engine.status in (config.STATUS_RUNNING, config.STATUS_PAUSED):
                self.engine.end_session()
            self.engine.cleanup()

    def _handle_command(self, line: str) -> None:
        command, _, argument = line.partition(" ")
        command = command.lower()

        if command == "p":
            result = self.engine.pause_session()
        elif command == "r":
            result = self.engine.resume_session()
        elif command == "e":
            result = self.engine.end_session()
        elif command == "y":
            result = self.engine.confirm_focus()
            if result["success"]:
                print("   👍 Nice, keep going!")
        elif command == "n":
            result = self.engine.report_distraction()
        elif command == "a" and argument:
            result = self.engine.record_activity(argument.strip())
            if result["success"] and not result["entry"].is_distraction:
                print("   ✓ On task")
        elif command == "s":
            status = self.engine.get_status()
            print(f"   {status['status']} - {format_countdown(status['time_remaining'])} remaining, "
                  f"{status['activity_count']} check(s) logged")
            return
        elif not command:
            return
        else:
            print("   Commands: p=pause, r=resume, e=end, y/n=answer check-in, s=status, a <site>=log activity")
            return

        if not result["success"]:
            print(f"   {result['error']}")


def main_session() -> None:
    """Sign in, set up a task and run one focus session."""
    print("\n" + "=" * 60)
    print("🎯 FocusFlow - AI-Powered Focus Sessions")
    print("=" * 60)

    app = FocusFlowCLI()
    if not app.ensure_signed_in():
        sys.exit(1)

    result = app.prompt_task()
    if not result:
        print("\n👋 Goodbye!")
        return
    app.run_session(result["flow"])


def main_check_db() -> int:
    """Run the database connectivity check. Returns the exit code."""
    from sync.supabase_client import FlowStore

    print("\n🔍 Testing database connection...")
    result = FlowStore().check_connection()
    if result["success"]:
        print("✓ Database connection OK")
        return 0
    print(f"❌ {result['error']}")
    print(f"   {result['suggestion']}")
    return 1


def main() -> None:
    """
    Main entry point - parses arguments and launches the requested mode.

    Default mode is an interactive focus session.
    """
    parser = argparse.ArgumentParser(
        description="FocusFlow - AI-Powered Focus Sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                     Start a focus session
  python main.py --serve --port 9000 Run the extension API on port 9000
  python main.py --login me@x.com    Sign in
        """
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--serve", action="store_true", help="Run the browser extension API server")
    mode.add_argument("--check-db", action="store_true", help="Test the database connection")
    mode.add_argument("--login", metavar="EMAIL", help="Sign in with email and password")
    mode.add_argument("--logout", action="store_true", help="Sign out and clear stored tokens")
    parser.add_argument("--host", default=config.API_HOST, help="API server host (with --serve)")
    parser.add_argument("--port", type=int, default=config.API_PORT, help="API server port (with --serve)")

    args = parser.parse_args()

    try:
        if args.serve:
            from sync.api_server import run_api_server
            run_api_server(args.host, args.port)
        elif args.check_db:
            sys.exit(main_check_db())
        elif args.login:
            from sync.supabase_client import FlowStore
            password = getpass.getpass("Password: ")
            result = FlowStore().login_with_email(args.login, password)
            if not result["success"]:
                print(f"❌ Sign in failed: {result['error']}")
                sys.exit(1)
            print(f"✓ Signed in as {args.login}")
        elif args.logout:
            from sync.supabase_client import FlowStore
            FlowStore().logout()
            print("✓ Signed out")
        else:
            main_session()
    except KeyboardInterrupt:
        print("\n\nGoodbye!")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        print(f"\nFatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
