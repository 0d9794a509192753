"""
Core business logic package for FocusFlow.

Contains the headless SessionEngine, session setup and the timers they
run on. Zero UI dependencies.
"""

from core.engine import SessionEngine
from core.setup import FlowSetup

__all__ = ["SessionEngine", "FlowSetup"]
