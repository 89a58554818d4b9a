# Where: teamcity_reporter/events.py
# What: Event kinds and the event value handed from engine adapters to the reporter.
# Why: Provide a stable, decoupled contract between test execution and message output.
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

EVENT_SUITE_START = "suite_start"
EVENT_SUITE_END = "suite_end"
EVENT_TEST_START = "test_start"
EVENT_TEST_END = "test_end"
EVENT_TEST_FAILURE = "test_failure"
EVENT_TEST_ERROR = "test_error"
EVENT_TEST_SKIPPED = "test_skipped"
EVENT_TEST_INCOMPLETE = "test_incomplete"
EVENT_TEST_RISKY = "test_risky"
EVENT_TEST_WARNING = "test_warning"

EVENT_TYPES = frozenset(
    {
        EVENT_SUITE_START,
        EVENT_SUITE_END,
        EVENT_TEST_START,
        EVENT_TEST_END,
        EVENT_TEST_FAILURE,
        EVENT_TEST_ERROR,
        EVENT_TEST_SKIPPED,
        EVENT_TEST_INCOMPLETE,
        EVENT_TEST_RISKY,
        EVENT_TEST_WARNING,
    }
)


@dataclass(frozen=True)
class Event:
    event_type: str
    subject: Any
    # Exception, message string or None depending on the event kind.
    payload: Any = None
    elapsed: float = 0.0
