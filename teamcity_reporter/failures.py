# Where: teamcity_reporter/failures.py
# What: Failure details (message, filtered traceback, comparison data) for testFailed.
# Why: Decouple message construction from the shape of whatever exception a test raised.
from __future__ import annotations

import difflib
import pprint
import traceback
from dataclasses import dataclass
from types import FrameType, TracebackType
from typing import Any

from teamcity_reporter.messages import COMPARISON_FAILURE

# Top-level packages whose frames are noise in a test failure report.
_FRAMEWORK_PACKAGES = frozenset({"unittest", "_pytest", "pluggy"})
_MISSING = object()


@dataclass(frozen=True)
class Comparison:
    expected: str
    actual: str


@dataclass(frozen=True)
class FailureDetail:
    message: str
    details: str | None = None
    comparison: Comparison | None = None

    def to_params(self) -> dict[str, str]:
        params = {"message": self.message}
        if self.details is not None:
            params["details"] = self.details
        if self.comparison is not None:
            params["type"] = COMPARISON_FAILURE
            params["expected"] = self.comparison.expected
            params["actual"] = self.comparison.actual
        return params


class ExpectationFailedError(AssertionError):
    """Assertion failure that carries the expected and actual renderings."""

    def __init__(self, message: str, comparison: Comparison) -> None:
        super().__init__(message)
        self.comparison = comparison


def render_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return pprint.pformat(value)


def assert_equal(expected: Any, actual: Any, message: str = "") -> None:
    __tracebackhide__ = True
    if expected == actual:
        return
    raise ExpectationFailedError(
        message or "Failed asserting that two values are equal.",
        Comparison(render_value(expected), render_value(actual)),
    )


def comparison_of(exc: BaseException) -> Comparison | None:
    comparison = getattr(exc, "comparison", None)
    if isinstance(comparison, Comparison):
        return comparison
    expected = getattr(exc, "expected", _MISSING)
    actual = getattr(exc, "actual", _MISSING)
    if expected is _MISSING or actual is _MISSING:
        return None
    return Comparison(render_value(expected), render_value(actual))


def comparison_diff(comparison: Comparison) -> str:
    expected = comparison.expected.splitlines() or [""]
    actual = comparison.actual.splitlines() or [""]
    lines = ["--- Expected", "+++ Actual", "@@ @@"]
    matcher = difflib.SequenceMatcher(a=expected, b=actual, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            lines.extend(f" {line}" for line in expected[i1:i2])
            continue
        lines.extend(f"-{line}" for line in expected[i1:i2])
        lines.extend(f"+{line}" for line in actual[j1:j2])
    return "\n".join(lines)


def render_exception(exc: BaseException, comparison: Comparison | None = None) -> str:
    """Human-readable failure text.

    Assertion failures render as their text alone, anything else is
    prefixed with the exception class as in a traceback's last line.
    """
    if isinstance(exc, AssertionError):
        text = str(exc).strip() or type(exc).__name__
    else:
        text = "".join(traceback.format_exception_only(type(exc), exc)).strip()
    if comparison is not None:
        text = f"{text}\n{comparison_diff(comparison)}"
    return text


def _is_framework_frame(frame: FrameType) -> bool:
    if frame.f_globals.get("__unittest") or frame.f_locals.get("__tracebackhide__"):
        return True
    module = str(frame.f_globals.get("__name__", ""))
    return module.split(".", 1)[0] in _FRAMEWORK_PACKAGES


def filtered_traceback(tb: TracebackType | None) -> str:
    if tb is None:
        return ""
    frames = list(traceback.walk_tb(tb))
    kept = [(frame, lineno) for frame, lineno in frames if not _is_framework_frame(frame)]
    summary = traceback.StackSummary.extract(kept or frames)
    return "".join(summary.format())


def failure_from_exception(
    exc: BaseException,
    tb: TracebackType | None = None,
    comparison: Comparison | None = None,
) -> FailureDetail:
    """`comparison` is used when the exception carries none of its own."""
    comparison = comparison_of(exc) or comparison
    return FailureDetail(
        message=render_exception(exc, comparison),
        details=filtered_traceback(tb if tb is not None else exc.__traceback__),
        comparison=comparison,
    )


def failure_from_exc_info(
    exc_info: tuple[type[BaseException], BaseException, TracebackType | None],
) -> FailureDetail:
    _, exc, tb = exc_info
    return failure_from_exception(exc, tb)

