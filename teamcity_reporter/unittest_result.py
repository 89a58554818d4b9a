# Where: teamcity_reporter/unittest_result.py
# What: unittest result and runner that report through TeamCityReporter.
# Why: Let plain unittest suites emit service messages without a plugin system.
from __future__ import annotations

import re
import time
import unittest
from dataclasses import replace
from typing import Any, Callable

from teamcity_reporter.config import ReporterConfig
from teamcity_reporter.failures import failure_from_exc_info
from teamcity_reporter.listener import TeamCityReporter
from teamcity_reporter.messages import MessageEncoder
from teamcity_reporter.naming import SelfDescribingSubject, SuiteSubject, derive_name
from teamcity_reporter.sink import MessageSink, StreamSink, make_sink, open_sink


def _class_suite(test: unittest.TestCase) -> SuiteSubject:
    cls = type(test)
    return SuiteSubject(f"{cls.__module__}.{cls.__qualname__}")


# `setUpClass (pkg.module.Class)` or `setUpModule (pkg.module)`.
_FIXTURE_DESCRIPTION = re.compile(r"^\w+ \((?P<owner>[^()]+)\)$")


def _fixture_suite(test: Any) -> SuiteSubject | None:
    match = _FIXTURE_DESCRIPTION.match(str(test))
    return SuiteSubject(match.group("owner")) if match else None


def _owning_test(test: Any) -> Any:
    # Skips raised inside subTest() arrive with the sub-test, not the test.
    parent = getattr(test, "test_case", None)
    return parent if isinstance(parent, unittest.TestCase) else test


class TeamCityTestResult(unittest.TextTestResult):
    """Mirrors unittest callbacks onto a TeamCityReporter.

    unittest has no suite callbacks, so a suite is opened for each test
    class when its first test starts and closed when the class changes or
    the run stops. Sub-test failures are reported against the owning test.
    """

    def __init__(
        self,
        stream: Any,
        descriptions: bool,
        verbosity: int,
        *,
        reporter: TeamCityReporter | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(stream, descriptions, verbosity, **kwargs)
        self.reporter = reporter if reporter is not None else TeamCityReporter(StreamSink())
        self._suite: SuiteSubject | None = None
        self._started_at: dict[str, float] = {}

    def _enter_suite(self, suite: SuiteSubject) -> None:
        if suite == self._suite:
            return
        self._leave_suite()
        self.reporter.start_suite(suite)
        self._suite = suite

    def _leave_suite(self) -> None:
        if self._suite is not None:
            self.reporter.end_suite(self._suite)
            self._suite = None

    def startTest(self, test: unittest.TestCase) -> None:
        super().startTest(test)
        self._enter_suite(_class_suite(test))
        self._started_at[test.id()] = time.perf_counter()
        self.reporter.start_test(test)

    def stopTest(self, test: unittest.TestCase) -> None:
        started = self._started_at.pop(test.id(), None)
        elapsed = time.perf_counter() - started if started is not None else 0.0
        self.reporter.end_test(test, elapsed)
        super().stopTest(test)

    def stopTestRun(self) -> None:
        self._leave_suite()
        super().stopTestRun()

    def _report_placeholder(self, test: Any, report: Callable[[object], None]) -> None:
        # Class/module fixture outcomes arrive on a placeholder that never started.
        # They belong to the fixture's owner, not to whichever suite is still open.
        suite = _fixture_suite(test)
        if suite is not None:
            self._enter_suite(suite)
        else:
            self._leave_suite()
        subject = SelfDescribingSubject(str(test))
        self.reporter.start_test(subject)
        report(subject)
        self.reporter.end_test(subject, 0.0)

    def addError(self, test: Any, err: Any) -> None:
        super().addError(test, err)
        if isinstance(test, unittest.TestCase):
            self.reporter.add_error(test, err)
            return
        self._report_placeholder(test, lambda subject: self.reporter.add_error(subject, err))

    def addFailure(self, test: unittest.TestCase, err: Any) -> None:
        super().addFailure(test, err)
        self.reporter.add_failure(test, err)

    def addSkip(self, test: Any, reason: str) -> None:
        super().addSkip(test, reason)
        if isinstance(test, unittest.TestCase):
            self.reporter.add_skipped(_owning_test(test), reason)
            return
        self._report_placeholder(test, lambda subject: self.reporter.add_skipped(subject, reason))

    def addExpectedFailure(self, test: unittest.TestCase, err: Any) -> None:
        super().addExpectedFailure(test, err)
        self.reporter.add_incomplete(test, err)

    def addUnexpectedSuccess(self, test: unittest.TestCase) -> None:
        super().addUnexpectedSuccess(test)
        self.reporter.add_risky(test, "Unexpected success")

    def addSubTest(self, test: unittest.TestCase, subtest: unittest.TestCase, err: Any) -> None:
        super().addSubTest(test, subtest, err)
        if err is None:
            return
        detail = failure_from_exc_info(err)
        detail = replace(detail, message=f"{derive_name(subtest)}: {detail.message}")
        self.reporter.add_failure(test, detail)


class TeamCityTestRunner(unittest.TextTestRunner):
    """TextTestRunner whose human-readable output stays on its stream (stderr
    by default) while service messages go to the configured sink."""

    resultclass = TeamCityTestResult

    def __init__(
        self,
        *args: Any,
        sink: MessageSink | None = None,
        config: ReporterConfig | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.config = config if config is not None else ReporterConfig()
        self.sink = sink if sink is not None else make_sink(self.config.TEAMCITY_OUTPUT_PATH)

    def _makeResult(self) -> TeamCityTestResult:
        reporter = TeamCityReporter(
            self.sink,
            encoder=MessageEncoder(flow_id=self.config.TEAMCITY_FLOW_ID),
            capture_standard_output=self.config.capture_standard_output,
        )
        return self.resultclass(self.stream, self.descriptions, self.verbosity, reporter=reporter)

    def run(self, test: unittest.TestSuite | unittest.TestCase) -> unittest.TestResult:
        with open_sink(self.sink):
            return super().run(test)
