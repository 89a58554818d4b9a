# Where: teamcity_reporter/pytest_plugin.py
# What: pytest plugin that reports the run as TeamCity service messages.
# Why: Map pytest's per-phase reports onto suite/test lifecycle events.
from __future__ import annotations

import contextlib
import logging

import pytest

from teamcity_reporter.cli import non_negative_int
from teamcity_reporter.config import ReporterConfig
from teamcity_reporter.failures import (
    Comparison,
    FailureDetail,
    failure_from_exception,
    render_value,
)
from teamcity_reporter.listener import TeamCityReporter
from teamcity_reporter.messages import MessageEncoder
from teamcity_reporter.naming import SuiteSubject, TestCaseSubject
from teamcity_reporter.sink import MessageSink, StreamSink, make_sink, open_sink

logger = logging.getLogger(__name__)

PLUGIN_NAME = "teamcity-reporter"
MAIN_FLOW = ""


class TerminalSink(MessageSink):
    """Writes through pytest's terminal reporter so messages start on a fresh line."""

    def __init__(self, terminal, writer) -> None:
        self._terminal = terminal
        self._writer = writer

    def write(self, message: str) -> None:
        self._terminal.ensure_newline()
        # Progress dots leave the cursor mid-line without a pending fspath.
        if self._writer.width_of_current_line:
            self._terminal.write("\n")
        self._terminal.write(message, flush=True)


def split_nodeid(nodeid: str) -> tuple[list[str], TestCaseSubject]:
    """Return the suite ids enclosing `nodeid` and the test subject for it.

    `tests/test_a.py::TestX::test_y[one]` yields suites
    `tests/test_a.py`, `tests/test_a.py::TestX`, `tests/test_a.py::TestX::test_y`
    and the subject `test_y with data set "one"`.
    """
    base, bracket, rest = nodeid.partition("[")
    dataset = rest[:-1] if bracket and rest.endswith("]") else None
    parts = base.split("::")
    suites = ["::".join(parts[: i + 1]) for i in range(len(parts) - 1)]
    if dataset is not None:
        suites.append(base)
    return suites, TestCaseSubject(parts[-1], dataset)


def _skip_reason(report: pytest.TestReport) -> str:
    longrepr = report.longrepr
    if isinstance(longrepr, tuple) and len(longrepr) == 3:
        reason = str(longrepr[2])
    else:
        reason = str(longrepr or "")
    return reason.removeprefix("Skipped: ")


def _failure_from_report(report: pytest.TestReport) -> FailureDetail:
    crash = getattr(report.longrepr, "reprcrash", None)
    message = crash.message if crash is not None else report.longreprtext
    return FailureDetail(message=str(message).strip(), details=report.longreprtext)


def _worker_id(report: pytest.TestReport) -> str:
    # xdist attaches the sending WorkerController as `report.node`.
    gateway = getattr(getattr(report, "node", None), "gateway", None)
    return str(getattr(gateway, "id", MAIN_FLOW))


def _is_equality_failure(exc: BaseException) -> bool:
    if not isinstance(exc, AssertionError):
        return False
    lines = str(exc).splitlines()
    return bool(lines) and " == " in lines[0]


class _Flow:
    """Suite stack of one execution flow: this process or one xdist worker."""

    def __init__(self, reporter: TeamCityReporter) -> None:
        self.reporter = reporter
        self.open_suites: list[str] = []
        # Test whose testFinished waits for the worker to move on.
        self.pending: str | None = None

    def sync_suites(self, suites: list[str]) -> None:
        common = 0
        while (
            common < len(self.open_suites)
            and common < len(suites)
            and self.open_suites[common] == suites[common]
        ):
            common += 1
        for suite in reversed(self.open_suites[common:]):
            self.reporter.end_suite(SuiteSubject(suite))
        del self.open_suites[common:]
        for suite in suites[common:]:
            self.reporter.start_suite(SuiteSubject(suite))
            self.open_suites.append(suite)


class TeamCityPlugin:
    """Reports the session on one flow, or one flow per worker under xdist.

    Without xdist, a test starts at `logstart` and finishes when its
    protocol unwinds. Under xdist the controller never runs the protocol:
    a test starts with its first report and finishes once its worker
    reports the next test, or at the end of the session.
    """

    def __init__(
        self,
        config: pytest.Config,
        settings: ReporterConfig,
        *,
        output_path: str = "",
        flow_id: int | None = None,
        report_warnings: bool = False,
    ) -> None:
        self._config = config
        self._settings = settings
        self._output_path = output_path
        self._flow_id = settings.TEAMCITY_FLOW_ID if flow_id is None else flow_id
        self._report_warnings = report_warnings
        self._resources = contextlib.ExitStack()
        self._sink: MessageSink | None = None
        self._distributed = False
        self.reporter: TeamCityReporter | None = None
        self._flows: dict[str, _Flow] = {}
        self._flow_of: dict[str, _Flow] = {}
        self._subjects: dict[str, TestCaseSubject] = {}
        self._durations: dict[str, float] = {}
        self._failures: dict[tuple[str, str], FailureDetail] = {}
        self._comparison: Comparison | None = None

    def _make_sink(self) -> MessageSink:
        if self._output_path:
            return make_sink(self._output_path)
        terminal = self._config.pluginmanager.getplugin("terminalreporter")
        if terminal is not None:
            return TerminalSink(terminal, self._config.get_terminal_writer())
        return StreamSink()

    def _flow(self, key: str) -> _Flow:
        flow = self._flows.get(key)
        if flow is None:
            assert self._sink is not None
            # The main flow keeps the configured flowId; workers follow it.
            reporter = TeamCityReporter(
                self._sink,
                encoder=MessageEncoder(flow_id=self._flow_id + len(self._flows)),
                capture_standard_output=self._settings.capture_standard_output,
            )
            flow = self._flows[key] = _Flow(reporter)
        return flow

    def _start_test(self, flow: _Flow, nodeid: str) -> None:
        suites, subject = split_nodeid(nodeid)
        flow.sync_suites(suites)
        self._subjects[nodeid] = subject
        self._durations[nodeid] = 0.0
        self._flow_of[nodeid] = flow
        flow.reporter.start_test(subject)

    def _finish_test(self, nodeid: str) -> None:
        subject = self._subjects.pop(nodeid, None)
        flow = self._flow_of.pop(nodeid, None)
        if subject is None or flow is None:
            return
        flow.reporter.end_test(subject, self._durations.pop(nodeid, 0.0))

    def _finish_pending(self, flow: _Flow) -> None:
        if flow.pending is not None:
            self._finish_test(flow.pending)
            flow.pending = None

    @pytest.hookimpl(tryfirst=True)
    def pytest_sessionstart(self, session: pytest.Session) -> None:
        self._sink = self._resources.enter_context(open_sink(self._make_sink()))
        self._distributed = session.config.pluginmanager.hasplugin("dsession")
        self.reporter = self._flow(MAIN_FLOW).reporter
        logger.debug(
            "teamcity reporting enabled, flowId=%s distributed=%s",
            self._flow_id,
            self._distributed,
        )

    def pytest_runtest_logstart(self, nodeid: str, location) -> None:
        if self.reporter is None or self._distributed:
            return
        self._start_test(self._flows[MAIN_FLOW], nodeid)

    def pytest_assertrepr_compare(self, config: pytest.Config, op: str, left, right) -> None:
        # pytest convention: `assert actual == expected`.
        if op == "==":
            self._comparison = Comparison(expected=render_value(right), actual=render_value(left))

    @pytest.hookimpl(wrapper=True)
    def pytest_runtest_makereport(self, item: pytest.Item, call: pytest.CallInfo):
        report = yield
        comparison, self._comparison = self._comparison, None
        if call.excinfo is not None and report.failed:
            exc = call.excinfo.value
            self._failures[(report.nodeid, report.when)] = failure_from_exception(
                exc,
                call.excinfo.tb,
                comparison if _is_equality_failure(exc) else None,
            )
        return report

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        if self.reporter is None:
            return
        if self._distributed and report.nodeid not in self._subjects:
            flow = self._flow(_worker_id(report))
            self._finish_pending(flow)
            self._start_test(flow, report.nodeid)
        subject = self._subjects.get(report.nodeid)
        flow = self._flow_of.get(report.nodeid)
        if subject is None or flow is None:
            return
        self._durations[report.nodeid] = self._durations.get(report.nodeid, 0.0) + (
            report.duration or 0.0
        )
        failure = self._failures.pop((report.nodeid, report.when), None)
        if report.failed:
            flow.reporter.add_failure(subject, failure or _failure_from_report(report))
            return
        wasxfail = getattr(report, "wasxfail", None)
        if report.skipped:
            if wasxfail is not None:
                flow.reporter.add_incomplete(subject, wasxfail or "expected failure")
            else:
                flow.reporter.add_skipped(subject, _skip_reason(report))
            return
        if report.when == "call" and wasxfail is not None:
            reason = f"Unexpected success: {wasxfail}" if wasxfail else "Unexpected success"
            flow.reporter.add_risky(subject, reason)

    def pytest_warning_recorded(self, warning_message, when: str, nodeid: str, location) -> None:
        if not self._report_warnings or self.reporter is None or when != "runtest":
            return
        subject = self._subjects.get(nodeid)
        flow = self._flow_of.get(nodeid)
        if subject is None or flow is None:
            return
        category = warning_message.category.__name__
        flow.reporter.add_warning(
            subject,
            f"{warning_message.filename}:{warning_message.lineno}: "
            f"{category}: {warning_message.message}",
        )

    def pytest_runtest_logfinish(self, nodeid: str, location) -> None:
        # Workers forward a test's warnings after logfinish.
        flow = self._flow_of.get(nodeid)
        if self._distributed and flow is not None:
            self._finish_pending(flow)
            flow.pending = nodeid

    # Outermost protocol wrapper: pytest records a test's warnings after
    # pytest_runtest_logfinish, so testFinished waits until the protocol unwinds.
    @pytest.hookimpl(wrapper=True, tryfirst=True)
    def pytest_runtest_protocol(self, item: pytest.Item, nextitem):
        try:
            return (yield)
        finally:
            self._finish_test(item.nodeid)

    @pytest.hookimpl(trylast=True)
    def pytest_sessionfinish(self, session: pytest.Session, exitstatus) -> None:
        if self.reporter is None:
            return
        for flow in self._flows.values():
            self._finish_pending(flow)
            flow.sync_suites([])

    def close(self) -> None:
        self._resources.close()
        self.reporter = None
        self._sink = None


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("teamcity", "TeamCity service messages")
    group.addoption(
        "--teamcity",
        action="store_true",
        dest="teamcity",
        default=False,
        help="Report results as TeamCity service messages (implied by TEAMCITY_VERSION)",
    )
    group.addoption(
        "--teamcity-output",
        dest="teamcity_output",
        default=None,
        metavar="PATH",
        help="Write service messages to PATH instead of the terminal",
    )
    group.addoption(
        "--teamcity-flow-id",
        dest="teamcity_flow_id",
        type=non_negative_int,
        default=None,
        help="flowId for every message (default: TEAMCITY_FLOW_ID or the process id)",
    )
    group.addoption(
        "--teamcity-warnings",
        action="store_true",
        dest="teamcity_warnings",
        default=False,
        help="Report warnings recorded during a test as test failures",
    )


def pytest_configure(config: pytest.Config) -> None:
    # xdist workers forward reports to the controller, which does the reporting.
    if hasattr(config, "workerinput"):
        return
    settings = ReporterConfig()
    if not (config.getoption("teamcity") or settings.running_under_teamcity):
        return
    plugin = TeamCityPlugin(
        config,
        settings,
        output_path=config.getoption("teamcity_output") or settings.TEAMCITY_OUTPUT_PATH,
        flow_id=config.getoption("teamcity_flow_id"),
        report_warnings=config.getoption("teamcity_warnings"),
    )
    config.pluginmanager.register(plugin, PLUGIN_NAME)


def pytest_unconfigure(config: pytest.Config) -> None:
    plugin = config.pluginmanager.getplugin(PLUGIN_NAME)
    if plugin is None:
        return
    plugin.close()
    config.pluginmanager.unregister(plugin)
