import io
import re
from datetime import datetime, timedelta, timezone

import pytest

from teamcity_reporter.listener import TeamCityReporter
from teamcity_reporter.messages import MessageEncoder, unescape_value
from teamcity_reporter.sink import StreamSink

FIXED_TIMESTAMP = "2015-05-28T16:14:12.170+0700"
FLOW_ID = 24107

_TYPE_RE = re.compile(r"^##teamcity\[(\w+)")
_ATTR_RE = re.compile(r"(\w+)='((?:\|.|[^|'])*)'")

_CONFIG_ENV_KEYS = (
    "TEAMCITY_VERSION",
    "TEAMCITY_FLOW_ID",
    "TEAMCITY_OUTPUT_PATH",
    "TEAMCITY_CAPTURE_STANDARD_OUTPUT",
    "LOG_LEVEL",
    "LOG_CONFIG_PATH",
)


@pytest.fixture(autouse=True)
def _clean_reporter_env(monkeypatch):
    for key in _CONFIG_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def fixed_clock():
    moment = datetime(2015, 5, 28, 16, 14, 12, 170000, tzinfo=timezone(timedelta(hours=7)))
    return lambda: moment


@pytest.fixture
def encoder(fixed_clock):
    return MessageEncoder(flow_id=FLOW_ID, clock=fixed_clock)


@pytest.fixture
def out():
    return io.StringIO()


@pytest.fixture
def reporter(out, encoder):
    return TeamCityReporter(StreamSink(out), encoder=encoder)


@pytest.fixture
def tail():
    """Trailing implicit attributes for a subject name under the fixed clock."""

    def _tail(name: str) -> str:
        return f" name='{name}' timestamp='{FIXED_TIMESTAMP}' flowId='{FLOW_ID}']\n"

    return _tail


@pytest.fixture
def parse_message():
    """Split a service message line into its type and unescaped attributes."""

    def _parse(line: str) -> tuple[str, dict[str, str]]:
        match = _TYPE_RE.match(line)
        assert match, line
        attrs = {key: unescape_value(value) for key, value in _ATTR_RE.findall(line)}
        return match.group(1), attrs

    return _parse
