# Where: teamcity_reporter/__main__.py
# What: `python -m teamcity_reporter` entry point wrapping unittest.main.
# Why: Run an existing unittest suite with TeamCity reporting and no code changes.
from __future__ import annotations

import logging
import unittest

from teamcity_reporter.cli import parse_args
from teamcity_reporter.config import ReporterConfig
from teamcity_reporter.logging_config import setup_logging
from teamcity_reporter.unittest_result import TeamCityTestRunner

logger = logging.getLogger(__name__)

PROG = "python -m teamcity_reporter"


def build_config(output: str | None, flow_id: int | None) -> ReporterConfig:
    overrides: dict[str, object] = {}
    if output:
        overrides["TEAMCITY_OUTPUT_PATH"] = output
    if flow_id is not None:
        overrides["TEAMCITY_FLOW_ID"] = flow_id
    return ReporterConfig(**overrides)


def main(argv: list[str] | None = None) -> None:
    args, unittest_argv = parse_args(argv)
    config = build_config(args.output, args.flow_id)
    setup_logging(args.log_config or config.LOG_CONFIG_PATH, args.log_level or config.LOG_LEVEL)
    logger.debug("running unittest with flowId=%s", config.TEAMCITY_FLOW_ID)
    runner = TeamCityTestRunner(config=config)
    unittest.main(module=None, argv=[PROG, *unittest_argv], testRunner=runner)


if __name__ == "__main__":
    main()
