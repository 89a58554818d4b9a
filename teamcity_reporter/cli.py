import argparse


def non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be a non-negative integer: {value!r}")
    return number


def parse_args(argv: list[str] | None = None) -> tuple[argparse.Namespace, list[str]]:
    """Parse reporter options; everything else is handed to unittest untouched."""
    parser = argparse.ArgumentParser(
        prog="python -m teamcity_reporter",
        description="Run unittest tests and report them as TeamCity service messages",
        add_help=False,
    )
    parser.add_argument(
        "--output",
        type=str,
        help="Write service messages to this file instead of stdout",
    )
    parser.add_argument(
        "--flow-id",
        dest="flow_id",
        type=non_negative_int,
        help="flowId attached to every message (default: process id)",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        type=str,
        help="Reporter diagnostics log level (default: LOG_LEVEL or WARNING)",
    )
    parser.add_argument(
        "--log-config",
        dest="log_config",
        type=str,
        help="YAML logging config (default: LOG_CONFIG_PATH)",
    )
    return parser.parse_known_args(argv)
