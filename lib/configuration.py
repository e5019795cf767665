"""The options for a single backup run and functions for reading configuration files."""

import argparse
import datetime
from pathlib import Path
from typing import NamedTuple

from lib.exceptions import CommandLineError
from lib.snapshots import is_snapshot_name, snapshot_datetime, snapshot_date_format


class Run_Config(NamedTuple):
    """
    Everything needed to run one backup.

    The source and target folders are kept exactly as the user wrote them, since rsync treats a
    source with a trailing slash differently from one without.
    """

    source_dir: str
    target_dir: str
    versioned: bool = False
    exclude_caches: bool = True
    exclude_override: str | None = None
    pass_args: str | None = None
    rsync: str = "rsync"
    link_threshold: int = 1
    plain_output: bool = False
    timestamp: datetime.datetime | None = None


def run_config_from_arguments(args: argparse.Namespace) -> Run_Config:
    """Collect the parsed command line options into a Run_Config."""
    if not args.source_dir:
        raise CommandLineError("Source folder not specified.")

    if not args.target_dir:
        raise CommandLineError("Target folder not specified.")

    return Run_Config(
        source_dir=args.source_dir,
        target_dir=args.target_dir,
        versioned=args.versioned,
        exclude_caches=not args.no_exclude_caches,
        exclude_override=args.exclude_override,
        pass_args=args.pass_args,
        rsync=args.rsync,
        link_threshold=parse_link_threshold(args.link_threshold),
        plain_output=args.plain_output,
        timestamp=parse_timestamp(args.timestamp))


def parse_link_threshold(link_threshold: str) -> int:
    """Parse the --link-threshold argument into a positive whole number."""
    try:
        threshold = int(link_threshold)
    except ValueError:
        raise CommandLineError(f"Invalid value for link threshold: {link_threshold}") from None

    if threshold < 1:
        raise CommandLineError(
            f"Link threshold must be a positive whole number. Got: {link_threshold}")

    return threshold


def parse_timestamp(timestamp: str | None) -> datetime.datetime | None:
    """Parse the --timestamp argument, which uses the same format as snapshot names."""
    if not timestamp:
        return None

    if not is_snapshot_name(timestamp):
        raise CommandLineError(
            f"Timestamp must be twelve digits in the format {snapshot_date_format}: {timestamp}")

    return snapshot_datetime(timestamp)


def read_configuation_file(config_file: Path) -> list[str]:
    """Parse a configuration file into command line arguments."""
    try:
        with config_file.open(encoding="utf8") as file:
            arguments: list[str] = []
            for line_number, line_raw in enumerate(file, 1):
                line = line_raw.strip()
                if not line or line.startswith("#"):
                    continue

                if ":" not in line:
                    raise CommandLineError(
                        f"Line #{line_number} of {config_file} has no colon: {line}")
                parameter_raw, value_raw = line.split(":", maxsplit=1)

                parameter = "-".join(parameter_raw.lower().split())
                if parameter == "config":
                    raise CommandLineError(
                        "The parameter `config` within a configuration file has no effect.")
                value = remove_quotes(value_raw)
                arguments.append(f"--{parameter}={value}" if value else f"--{parameter}")
            return arguments
    except FileNotFoundError:
        raise CommandLineError(f"Configuation file does not exist: {config_file}") from None


def remove_quotes(s: str) -> str:
    """
    After stripping a string of outer whitespace, remove one pair of quotes from the start and end.

    >>> remove_quotes('  "/mnt/backup/folder ending in a space "   ')
    '/mnt/backup/folder ending in a space '

    Strings without quotes are stripped of outer whitespace.

    >>> remove_quotes(' /home/alice  ')
    '/home/alice'

    Quotes inside the string are not affected.

    >>> remove_quotes('--bwlimit=1000 --itemize-changes "x"')
    '--bwlimit=1000 --itemize-changes "x"'

    If the value really begins and ends with quotation marks, add another pair.

    >>> remove_quotes('""quoted""')
    '"quoted"'
    """
    s = s.strip()
    if len(s) > 1 and (s[0] == s[-1] == '"'):
        return s[1:-1]
    return s
