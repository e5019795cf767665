"""Function library for parsing arguments from the command line."""

import os
import shutil
import argparse
import sys
import textwrap
import io
from pathlib import Path

from lib.configuration import read_configuation_file
from lib.logs import default_log_file_name


def format_paragraphs(lines: str, line_length: int) -> str:
    """
    Format multiparagraph text in when printing --help.

    :param lines: A string of text where paragraphs are separated by at least two newlines. Indented
    lines will be preserved as-is.
    :param line_length: The length of the line for word wrapping. Indented lines will not be word
    wrapped.

    :returns string: A single string with word-wrapped lines and paragraphs separated by exactly two
    newlines.
    """
    paragraphs: list[str] = []
    for paragraph_raw in lines.split("\n\n"):
        paragraph = paragraph_raw.strip("\n")
        if not paragraph:
            continue

        paragraphs.append(
            paragraph if paragraph[0].isspace() else textwrap.fill(paragraph, line_length))

    return "\n\n".join(paragraphs)


def format_text(lines: str) -> str:
    """Format unindented paragraphs (program description and epilogue) in --help."""
    width, _ = shutil.get_terminal_size()
    return format_paragraphs(lines, width)


def format_help(lines: str) -> str:
    """Format indented command line argument descriptions in --help."""
    width, _ = shutil.get_terminal_size()
    return format_paragraphs(lines, width - 24)


def argument_parser() -> argparse.ArgumentParser:
    """Create the parser for command line arguments."""
    user_input = argparse.ArgumentParser(
        add_help=False,
        formatter_class=argparse.RawTextHelpFormatter,
        allow_abbrev=False,
        description=format_text(
"""Run backups based on rsync.

Link Backup copies a source folder to a target folder with rsync. With the --versioned option,
every run creates a new folder inside the target folder named after the current date and time
(YYYYMMDDHHMM). Files that have not changed since the most recent versioned backup are hard-linked
to that backup instead of copied, so every dated folder is a full backup while unchanged files take
up no extra space.

Technical notes:

- When --versioned is used, every entry in the target folder must be a folder named with a
twelve-digit timestamp. Anything else stops the backup before rsync is run, since linking against
the wrong folder would break the chain of hard-linked backups.

- Two versioned backups started in the same minute write into the same dated folder.

- The exit code is the exit code of rsync. If rsync is killed by a signal, the exit code is 128.
Errors found before rsync runs have exit codes 64 (bad options), 65 (bad target folder contents),
69 (rsync could not be started), 74 (unreadable rsync output), or 70 (unexpected error)."""))

    backup_group = user_input.add_argument_group("Options for backing up")

    backup_group.add_argument("-h", "--help", action="store_true", help=format_help(
"""Show this help message and exit."""))

    backup_group.add_argument("-s", "--source-dir", help=format_help(
"""The directory to back up from. As with rsync, a trailing slash means the contents of the
directory are copied instead of the directory itself."""))

    backup_group.add_argument("-t", "--target-dir", help=format_help(
"""The directory to back up to. With --versioned, this directory holds the dated backups."""))

    backup_group.add_argument("-V", "--versioned", action="store_true", help=format_help(
"""Create a new dated folder in the target directory for this backup and hard-link unchanged
files to the most recent dated folder."""))

    backup_group.add_argument("-n", "--no-exclude-caches", action="store_true", help=format_help(
"""Do not exclude files and folders with "Cache" or "cache" in their names. By default, these are
left out of the backup."""))

    backup_group.add_argument("-E", "--exclude-override", metavar="PATTERNS", help=format_help(
"""A list of rsync exclude patterns separated by commas. These are used in addition to the cache
exclusions unless --no-exclude-caches is also given."""))

    backup_group.add_argument("-p", "--pass-args", metavar="ARGUMENTS", help=format_help(
"""Pass these arguments through to rsync. The arguments are separated by single spaces. No quoting
is supported, so an argument containing a space cannot be passed. Since the arguments usually start
with dashes, attach them with an equals sign: --pass-args="--bwlimit=1000 --itemize-changes"."""))

    backup_group.add_argument("--link-threshold", default="1", help=format_help(
"""The number of previous dated backups that must exist before the most recent one is used for
hard links. The default is 1. Older versions of this program used 2."""))

    backup_group.add_argument("--plain-output", action="store_true", help=format_help(
"""Treat all rsync output as lines separated by newlines instead of separating progress updates
from log lines."""))

    backup_group.add_argument("--rsync", default="rsync", metavar="PROGRAM", help=format_help(
"""The rsync program to run. The default is "rsync" found on the PATH."""))

    other_group = user_input.add_argument_group("Other options")

    other_group.add_argument("-c", "--config", metavar="FILE_NAME", help=format_help(
r"""Read options from a configuration file instead of command-line arguments. The format
of the file should be one option per line with a colon separating the parameter name
and value. The parameter names have the same names as the double-dashed command line options
(i.e., "source-dir", not "s"). If a parameter does not take a value, like "versioned",
leave the value blank. Any line starting with a # will be ignored. As an example:

    # Nightly backup
    source-dir: /home/alice/
    target-dir: /mnt/backups/alice
    versioned:

The parameter names may also be spelled with spaces instead of the dashes and with mixed case:

    Source Dir: /home/alice/
    Target Dir: /mnt/backups/alice
    Versioned:

Whitespace at the beginning and end of the values will be trimmed off. If a value begins or ends
with spaces, surround it with double quotes.

If both --config and other command line options are used and they conflict, then the command
line options override the config file options. Using the parameter "config" inside a
configuration file will cause the program to quit with an error."""))

    other_group.add_argument("--debug", action="store_true", help=format_help(
"""Log information on all actions during a program run, including every rsync progress
update."""))

    other_group.add_argument(
        "-l", "--log",
        default=str(default_log_file_name),
        help=format_help(
f"""Where to log the activity of this program. The default is
{default_log_file_name.name} in the user's home folder. If no
log file is desired, use the file name {os.devnull}."""))

    other_group.add_argument("--error-log", help=format_help(
"""Where to copy log lines that are warnings or errors. This file will only appear when unexpected
events occur."""))

    # The following arguments are only used for testing.

    # Set the time of a versioned backup (YYYYMMDDHHMM) instead of using datetime.datetime.now().
    user_input.add_argument("--timestamp", help=argparse.SUPPRESS)

    return user_input


def parse_command_line(argv: list[str]) -> argparse.Namespace:
    """Parse the command line options and incorporate configuration file options if needed."""
    if argv and argv[0] == sys.argv[0]:
        argv = argv[1:]

    command_line_options = argv or ["--help"]
    user_input = argument_parser()
    command_line_args = user_input.parse_args(command_line_options)
    if command_line_args.config:
        file_options = read_configuation_file(Path(command_line_args.config))
        return user_input.parse_args(file_options + command_line_options)
    else:
        return command_line_args


def print_help(destination: io.TextIOBase | None = None) -> None:
    """Print full manual for Link Backup."""
    argument_parser().print_help(destination)
