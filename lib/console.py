"""Functions for displaying information in the console."""

import logging
import argparse

from lib.filesystem import absolute_path

logger = logging.getLogger()


def plural_noun(count: int, word: str) -> str:
    """
    Convert a noun to a simple plural phrase if the count is not one.

    >>> plural_noun(5, "snapshot")
    '5 snapshots'

    >>> plural_noun(1, "snapshot")
    '1 snapshot'
    """
    return f"{count} {word}{'' if count == 1 else 's'}"


def print_run_title(command_line_args: argparse.Namespace, action_title: str) -> None:
    """Print the action taking place."""
    logger.info("")
    divider = "="*(len(action_title) + 2)
    logger.info(divider)
    logger.info(" %s", action_title)
    logger.info(divider)
    logger.info("")

    if command_line_args.config:
        logger.info("Reading configuration from file: %s", absolute_path(command_line_args.config))
        logger.info("")
