"""Run a single backup from start to finish."""

import argparse
import logging
import shlex
from pathlib import Path

from lib.argument_parser import parse_command_line, print_help
from lib.configuration import Run_Config, run_config_from_arguments
from lib.console import plural_noun, print_run_title
from lib.exceptions import (
    CommandLineError, InvalidSnapshotEntry, SpawnError, StreamDecodeError,
    abnormal_exit_code, unexpected_error_exit_code)
from lib.filesystem import absolute_path, get_existing_path
from lib.logs import setup_initial_null_logger, setup_log_file
from lib.output_stream import Output_Segment, Segment_Kind
from lib.process import Run_Result, run_process
from lib.rsync_arguments import build_rsync_arguments
from lib.snapshots import Resolved_Versioning, resolve_versioning

logger = logging.getLogger()
setup_initial_null_logger(logger)


def log_rsync_output(segment: Output_Segment) -> None:
    """Log rsync progress updates at the debug level and all other lines at the info level."""
    if segment.kind == Segment_Kind.progress:
        logger.debug("Progress: %s", segment.text)
    else:
        logger.info("%s", segment.text)


def check_paths_for_validity(config: Run_Config) -> None:
    """Check the given paths for validity and raise an exception for improper inputs."""
    get_existing_path(config.source_dir, "source folder")

    target_root = absolute_path(config.target_dir)
    if target_root.exists() and not target_root.is_dir():
        raise CommandLineError(f"Target location exists but is not a folder: {target_root}")


def prepare_versioned_target(config: Run_Config) -> Resolved_Versioning:
    """Create the target folder if needed and choose the new snapshot and its link reference."""
    target_root = Path(config.target_dir)
    if not target_root.exists():
        logger.info("Creating target folder: %s", absolute_path(target_root))
        target_root.mkdir(parents=True)

    versioning = resolve_versioning(
        target_root,
        timestamp=config.timestamp,
        link_threshold=config.link_threshold)

    logger.info("New snapshot     : %s", versioning.new_snapshot_path)
    logger.info("Previous backups : %s", plural_noun(versioning.snapshot_count, "snapshot"))
    if versioning.link_reference:
        logger.info("Linking to       : %s", versioning.link_reference)
    else:
        logger.info("No link reference. Copying everything.")
    return versioning


def exit_code_from_result(result: Run_Result) -> int:
    """Convert the way rsync ended into the exit code of this program."""
    if result.exit_code is None:
        logger.error("rsync was killed by signal %d", result.signal_number)
        return abnormal_exit_code

    if result.succeeded:
        logger.info("rsync finished successfully.")
    else:
        logger.warning("rsync exited with code %d", result.exit_code)
    return result.exit_code


def run_backup(config: Run_Config) -> Run_Result:
    """Build the rsync command for a backup and run it."""
    check_paths_for_validity(config)
    versioning = prepare_versioned_target(config) if config.versioned else None
    arguments = build_rsync_arguments(config, versioning)

    logger.info("")
    logger.info("Running %s", shlex.join([config.rsync, *arguments]))
    return run_process(
        [config.rsync, *arguments],
        log_rsync_output,
        newline_only=config.plain_output)


def start_backup(args: argparse.Namespace) -> int:
    """Parse command line arguments to start a backup and return the exit code of rsync."""
    config = run_config_from_arguments(args)
    print_run_title(args, "Starting versioned backup" if config.versioned else "Starting backup")
    logger.info("Source folder    : %s", config.source_dir)
    logger.info("Target folder    : %s", config.target_dir)
    return exit_code_from_result(run_backup(config))


def main(argv: list[str]) -> int:
    """
    Start the main program.

    :param argv: A list of command line arguments as from sys.argv
    """
    try:
        args = parse_command_line(argv)
        if args.help:
            print_help()
            return 0

        setup_log_file(logger, args.log, args.error_log)
        logger.setLevel(logging.DEBUG if args.debug else logging.INFO)
        logger.debug(args)
        return start_backup(args)
    except (CommandLineError, InvalidSnapshotEntry, SpawnError, StreamDecodeError) as error:
        logger.error(error)
        return error.exit_code
    except Exception:
        logger.exception("The program ended unexpectedly with an error:")
        return unexpected_error_exit_code
