"""Functions for finding previous snapshots and naming new ones."""

import datetime
import logging
import os
import re
from pathlib import Path
from typing import NamedTuple

from lib.exceptions import CommandLineError, InvalidSnapshotEntry
from lib.filesystem import absolute_path

logger = logging.getLogger()

snapshot_date_format = "%Y%m%d%H%M"
snapshot_name_pattern = re.compile(r"[0-9]{12}")


class Resolved_Versioning(NamedTuple):
    """Where the next snapshot goes and which previous snapshot it should be hard-linked to."""

    new_snapshot_path: Path
    link_reference: Path | None
    snapshot_count: int


def snapshot_name(timestamp: datetime.datetime | None = None) -> str:
    """Create the folder name for a snapshot taken at the given local time (default: now)."""
    return (timestamp or datetime.datetime.now()).strftime(snapshot_date_format)


def snapshot_datetime(name: str) -> datetime.datetime:
    """Get the timestamp of a snapshot from its folder name."""
    return datetime.datetime.strptime(name, snapshot_date_format)


def is_snapshot_name(name: str) -> bool:
    """
    Check that a folder name is a twelve-digit YYYYMMDDHHMM timestamp.

    The format is fixed-width, so sorting names as strings sorts them by date.
    """
    if not snapshot_name_pattern.fullmatch(name):
        return False

    try:
        snapshot_datetime(name)
        return True
    except ValueError:
        return False


def check_snapshot_entry(entry: os.DirEntry[str]) -> str:
    """
    Return the name of a directory entry if it is a valid snapshot.

    Raise InvalidSnapshotEntry if the entry is not a directory or is not named with a timestamp.
    """
    try:
        is_directory = entry.is_dir(follow_symlinks=False)
    except OSError as error:
        raise InvalidSnapshotEntry(
            f"Could not read the type of {entry.path}: {error}") from error

    if not is_directory:
        raise InvalidSnapshotEntry(f"Directory entry {entry.name} is not a directory")

    if not is_snapshot_name(entry.name):
        raise InvalidSnapshotEntry(
            f"Directory entry name {entry.name} is not in datetime format of YYYYmmddHHMM")

    return entry.name


def all_snapshots(target_root: Path) -> list[str]:
    """
    Return a sorted list of the names of all snapshots in the target folder.

    Every entry in the target folder must be a snapshot. Anything else is an error, since linking
    against the wrong folder would break the chain of hard-linked backups.
    """
    try:
        with os.scandir(target_root) as scan:
            return sorted(check_snapshot_entry(entry) for entry in scan)
    except OSError as error:
        raise CommandLineError(f"Could not read target folder {target_root}: {error}") from None


def resolve_versioning(
        target_root: Path,
        *,
        timestamp: datetime.datetime | None = None,
        link_threshold: int = 1) -> Resolved_Versioning:
    """
    Decide where the new snapshot goes and which previous snapshot to link against.

    Arguments:
        target_root: The folder containing all snapshots.
        timestamp: The time of the new snapshot. If None, use the current local time.
        link_threshold: The number of existing snapshots required before the latest one is used as
            a hard link reference.
    """
    if link_threshold < 1:
        raise CommandLineError(f"Link threshold must be a positive whole number: {link_threshold}")

    snapshots = all_snapshots(target_root)
    new_snapshot_path = target_root/snapshot_name(timestamp)
    if new_snapshot_path.name in snapshots:
        logger.warning("A snapshot named %s already exists and will be written into.",
                       new_snapshot_path.name)

    link_reference = (
        absolute_path(target_root/snapshots[-1])
        if len(snapshots) >= link_threshold
        else None)
    return Resolved_Versioning(new_snapshot_path, link_reference, len(snapshots))
