"""Build the argument list for rsync."""

from lib.configuration import Run_Config
from lib.snapshots import Resolved_Versioning

base_arguments = ["-axP", "--stats"]
cache_patterns = ["**Cache**", "**cache**"]


def build_rsync_arguments(
        config: Run_Config,
        versioning: Resolved_Versioning | None = None) -> list[str]:
    """
    Create the rsync arguments for a backup.

    rsync is sensitive to argument order: all options come first, then the source and destination.
    When versioning is given, its new snapshot path replaces the configured target folder.

    Arguments:
        config: The options for this run.
        versioning: The result of resolve_versioning() for versioned backups, None otherwise.
    """
    arguments = list(base_arguments)

    if versioning and versioning.link_reference:
        arguments.append(f"--link-dest={versioning.link_reference}")

    if config.exclude_caches:
        for pattern in cache_patterns:
            arguments.extend(["--exclude", pattern])

    if config.exclude_override is not None:
        for pattern in config.exclude_override.split(","):
            arguments.extend(["--exclude", pattern])

    # No quoting: an argument containing a space cannot be passed through.
    if config.pass_args is not None:
        arguments.extend(config.pass_args.split(" "))

    target = str(versioning.new_snapshot_path) if versioning else config.target_dir
    arguments.extend([config.source_dir, target])
    return arguments
