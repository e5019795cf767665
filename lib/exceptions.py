"""Exceptions to report errors."""

abnormal_exit_code = 128
unexpected_error_exit_code = 70


class CommandLineError(ValueError):
    """An exception class to catch invalid command line parameters."""

    exit_code = 64


class InvalidSnapshotEntry(ValueError):
    """An exception raised when the target folder contains something other than dated snapshots."""

    exit_code = 65


class SpawnError(OSError):
    """An exception raised when the transfer program cannot be started."""

    exit_code = 69


class StreamDecodeError(ValueError):
    """An exception raised when the transfer program writes output that is not valid UTF-8."""

    exit_code = 74
