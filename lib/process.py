"""Run rsync while reading its output."""

import io
import logging
import subprocess
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import NamedTuple, cast

from lib.exceptions import SpawnError
from lib.output_stream import Output_Segment, demultiplex

logger = logging.getLogger()


class Run_Result(NamedTuple):
    """
    How the child process ended.

    The return code follows subprocess conventions: a negative number -N means the process was
    killed by signal N.
    """

    return_code: int

    @property
    def exit_code(self) -> int | None:
        """The exit code of the process, or None if it was killed by a signal."""
        return self.return_code if self.return_code >= 0 else None

    @property
    def signal_number(self) -> int | None:
        """The signal that killed the process, or None if it exited on its own."""
        return -self.return_code if self.return_code < 0 else None

    @property
    def succeeded(self) -> bool:
        """Whether the process exited with a code of zero."""
        return self.return_code == 0


def log_error_output(stream: io.BufferedIOBase) -> None:
    """Log every line the child process writes to stderr as a warning."""
    for line in stream:
        logger.warning("%s", line.decode("utf8", errors="backslashreplace").rstrip("\r\n"))


def run_process(
        command: list[str],
        segment_handler: Callable[[Output_Segment], None],
        *,
        newline_only: bool = False) -> Run_Result:
    """
    Run a command and pass each piece of its output to a handler until the command exits.

    The stdout pipe is read in this thread while other threads wait for the process to exit and
    read stderr. If the pipes were not read while waiting, a process that writes more than a pipe
    buffer holds would block forever. The process's exit status is only returned after all of its
    output has been handled.

    Arguments:
        command: The program to run followed by its arguments.
        segment_handler: A function that is called with every progress update and log line.
        newline_only: Split output on line feeds only instead of recognizing progress updates.

    If the output cannot be handled (for example, it is not valid UTF-8), the process is killed and
    the exception is raised after the process has exited.
    """
    try:
        process = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as error:
        raise SpawnError(f"Could not run {command[0]}: {error}") from error

    with process, ThreadPoolExecutor(max_workers=2) as pool:
        exit_status = pool.submit(process.wait)
        error_output = pool.submit(log_error_output, cast(io.BufferedIOBase, process.stderr))
        try:
            output = cast(io.BufferedIOBase, process.stdout)
            for segment in demultiplex(output, newline_only=newline_only):
                segment_handler(segment)
        except Exception:
            process.kill()
            raise

        error_output.result()
        return Run_Result(exit_status.result())
