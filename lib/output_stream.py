"""Split the output of rsync into progress updates and log lines."""

import enum
import io
from collections.abc import Iterator
from typing import NamedTuple

from lib.exceptions import StreamDecodeError

carriage_return = b"\r"
line_feed = b"\n"


class Segment_Kind(enum.StrEnum):
    """The two kinds of output rsync writes to the terminal."""

    progress = enum.auto()
    log_line = enum.auto()


class Output_Segment(NamedTuple):
    """A single progress update or log line."""

    kind: Segment_Kind
    text: str


def decode(raw: bytes) -> str:
    """Decode output as UTF-8, raising StreamDecodeError with the offending bytes on failure."""
    try:
        return raw.decode("utf8")
    except UnicodeDecodeError as error:
        raise StreamDecodeError(f"Output is not valid UTF-8 ({error.reason}): {raw!r}") from error


def split_chunk(chunk: bytes) -> Iterator[Output_Segment]:
    """
    Turn the bytes between two carriage returns into output segments.

    rsync redraws its progress line by writing a carriage return before each update, so a chunk
    with no line feeds is a progress update. Otherwise, every line in the chunk is a log line.

    The empty piece after a final line feed is not a line, since the line feed ends the line before
    it. Earlier versions of this program reported that piece as a blank log line, so every chunk
    ending in a line feed added an empty line to the log. Blank lines in the middle of a chunk are
    still reported.

    >>> list(split_chunk(b" 32768  50%"))
    [Output_Segment(kind=<Segment_Kind.progress: 'progress'>, text=' 32768  50%')]

    >>> [segment.text for segment in split_chunk(b"sending incremental file list\\nfile.txt\\n")]
    ['sending incremental file list', 'file.txt']
    """
    if line_feed not in chunk:
        yield Output_Segment(Segment_Kind.progress, decode(chunk))
        return

    lines = chunk.split(line_feed)
    if not lines[-1]:
        lines.pop()

    for line in lines:
        yield Output_Segment(Segment_Kind.log_line, decode(line))


def demultiplex(
        stream: io.BufferedIOBase,
        *,
        newline_only: bool = False,
        chunk_size: int = io.DEFAULT_BUFFER_SIZE) -> Iterator[Output_Segment]:
    """
    Read a byte stream until it closes and generate the progress updates and log lines in it.

    Arguments:
        stream: A binary stream, usually the stdout pipe of rsync.
        newline_only: Ignore carriage returns and treat every line as a log line.
        chunk_size: The maximum number of bytes to read at once.

    Data is read with read1() so that each update is reported as soon as it arrives. Empty chunks,
    including the one after a final carriage return, generate nothing. With newline_only, blank
    lines are log lines, but there is no line after a final line feed.

    Each byte read is searched for the delimiter only once, so long stretches of output without a
    delimiter take time in proportion to their length.
    """
    delimiter = line_feed if newline_only else carriage_return
    buffer = bytearray()
    while data := stream.read1(chunk_size):
        if delimiter not in data:
            buffer += data
            continue

        first, *middle, last = data.split(delimiter)
        buffer += first
        yield from segments(bytes(buffer), newline_only=newline_only)
        for chunk in middle:
            yield from segments(chunk, newline_only=newline_only)
        buffer = bytearray(last)

    if buffer:
        yield from segments(bytes(buffer), newline_only=newline_only)


def segments(chunk: bytes, *, newline_only: bool) -> Iterator[Output_Segment]:
    """Generate the output segments of a complete chunk."""
    if newline_only:
        yield Output_Segment(Segment_Kind.log_line, decode(chunk))
    elif chunk:
        yield from split_chunk(chunk)
