"""Testing code for Link Backup."""
import sys
import unittest
import tempfile
import os
import io
import shutil
import logging
import datetime
import doctest
import json
import random
import string
import platform
from pathlib import Path
from typing import cast

import lib.configuration
import lib.console
import lib.output_stream
from lib.configuration import Run_Config, read_configuation_file
from lib.exceptions import (
    CommandLineError, InvalidSnapshotEntry, SpawnError, StreamDecodeError, abnormal_exit_code)
from lib.argument_parser import parse_command_line
from lib.logs import setup_initial_null_logger
from lib.main import main, logger, exit_code_from_result
from lib.output_stream import Output_Segment, Segment_Kind, demultiplex
from lib.process import Run_Result, run_process
from lib.rsync_arguments import build_rsync_arguments
from lib.snapshots import (
    Resolved_Versioning, all_snapshots, check_snapshot_entry, is_snapshot_name, resolve_versioning,
    snapshot_datetime, snapshot_name)

is_posix = platform.system() != "Windows"


def load_tests(
        loader: unittest.TestLoader,
        tests: unittest.TestSuite,
        pattern: str | None) -> unittest.TestSuite:
    """Include the examples in docstrings when running the tests."""
    for module in (lib.configuration, lib.console, lib.output_stream):
        tests.addTests(doctest.DocTestSuite(module))
    return tests


def main_no_log(args: list[str]) -> int:
    """Run the main() function without logging to a file."""
    return main([*args, "--log", os.devnull])


def random_string(length: int) -> str:
    """Return a string with random ASCII letters of a given length."""
    return "".join(random.choices(string.ascii_letters, k=length))


def create_snapshots(target_path: Path, *names: str) -> None:
    """Create empty snapshot folders with the given names."""
    for name in names:
        (target_path/name).mkdir()


def python_command(code: str) -> list[str]:
    """Create a command that runs Python code in a new interpreter."""
    return [sys.executable, "-c", code]


def collect_segments(
        command: list[str],
        *,
        newline_only: bool = False) -> tuple[list[Output_Segment], Run_Result]:
    """Run a command and return all of its output segments and its result."""
    segments: list[Output_Segment] = []
    result = run_process(command, segments.append, newline_only=newline_only)
    return segments, result


def progress(text: str) -> Output_Segment:
    """Create a progress update segment."""
    return Output_Segment(Segment_Kind.progress, text)


def log_line(text: str) -> Output_Segment:
    """Create a log line segment."""
    return Output_Segment(Segment_Kind.log_line, text)


class Unreadable_Entry:
    """A stand-in for a directory entry whose type cannot be read."""

    def __init__(self, path: Path) -> None:
        """Pretend to be the entry at the given path."""
        self.name = path.name
        self.path = str(path)

    def is_dir(self, *, follow_symlinks: bool = True) -> bool:
        """Fail as if the permissions of the entry's folder were removed."""
        raise PermissionError(13, "Permission denied", self.path)


rsync_output = (
    b"sending incremental file list\nfile.txt\n"
    b"\r          1,024  50%\r          2,048 100%\n"
    b"\nNumber of files: 1\n")


def create_fake_rsync(
        folder: Path,
        exit_code: int = 0,
        output: bytes = rsync_output) -> tuple[Path, Path]:
    """
    Write a script that records its arguments and writes output like rsync does.

    Returns the path to the script and the path of the file where the arguments will be written.
    """
    arguments_file = folder/"arguments.json"
    script = folder/"fake_rsync"
    script.write_text(
f"""#!{sys.executable}
import json
import sys

with open({str(arguments_file)!r}, "w", encoding="utf8") as arguments:
    json.dump(sys.argv[1:], arguments)

sys.stdout.buffer.write({output!r})
sys.exit({exit_code})
""", encoding="utf8")
    script.chmod(0o755)
    return script, arguments_file


def read_arguments(arguments_file: Path) -> list[str]:
    """Read the arguments recorded by the fake rsync script."""
    with arguments_file.open(encoding="utf8") as arguments:
        return json.load(arguments)


class TestCaseWithTemporaryFilesAndFolders(unittest.TestCase):
    """Base class that sets up temporary files and folders."""

    def setUp(self) -> None:
        """Create folders for backup tests."""
        self.source_path = Path(tempfile.mkdtemp())
        self.target_path = Path(tempfile.mkdtemp())
        self.tools_path = Path(tempfile.mkdtemp())
        self.config_path = self.tools_path/"config.txt"

    def tearDown(self) -> None:
        """Delete the temporary directories and reset the logger."""
        setup_initial_null_logger(logger)
        for directory in (self.source_path, self.target_path, self.tools_path):
            shutil.rmtree(directory)


class SnapshotNameTests(unittest.TestCase):
    """Test the naming and ordering of snapshot folders."""

    def test_sorting_snapshot_names_sorts_them_by_date(self) -> None:
        """Test that sorting names as strings is the same as sorting by time."""
        start = datetime.datetime(1999, 12, 31, 23, 59)
        timestamps = [
            start + datetime.timedelta(minutes=random.randrange(100_000_000)) for _ in range(500)]
        names = [snapshot_name(timestamp) for timestamp in timestamps]
        self.assertEqual(sorted(names), [snapshot_name(t) for t in sorted(timestamps)])

    def test_snapshot_name_and_snapshot_datetime_are_inverse_functions(self) -> None:
        """Test that a timestamp to the minute is preserved in a snapshot name."""
        timestamp = datetime.datetime(2024, 2, 29, 7, 5)
        name = snapshot_name(timestamp)
        self.assertEqual(name, "202402290705")
        self.assertEqual(snapshot_datetime(name), timestamp)

    def test_snapshot_names_are_twelve_digit_timestamps(self) -> None:
        """Test which names are accepted as snapshot names."""
        self.assertTrue(is_snapshot_name("202401010000"))
        self.assertTrue(is_snapshot_name(snapshot_name()))
        bad_names = [
            "notadate", "20240101000", "2024010100000", "202413010000", "202402300000",
            "2024-01-01 00-00-00", "20240101000a", "２０２４０１０１００００"]
        for bad_name in bad_names:
            self.assertFalse(is_snapshot_name(bad_name), bad_name)


class VersioningTests(TestCaseWithTemporaryFilesAndFolders):
    """Test finding the previous snapshot and naming the new one."""

    timestamp = datetime.datetime(2024, 3, 3, 12, 30)

    def test_empty_target_has_no_link_reference(self) -> None:
        """Test that the first snapshot is named after the current time and copies everything."""
        versioning = resolve_versioning(self.target_path, timestamp=self.timestamp)
        self.assertEqual(versioning.new_snapshot_path, self.target_path/"202403031230")
        self.assertIsNone(versioning.link_reference)
        self.assertEqual(versioning.snapshot_count, 0)

    def test_new_snapshot_is_named_with_current_time_by_default(self) -> None:
        """Test that leaving out the timestamp uses the current time."""
        before = snapshot_name()
        versioning = resolve_versioning(self.target_path)
        after = snapshot_name()
        self.assertEqual(versioning.new_snapshot_path.parent, self.target_path)
        self.assertTrue(before <= versioning.new_snapshot_path.name <= after)

    def test_latest_snapshot_is_the_link_reference(self) -> None:
        """Test that the most recent snapshot is chosen as the link reference."""
        create_snapshots(self.target_path, "202402020000", "202401010000")
        versioning = resolve_versioning(self.target_path, timestamp=self.timestamp)
        self.assertEqual(versioning.link_reference, self.target_path/"202402020000")
        self.assertEqual(versioning.snapshot_count, 2)

    def test_link_reference_is_an_absolute_path(self) -> None:
        """Test that the link reference does not depend on the working directory of rsync."""
        create_snapshots(self.target_path, "202401010000")
        current_directory = Path.cwd()
        try:
            os.chdir(self.target_path.parent)
            versioning = resolve_versioning(Path(self.target_path.name), timestamp=self.timestamp)
        finally:
            os.chdir(current_directory)
        link_reference = cast(Path, versioning.link_reference)
        self.assertTrue(link_reference.is_absolute())
        self.assertTrue(link_reference.samefile(self.target_path/"202401010000"))

    def test_one_snapshot_is_enough_for_a_link_reference_by_default(self) -> None:
        """Test that a single previous snapshot is used for linking."""
        create_snapshots(self.target_path, "202401010000")
        versioning = resolve_versioning(self.target_path, timestamp=self.timestamp)
        self.assertEqual(versioning.link_reference, self.target_path/"202401010000")

    def test_link_threshold_of_two_requires_two_snapshots(self) -> None:
        """Test that the older behavior of requiring two snapshots is available."""
        create_snapshots(self.target_path, "202401010000")
        versioning = resolve_versioning(
            self.target_path,
            timestamp=self.timestamp,
            link_threshold=2)
        self.assertIsNone(versioning.link_reference)

        create_snapshots(self.target_path, "202402020000")
        versioning = resolve_versioning(
            self.target_path,
            timestamp=self.timestamp,
            link_threshold=2)
        self.assertEqual(versioning.link_reference, self.target_path/"202402020000")

    def test_link_threshold_must_be_positive(self) -> None:
        """Test that a link threshold of zero is an error."""
        with self.assertRaises(CommandLineError):
            resolve_versioning(self.target_path, link_threshold=0)

    def test_badly_named_folder_in_target_is_an_error(self) -> None:
        """Test that an entry that is not a dated folder stops the resolution."""
        create_snapshots(self.target_path, "202401010000", "202402020000", "notadate")
        with self.assertRaises(InvalidSnapshotEntry) as error:
            resolve_versioning(self.target_path, timestamp=self.timestamp)
        self.assertIn("notadate", str(error.exception))

    def test_file_with_snapshot_name_in_target_is_an_error(self) -> None:
        """Test that a file named like a snapshot is not accepted as a snapshot."""
        create_snapshots(self.target_path, "202401010000")
        (self.target_path/"202402020000").touch()
        with self.assertRaises(InvalidSnapshotEntry) as error:
            all_snapshots(self.target_path)
        self.assertEqual(
            error.exception.args,
            ("Directory entry 202402020000 is not a directory",))

    def test_entry_with_unreadable_type_is_an_error(self) -> None:
        """Test that an error while checking whether an entry is a folder names the entry."""
        entry_path = self.target_path/"202401010000"
        with self.assertRaises(InvalidSnapshotEntry) as error:
            check_snapshot_entry(cast(os.DirEntry[str], Unreadable_Entry(entry_path)))
        self.assertIn(str(entry_path), str(error.exception))
        self.assertIsInstance(error.exception.__cause__, PermissionError)

    @unittest.skipUnless(is_posix, "Creating symlinks requires privileges on Windows.")
    def test_symlink_to_folder_with_snapshot_name_is_an_error(self) -> None:
        """Test that symbolic links are not followed when checking snapshots."""
        create_snapshots(self.target_path, "202401010000")
        (self.target_path/"202402020000").symlink_to(self.target_path/"202401010000")
        with self.assertRaises(InvalidSnapshotEntry):
            all_snapshots(self.target_path)

    def test_all_snapshots_returns_sorted_names(self) -> None:
        """Test that all_snapshots() lists every snapshot from oldest to newest."""
        names = ["202312312359", "202401010000", "202001010000", "202406151200"]
        create_snapshots(self.target_path, *names)
        self.assertEqual(all_snapshots(self.target_path), sorted(names))

    def test_missing_target_folder_is_an_error(self) -> None:
        """Test that scanning a non-existent target folder raises a CommandLineError."""
        with self.assertRaises(CommandLineError):
            all_snapshots(self.target_path/"does not exist")

    def test_existing_snapshot_with_same_name_is_a_warning(self) -> None:
        """Test that two backups in the same minute are reported but not stopped."""
        create_snapshots(self.target_path, "202403031230")
        with self.assertLogs(level=logging.WARNING) as log_check:
            versioning = resolve_versioning(self.target_path, timestamp=self.timestamp)
        self.assertEqual(versioning.new_snapshot_path, self.target_path/"202403031230")
        self.assertEqual(
            log_check.output,
            ["WARNING:root:A snapshot named 202403031230 already exists and will be written into."])

    def test_resolution_does_not_create_the_new_snapshot(self) -> None:
        """Test that only rsync creates the new snapshot folder."""
        resolve_versioning(self.target_path, timestamp=self.timestamp)
        self.assertEqual(os.listdir(self.target_path), [])


class RsyncArgumentTests(unittest.TestCase):
    """Test the construction of the rsync command line."""

    def test_default_arguments_exclude_caches_before_source_and_target(self) -> None:
        """Test the argument order for a plain backup."""
        config = Run_Config(source_dir="/a", target_dir="/b")
        self.assertEqual(
            build_rsync_arguments(config),
            ["-axP", "--stats", "--exclude", "**Cache**", "--exclude", "**cache**", "/a", "/b"])

    def test_no_exclude_caches_leaves_out_cache_patterns(self) -> None:
        """Test that cache exclusions can be turned off."""
        config = Run_Config(source_dir="/a", target_dir="/b", exclude_caches=False)
        self.assertEqual(build_rsync_arguments(config), ["-axP", "--stats", "/a", "/b"])

    def test_exclude_override_adds_to_cache_exclusions(self) -> None:
        """Test that each override pattern becomes its own exclude option after the cache ones."""
        config = Run_Config(source_dir="/a", target_dir="/b", exclude_override="*.tmp,build/")
        self.assertEqual(
            build_rsync_arguments(config),
            ["-axP", "--stats",
             "--exclude", "**Cache**", "--exclude", "**cache**",
             "--exclude", "*.tmp", "--exclude", "build/",
             "/a", "/b"])

    def test_pass_through_arguments_are_split_on_spaces(self) -> None:
        """Test that pass-through arguments are split on single spaces without quote handling."""
        config = Run_Config(
            source_dir="/a",
            target_dir="/b",
            exclude_caches=False,
            pass_args='--bwlimit=1000 --exclude="My Files"')
        self.assertEqual(
            build_rsync_arguments(config),
            ["-axP", "--stats", "--bwlimit=1000", '--exclude="My', 'Files"', "/a", "/b"])

    def test_versioned_arguments_link_to_previous_snapshot_and_copy_to_new_snapshot(self) -> None:
        """Test that the link reference follows the base options and the new snapshot is last."""
        new_snapshot = Path("/b")/"202402020000"
        previous_snapshot = Path("/b")/"202401010000"
        config = Run_Config(source_dir="/a/", target_dir="/b", versioned=True)
        versioning = Resolved_Versioning(new_snapshot, previous_snapshot, 1)
        self.assertEqual(
            build_rsync_arguments(config, versioning),
            ["-axP", "--stats",
             f"--link-dest={previous_snapshot}",
             "--exclude", "**Cache**", "--exclude", "**cache**",
             "/a/", str(new_snapshot)])

    def test_versioned_arguments_without_link_reference_have_no_link_option(self) -> None:
        """Test that the first snapshot copies everything."""
        new_snapshot = Path("/b")/"202402020000"
        config = Run_Config(source_dir="/a", target_dir="/b", versioned=True, exclude_caches=False)
        versioning = Resolved_Versioning(new_snapshot, None, 0)
        self.assertEqual(
            build_rsync_arguments(config, versioning),
            ["-axP", "--stats", "/a", str(new_snapshot)])

    def test_all_options_appear_in_order(self) -> None:
        """Test the full argument order when every option is used."""
        new_snapshot = Path("/b")/"202402020000"
        previous_snapshot = Path("/b")/"202401010000"
        config = Run_Config(
            source_dir="/a",
            target_dir="/b",
            versioned=True,
            exclude_override="*.iso",
            pass_args="--dry-run --itemize-changes")
        versioning = Resolved_Versioning(new_snapshot, previous_snapshot, 1)
        self.assertEqual(
            build_rsync_arguments(config, versioning),
            ["-axP", "--stats",
             f"--link-dest={previous_snapshot}",
             "--exclude", "**Cache**", "--exclude", "**cache**",
             "--exclude", "*.iso",
             "--dry-run", "--itemize-changes",
             "/a", str(new_snapshot)])

    def test_building_arguments_does_not_change_the_configuration(self) -> None:
        """Test that the same inputs always give the same arguments."""
        config = Run_Config(source_dir="/a", target_dir="/b", versioned=True)
        versioning = Resolved_Versioning(Path("/b")/"202402020000", None, 0)
        first_arguments = build_rsync_arguments(config, versioning)
        self.assertEqual(build_rsync_arguments(config, versioning), first_arguments)
        self.assertEqual(config.target_dir, "/b")


class DemultiplexTests(unittest.TestCase):
    """Test separating progress updates from log lines."""

    def test_progress_and_lines_are_separated(self) -> None:
        """Test that a chunk without a newline is progress and a chunk with newlines is lines."""
        segments = list(demultiplex(io.BytesIO(b"foo\rbar\nbaz\r")))
        self.assertEqual(segments, [progress("foo"), log_line("bar"), log_line("baz")])

    def test_output_without_final_carriage_return_is_not_lost(self) -> None:
        """Test that the last chunk is reported when the stream closes."""
        segments = list(demultiplex(io.BytesIO(b"1%\r2%\rdone\ntotal size is 5\n")))
        self.assertEqual(
            segments,
            [progress("1%"), progress("2%"), log_line("done"), log_line("total size is 5")])

    def test_empty_chunks_produce_nothing(self) -> None:
        """Test that repeated carriage returns and an empty stream produce no segments."""
        self.assertEqual(list(demultiplex(io.BytesIO(b""))), [])
        self.assertEqual(list(demultiplex(io.BytesIO(b"\r\r\r"))), [])
        self.assertEqual(list(demultiplex(io.BytesIO(b"\r\rfoo\r\r"))), [progress("foo")])

    def test_blank_lines_inside_a_chunk_are_log_lines(self) -> None:
        """Test that only the empty piece after the last newline is dropped."""
        segments = list(demultiplex(io.BytesIO(b"one\n\ntwo\n")))
        self.assertEqual(segments, [log_line("one"), log_line(""), log_line("two")])

    def test_chunks_split_across_reads_are_reassembled(self) -> None:
        """Test that segments do not depend on how many bytes are read at once."""
        data = "café 10%\rcafé 100%\nnaïve.txt\n".encode()
        expected = [progress("café 10%"), log_line("café 100%"), log_line("naïve.txt")]
        for chunk_size in [1, 2, 3, 7, 1024]:
            segments = list(demultiplex(io.BytesIO(data), chunk_size=chunk_size))
            self.assertEqual(segments, expected, chunk_size)

    def test_invalid_utf8_raises_stream_decode_error(self) -> None:
        """Test that undecodable output is an error instead of being replaced."""
        segments = demultiplex(io.BytesIO(b"ok\r\xff\xfe\r"))
        self.assertEqual(next(segments), progress("ok"))
        with self.assertRaises(StreamDecodeError) as error:
            next(segments)
        self.assertIn(repr(b"\xff\xfe"), str(error.exception))

    def test_newline_only_mode_ignores_carriage_returns(self) -> None:
        """Test the plain output mode where every line is a log line."""
        segments = list(demultiplex(io.BytesIO(b"foo\rbar\nbaz\r\n\nend"), newline_only=True))
        self.assertEqual(segments, [log_line("foo\rbar"), log_line("baz\r"), log_line(""),
                                    log_line("end")])

    def test_long_output_without_delimiter_is_read_in_one_pass(self) -> None:
        """Test that a long line read in many small pieces is not re-scanned for every piece."""
        line = b"some/dir/"*500_000
        segments = list(demultiplex(io.BytesIO(line + b"\n\rdone\r"), chunk_size=16))
        self.assertEqual(segments, [log_line(line.decode()), progress("done")])

        lines = b"some/dir/\n"*500_000
        segments = list(demultiplex(io.BytesIO(lines), newline_only=True, chunk_size=16))
        self.assertEqual(len(segments), 500_000)
        self.assertEqual(set(segments), {log_line("some/dir/")})

    def test_demultiplex_is_lazy(self) -> None:
        """Test that segments are generated before the whole stream is read."""
        stream = io.BytesIO(b"first\r" + b"x"*100_000)
        segments = demultiplex(stream, chunk_size=16)
        self.assertEqual(next(segments), progress("first"))
        self.assertLess(stream.tell(), 100)


class ProcessTests(unittest.TestCase):
    """Test running a child process while reading its output."""

    def test_output_and_exit_code_are_reported(self) -> None:
        """Test that a child's output is split into segments and its exit code returned."""
        segments, result = collect_segments(python_command(
            "import sys; sys.stdout.buffer.write(b'50%\\r100%\\nfile.txt\\n'); sys.exit(0)"))
        self.assertEqual(segments, [progress("50%"), log_line("100%"), log_line("file.txt")])
        self.assertEqual(result, Run_Result(0))
        self.assertTrue(result.succeeded)

    def test_nonzero_exit_code_is_returned_unchanged(self) -> None:
        """Test that the child's exit code is passed through."""
        _, result = collect_segments(python_command("import sys; sys.exit(23)"))
        self.assertEqual(result.exit_code, 23)
        self.assertIsNone(result.signal_number)
        self.assertFalse(result.succeeded)

    def test_output_larger_than_pipe_buffer_does_not_deadlock(self) -> None:
        """Test that a child writing far more than a pipe buffer holds finishes normally."""
        update_count = 20_000
        segments, result = collect_segments(python_command(
            "import sys\n"
            f"sys.stdout.buffer.write((b'x'*99 + b'\\r')*{update_count})\n"
            "sys.stdout.flush()\n"
            "sys.exit(3)"))
        self.assertEqual(result.exit_code, 3)
        self.assertEqual(len(segments), update_count)
        self.assertTrue(all(segment == progress("x"*99) for segment in segments))

    def test_error_output_larger_than_pipe_buffer_does_not_deadlock(self) -> None:
        """Test that a child filling the stderr pipe finishes and its errors are logged."""
        line_count = 500
        with self.assertLogs(level=logging.WARNING) as log_check:
            segments, result = collect_segments(python_command(
                "import sys\n"
                f"sys.stderr.write(('e'*200 + '\\n')*{line_count})\n"
                "sys.stdout.buffer.write(b'done\\n')"))
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(segments, [log_line("done")])
        self.assertEqual(log_check.output, [f"WARNING:root:{'e'*200}"]*line_count)

    def test_all_output_is_handled_before_result_is_returned(self) -> None:
        """Test that output written just before exiting is not lost."""
        segments, result = collect_segments(python_command(
            "import sys, time\n"
            "time.sleep(0.2)\n"
            "sys.stdout.buffer.write(b'last words\\n')\n"
            "sys.exit(5)"))
        self.assertEqual(segments, [log_line("last words")])
        self.assertEqual(result.exit_code, 5)

    def test_newline_only_mode_is_passed_to_demultiplexer(self) -> None:
        """Test that plain output mode treats carriage returns as text."""
        segments, _ = collect_segments(
            python_command("import sys; sys.stdout.buffer.write(b'a\\rb\\n')"),
            newline_only=True)
        self.assertEqual(segments, [log_line("a\rb")])

    def test_missing_program_raises_spawn_error(self) -> None:
        """Test that a program that does not exist causes a SpawnError."""
        program = str(Path(tempfile.gettempdir())/random_string(30))
        with self.assertRaises(SpawnError) as error:
            run_process([program], lambda _: None)
        self.assertIsInstance(error.exception.__cause__, OSError)
        self.assertIn(program, str(error.exception))

    def test_undecodable_output_kills_child_and_raises(self) -> None:
        """Test that invalid UTF-8 stops the run even if the child would keep running."""
        segments: list[Output_Segment] = []
        with self.assertRaises(StreamDecodeError):
            run_process(
                python_command(
                    "import sys, time\n"
                    "sys.stdout.buffer.write(b'ok\\r\\xff\\r')\n"
                    "sys.stdout.flush()\n"
                    "time.sleep(60)"),
                segments.append)
        self.assertEqual(segments, [progress("ok")])

    @unittest.skipUnless(is_posix, "Signals are only reported on POSIX systems.")
    def test_child_killed_by_signal_has_no_exit_code(self) -> None:
        """Test that a signal-terminated child is reported with its signal number."""
        _, result = collect_segments(python_command(
            "import os, signal; os.kill(os.getpid(), signal.SIGKILL)"))
        self.assertIsNone(result.exit_code)
        self.assertEqual(result.signal_number, 9)


class ExitCodeTests(unittest.TestCase):
    """Test the conversion of the rsync result into the exit code of the program."""

    def test_exit_codes_pass_through(self) -> None:
        """Test that rsync exit codes become the program's exit code."""
        for code in [0, 1, 23, 24, 255]:
            self.assertEqual(exit_code_from_result(Run_Result(code)), code)

    def test_signal_termination_is_abnormal_exit(self) -> None:
        """Test that a killed rsync gives the abnormal exit code."""
        with self.assertLogs(level=logging.ERROR) as log_check:
            self.assertEqual(exit_code_from_result(Run_Result(-15)), abnormal_exit_code)
        self.assertEqual(log_check.output, ["ERROR:root:rsync was killed by signal 15"])


class ConfigurationFileTests(TestCaseWithTemporaryFilesAndFolders):
    """Test configuration file functionality."""

    def test_configuration_file_reading_is_insensitive_to_variant_writings(self) -> None:
        """Test that parameter names may use any case and spaces instead of dashes."""
        self.config_path.write_text(
"""
# Nightly backup
SOURCE DIR:     /home/alice/
target-dir:   /mnt/backups/alice
Versioned   :
Exclude Override: "*.iso,Downloads/ "
pass args: --bwlimit=1000 --itemize-changes
""", encoding="utf8")
        command_line = read_configuation_file(self.config_path)
        self.assertEqual(command_line, [
            "--source-dir=/home/alice/",
            "--target-dir=/mnt/backups/alice",
            "--versioned",
            "--exclude-override=*.iso,Downloads/ ",
            "--pass-args=--bwlimit=1000 --itemize-changes"])

        args = parse_command_line(command_line)
        self.assertEqual(args.source_dir, "/home/alice/")
        self.assertEqual(args.target_dir, "/mnt/backups/alice")
        self.assertTrue(args.versioned)
        self.assertEqual(args.exclude_override, "*.iso,Downloads/ ")
        self.assertEqual(args.pass_args, "--bwlimit=1000 --itemize-changes")

    def test_command_line_options_override_config_file_options(self) -> None:
        """Test that command line options override file configurations and leave others alone."""
        self.config_path.write_text(
"""
source dir: /home/alice
target dir: /mnt/old_backups
link threshold: 2
""", encoding="utf8")
        options = parse_command_line([
            "-t", "/mnt/new_backups",
            "-c", str(self.config_path)])
        self.assertEqual(options.source_dir, "/home/alice")
        self.assertEqual(options.target_dir, "/mnt/new_backups")
        self.assertEqual(options.link_threshold, "2")

    def test_config_parameter_inside_config_file_is_an_error(self) -> None:
        """Test that recursive configuration files are not allowed."""
        self.config_path.write_text("config: other_config.txt\n", encoding="utf8")
        with self.assertRaises(CommandLineError):
            read_configuation_file(self.config_path)

    def test_line_without_colon_is_an_error(self) -> None:
        """Test that a line without a parameter separator is reported with its line number."""
        self.config_path.write_text("# comment\nversioned\n", encoding="utf8")
        with self.assertRaises(CommandLineError) as error:
            read_configuation_file(self.config_path)
        self.assertIn("Line #2", str(error.exception))

    def test_missing_configuration_file_is_an_error(self) -> None:
        """Test that a missing configuration file is reported as a command line error."""
        with self.assertLogs(level=logging.ERROR) as log_check:
            exit_code = main_no_log(["-c", str(self.tools_path/"missing.txt")])
        self.assertEqual(exit_code, CommandLineError.exit_code)
        self.assertEqual(len(log_check.output), 1)
        self.assertIn("Configuation file does not exist", log_check.output[0])


class ErrorTests(TestCaseWithTemporaryFilesAndFolders):
    """Test that bad user inputs are reported with the correct exit codes."""

    def test_no_source_folder_specified_is_an_error(self) -> None:
        """Test that omitting the source folder prints the correct error message."""
        with self.assertLogs(level=logging.ERROR) as log_check:
            exit_code = main_no_log(["-t", str(self.target_path)])
        self.assertEqual(exit_code, CommandLineError.exit_code)
        self.assertEqual(log_check.output, ["ERROR:root:Source folder not specified."])

    def test_no_target_folder_specified_is_an_error(self) -> None:
        """Test that omitting the target folder prints the correct error message."""
        with self.assertLogs(level=logging.ERROR) as log_check:
            exit_code = main_no_log(["-s", str(self.source_path)])
        self.assertEqual(exit_code, CommandLineError.exit_code)
        self.assertEqual(log_check.output, ["ERROR:root:Target folder not specified."])

    def test_non_existent_source_folder_is_an_error(self) -> None:
        """Test that a non-existent source folder prints the correct error message."""
        source_folder = random_string(50)
        with self.assertLogs(level=logging.ERROR) as log_check:
            exit_code = main_no_log(["-s", source_folder, "-t", str(self.target_path)])
        self.assertEqual(exit_code, CommandLineError.exit_code)
        self.assertEqual(
            log_check.output,
            [f"ERROR:root:Could not find source folder: {source_folder}"])

    def test_target_that_is_a_file_is_an_error(self) -> None:
        """Test that backing up to an existing file is refused."""
        target_file = self.tools_path/"file.txt"
        target_file.touch()
        with self.assertLogs(level=logging.ERROR):
            exit_code = main_no_log(["-s", str(self.source_path), "-t", str(target_file)])
        self.assertEqual(exit_code, CommandLineError.exit_code)

    def test_invalid_link_threshold_is_an_error(self) -> None:
        """Test that the link threshold must be a positive whole number."""
        for threshold in ["0", "-1", "two"]:
            with self.assertLogs(level=logging.ERROR):
                exit_code = main_no_log([
                    "-s", str(self.source_path),
                    "-t", str(self.target_path),
                    "--link-threshold", threshold])
            self.assertEqual(exit_code, CommandLineError.exit_code, threshold)

    def test_timestamp_must_be_twelve_digits(self) -> None:
        """Test that a timestamp that strptime would accept but is not a snapshot name is refused."""
        for timestamp in ["2024311230", "20240303123", "２０２４０３０３１２３０", "202413031230"]:
            with self.assertLogs(level=logging.ERROR) as log_check:
                exit_code = main_no_log([
                    "-s", str(self.source_path),
                    "-t", str(self.target_path),
                    "--versioned",
                    "--timestamp", timestamp])
            self.assertEqual(exit_code, CommandLineError.exit_code, timestamp)
            self.assertIn("Timestamp must be twelve digits", log_check.output[0])
            self.assertEqual(os.listdir(self.target_path), [])

    def test_invalid_entry_in_target_stops_backup_before_running_rsync(self) -> None:
        """Test that a bad target folder is reported before rsync would be started."""
        create_snapshots(self.target_path, "202401010000", "notadate")
        missing_rsync = str(self.tools_path/"missing_rsync")
        with self.assertLogs(level=logging.ERROR) as log_check:
            exit_code = main_no_log([
                "-s", str(self.source_path),
                "-t", str(self.target_path),
                "--versioned",
                "--rsync", missing_rsync])
        self.assertEqual(exit_code, InvalidSnapshotEntry.exit_code)
        self.assertEqual(len(log_check.output), 1)
        self.assertIn("notadate", log_check.output[0])
        self.assertEqual(sorted(os.listdir(self.target_path)), ["202401010000", "notadate"])

    def test_missing_rsync_is_a_spawn_error(self) -> None:
        """Test that an rsync program that cannot be found gives the spawn error exit code."""
        missing_rsync = str(self.tools_path/"missing_rsync")
        with self.assertLogs(level=logging.ERROR) as log_check:
            exit_code = main_no_log([
                "-s", str(self.source_path),
                "-t", str(self.target_path),
                "--rsync", missing_rsync])
        self.assertEqual(exit_code, SpawnError.exit_code)
        self.assertIn(f"Could not run {missing_rsync}", log_check.output[0])

    def test_help_returns_zero(self) -> None:
        """Test that no arguments prints help and succeeds."""
        with io.StringIO() as help_text:
            sys.stdout, original_stdout = help_text, sys.stdout
            try:
                exit_code = main([])
            finally:
                sys.stdout = original_stdout
            self.assertIn("--versioned", help_text.getvalue())
        self.assertEqual(exit_code, 0)


@unittest.skipUnless(is_posix, "The fake rsync script needs a shebang line.")
class BackupRunTests(TestCaseWithTemporaryFilesAndFolders):
    """Test complete runs against a script that imitates rsync."""

    def run_fake_backup(
            self,
            *options: str,
            exit_code: int = 0,
            output: bytes = rsync_output) -> tuple[int, list[str]]:
        """Run a backup with the fake rsync and return the exit code and the rsync arguments."""
        fake_rsync, arguments_file = create_fake_rsync(self.tools_path, exit_code, output)
        backup_exit_code = main_no_log([
            "-s", str(self.source_path),
            "-t", str(self.target_path),
            "--rsync", str(fake_rsync),
            *options])
        return backup_exit_code, read_arguments(arguments_file)

    def test_plain_backup_passes_source_and_target_to_rsync(self) -> None:
        """Test that an unversioned backup copies directly into the target folder."""
        exit_code, arguments = self.run_fake_backup()
        self.assertEqual(exit_code, 0)
        self.assertEqual(
            arguments,
            ["-axP", "--stats", "--exclude", "**Cache**", "--exclude", "**cache**",
             str(self.source_path), str(self.target_path)])

    def test_versioned_backup_links_to_latest_snapshot(self) -> None:
        """Test that a versioned backup writes to a new dated folder linked to the latest one."""
        create_snapshots(self.target_path, "202401010000", "202402020000")
        exit_code, arguments = self.run_fake_backup(
            "--versioned",
            "--no-exclude-caches",
            "--timestamp", "202403031230")
        self.assertEqual(exit_code, 0)
        self.assertEqual(
            arguments,
            ["-axP", "--stats",
             f"--link-dest={self.target_path/'202402020000'}",
             str(self.source_path), str(self.target_path/"202403031230")])

    def test_first_versioned_backup_creates_missing_target_folder(self) -> None:
        """Test that the target folder is created for the first versioned backup."""
        shutil.rmtree(self.target_path)
        exit_code, arguments = self.run_fake_backup("--versioned", "--timestamp", "202403031230")
        self.assertEqual(exit_code, 0)
        self.assertTrue(self.target_path.is_dir())
        self.assertFalse(any(argument.startswith("--link-dest") for argument in arguments))
        self.assertEqual(arguments[-1], str(self.target_path/"202403031230"))

    def test_rsync_exit_code_is_program_exit_code(self) -> None:
        """Test that a failing rsync exit code is passed through."""
        with self.assertLogs(level=logging.WARNING) as log_check:
            exit_code, _ = self.run_fake_backup(exit_code=23)
        self.assertEqual(exit_code, 23)
        self.assertEqual(log_check.output, ["WARNING:root:rsync exited with code 23"])

    def test_undecodable_rsync_output_gives_decode_error_exit_code(self) -> None:
        """Test that rsync output that is not UTF-8 ends the backup with its own exit code."""
        with self.assertLogs(level=logging.ERROR) as log_check:
            exit_code, _ = self.run_fake_backup(output=b"ok\r\xff\r")
        self.assertEqual(exit_code, StreamDecodeError.exit_code)
        self.assertEqual(len(log_check.output), 1)
        self.assertIn("Output is not valid UTF-8", log_check.output[0])

    def test_rsync_log_lines_are_logged_and_progress_is_not(self) -> None:
        """Test that log lines appear in the log at the info level and progress does not."""
        with self.assertLogs(level=logging.INFO) as log_check:
            self.run_fake_backup()
        self.assertIn("INFO:root:sending incremental file list", log_check.output)
        self.assertIn("INFO:root:file.txt", log_check.output)
        self.assertIn("INFO:root:Number of files: 1", log_check.output)
        self.assertFalse(any("1,024" in line for line in log_check.output), log_check.output)

    def test_debug_option_logs_progress_updates(self) -> None:
        """Test that progress updates are logged with --debug."""
        with self.assertLogs(level=logging.DEBUG) as log_check:
            self.run_fake_backup("--debug")
        self.assertIn("DEBUG:root:Progress:           1,024  50%", log_check.output)

    def test_plain_output_logs_progress_as_lines(self) -> None:
        """Test that --plain-output treats carriage returns as part of the text."""
        with self.assertLogs(level=logging.INFO) as log_check:
            self.run_fake_backup("--plain-output")
        self.assertIn("INFO:root:\r          1,024  50%\r          2,048 100%", log_check.output)

    def test_configuration_file_options_reach_rsync(self) -> None:
        """Test that options in a configuration file are used to build the rsync command."""
        self.config_path.write_text(
"""
no exclude caches:
exclude override: *.iso
pass args: --dry-run
""", encoding="utf8")
        exit_code, arguments = self.run_fake_backup("--config", str(self.config_path))
        self.assertEqual(exit_code, 0)
        self.assertEqual(
            arguments,
            ["-axP", "--stats", "--exclude", "*.iso", "--dry-run",
             str(self.source_path), str(self.target_path)])


if __name__ == "__main__":
    unittest.main()
