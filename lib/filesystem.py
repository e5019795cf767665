"""Functions for inspecting paths on the filesystem."""

import os
from pathlib import Path

from lib.exceptions import CommandLineError


def get_existing_path(path: str | None, folder_type: str) -> Path:
    """
    Return the absolute version of the given existing path.

    Raise an exception if the path does not exist.
    """
    if not path:
        raise CommandLineError(f"{folder_type.capitalize()} not specified.")

    try:
        return absolute_path(path, strict=True)
    except FileNotFoundError:
        raise CommandLineError(f"Could not find {folder_type.lower()}: {path}") from None


def absolute_path(path: Path | str, *, strict: bool = False) -> Path:
    """
    Return an absolute version of the given path.

    Relative path segments (..) are removed. Symlinks are not resolved.

    :param path: The path to be made absolute.
    :param strict: If True, raise a FileNotFoundError if the path does not exist. Symlinks are
    not followed, so an existing symlink to a non-existent file or folder does not raise an error.
    """
    abs_path = Path(os.path.abspath(path))  # noqa: PTH100
    if strict and not abs_path.exists(follow_symlinks=False):
        raise FileNotFoundError(f"The path {abs_path}, resolved from {path} does not exist.")
    return abs_path


def path_or_none(arg: str | None) -> Path | None:
    """Create a Path instance if the input string is valid."""
    return absolute_path(arg) if arg else None
