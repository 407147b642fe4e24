"""A collection of utility function, shared across modules."""
import logging
import os
import shutil
import stat
import tempfile
from argparse import ArgumentTypeError
from contextlib import contextmanager
from logging import Logger
from typing import Generator, List, Optional


def create_logger(
    logger_name: str, handler: Optional[logging.Handler] = None, verbose: bool = False
) -> Logger:
    """Create a named logger and add a handler to this."""
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if handler:
        logger.addHandler(handler)

    return logger


def make_fifo(path: str) -> bool:
    """Create a named pipe, unless it already exists.

    A FIFO left behind by a previous failed run is reused. Any other
    kind of file at `path` is an error.

    Returns:
        bool: `True` if the FIFO has been created, `False` if it was
        already available.

    """
    if os.path.exists(path):
        if not stat.S_ISFIFO(os.stat(path).st_mode):
            raise FileExistsError("%s exists and it is not a FIFO" % path)
        return False

    os.mkfifo(path)
    return True


@contextmanager
def temporary_directory(
    root: Optional[str], prefix: str, logger: Logger
) -> Generator[str, None, None]:
    """Create a temporary working directory and always try to remove it.

    The directory is created inside `root` (or the system default
    temporary directory). On the success path it is removed with all
    its content; on failure the removal is attempted anyway and a
    warning is logged if it cannot be performed.
    """
    if root is not None:
        os.makedirs(root, exist_ok=True)
    directory = tempfile.mkdtemp(prefix=prefix, dir=root)
    logger.debug("Created temporary directory %s", directory)
    try:
        yield directory
    except BaseException:
        shutil.rmtree(
            directory,
            onerror=lambda _func, path, _exc: logger.warning(
                "Cannot remove temporary file %s", path
            ),
        )
        raise
    else:
        shutil.rmtree(directory)
        logger.debug("Removed temporary directory %s", directory)


def is_nonempty_file(filename: str) -> bool:
    """Check if a file exists and contains at least one byte."""
    return os.path.isfile(filename) and os.path.getsize(filename) > 0


def tail_lines(filename: str, n_lines: int = 5) -> List[str]:
    """Return the last non-empty lines of a text file, if it exists."""
    if not os.path.isfile(filename):
        return []

    with open(filename, errors="replace") as fd:
        lines = [line.rstrip("\n") for line in fd if line.strip()]
    return lines[-n_lines:]


def parsed_bool(raw_value: str) -> bool:
    """Parse a 'true/false' command line value."""
    value = raw_value.strip().lower()
    if value in ("true", "t", "yes", "y", "1"):
        return True
    elif value in ("false", "f", "no", "n", "0"):
        return False
    else:
        raise ArgumentTypeError("expected 'true' or 'false', got '%s'" % raw_value)


def comma_list(raw_value: str) -> List[str]:
    """Split a comma separated command line value, dropping empty items."""
    return [item.strip() for item in raw_value.split(",") if item.strip()]


def default_prefix(filename: str) -> str:
    """Get an output prefix from the basename of an input file.

    All the known sequencing extensions are removed, in order to obtain
    `sample.R1` from `sample.R1.fastq.gz`.
    """
    basename = os.path.basename(filename)
    for extension in (".gz", ".fastq", ".fq", ".bam"):
        if basename.lower().endswith(extension):
            basename = basename[: -len(extension)]
    return basename
