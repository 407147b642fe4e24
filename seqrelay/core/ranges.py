"""Genomic windows, used to split the variant calling.

Windows can be read from a BED-like file or derived from the sequence
dictionary of an alignment file.
"""
from typing import List

import pandas as pd

from .exceptions import DataError


class GenomicWindow:
    """A genomic interval on a single sequence.

    Coordinates are 0-based and the end is not included, like in BED
    files. The same convention is used by the regions passed to the
    variant caller.
    """

    def __init__(self, chrom: str, start: int, end: int) -> None:
        """Create a genomic window."""
        if start < 0 or end < start:
            raise DataError("invalid window %s:%d-%d" % (chrom, start, end))

        self.chrom = chrom
        self.start = start
        self.end = end

    def __len__(self) -> int:
        """Return the number of bases covered by the window."""
        return self.end - self.start

    @property
    def region(self) -> str:
        """Get the window as a `chrom:start-end` region string."""
        return "%s:%d-%d" % (self.chrom, self.start, self.end)

    def __repr__(self) -> str:
        """Return the string representation for the window."""
        return self.region

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GenomicWindow):
            return NotImplemented
        return (self.chrom, self.start, self.end) == (
            other.chrom,
            other.start,
            other.end,
        )

    def __hash__(self) -> int:
        return hash((self.chrom, self.start, self.end))

    def __lt__(self, other: "GenomicWindow") -> bool:
        """Check whether a window is less than another.

        A window `a` is less than the window `b` if `a.chrom < b.chrom`
        or `a.chrom == b.chrom` and `a` starts (or ends) before `b`.
        """
        return (self.chrom, self.start, self.end) < (
            other.chrom,
            other.start,
            other.end,
        )


def load_windows(filename: str) -> List[GenomicWindow]:
    """Read the windows from a tab separated file.

    The first three columns (sequence name, start, end) are used, any
    other column is ignored. Lines starting with `#` are comments. The
    order of the file is preserved.
    """
    try:
        table = pd.read_csv(
            filename,
            sep="\t",
            header=None,
            comment="#",
            usecols=[0, 1, 2],
            dtype={0: str, 1: "int64", 2: "int64"},
        )
    except pd.errors.EmptyDataError:
        return []
    except (ValueError, pd.errors.ParserError) as error:
        raise DataError("invalid windows file %s: %s" % (filename, error)) from error

    return [
        GenomicWindow(chrom, int(start), int(end))
        for chrom, start, end in table.itertuples(index=False, name=None)
    ]


def derive_windows(sam_header: str) -> List[GenomicWindow]:
    """Create one window for each sequence of a sequence dictionary.

    Args:
        sam_header: the SAM header of an alignment file. Only the `@SQ`
                    lines are used.
    Returns:
        A window for each distinct sequence name, spanning from 0 to
        the length of the sequence, in the order of the dictionary.

    """
    windows: List[GenomicWindow] = []
    seen = set()
    for line in sam_header.splitlines():
        if not line.startswith("@SQ"):
            continue

        tags = dict(
            field.split(":", 1) for field in line.split("\t")[1:] if ":" in field
        )
        if "SN" not in tags or "LN" not in tags:
            raise DataError("invalid sequence dictionary line: %s" % line)

        name = tags["SN"]
        if name in seen:
            continue

        try:
            length = int(tags["LN"])
        except ValueError as error:
            raise DataError("invalid sequence length for %s" % name) from error

        seen.add(name)
        windows.append(GenomicWindow(name, 0, length))

    return windows
