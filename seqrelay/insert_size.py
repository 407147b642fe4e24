"""Estimation of the read length and of the insert size distribution.

The structural variant caller needs, for each discordant reads source,
the mean and the standard deviation of the insert size, the read length
and a histogram of the insert sizes. These values are estimated from a
sample of the full alignment.
"""
import itertools
import os
import re
import subprocess
from typing import IO, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .core.analysis import Analysis
from .core.exceptions import DataError, PipelineError
from .core.executor import Executor

READ_LENGTH_SAMPLE = 10000
INSERT_SIZE_SKIP = 5000000
INSERT_SIZE_SAMPLE = 5000000
DISTRO_MAX_STDEV = 4
DISTRO_RECORDS = 10000

SAM_SECONDARY = 0x100
SAM_SUPPLEMENTARY = 0x800
SAM_PROPER_PAIR = 0x2
SAM_READ1 = 0x40

RE_DISTRO_OUTPUT = re.compile(
    r"mean:\s*([-+0-9.eE]+)\s+stdev:\s*([-+0-9.eE]+|nan)", re.I
)


class InsertSizeStats:
    """The insert size distribution of an alignment."""

    def __init__(
        self, mean: float, stdev: float, read_length: int, histogram: str
    ) -> None:
        self.mean = mean
        self.stdev = stdev
        self.read_length = read_length
        self.histogram = histogram

    def __repr__(self) -> str:
        return "InsertSizeStats(mean=%.2f, stdev=%.2f, read_length=%d)" % (
            self.mean,
            self.stdev,
            self.read_length,
        )


def max_read_length(sam_lines: Iterable[str]) -> int:
    """Return the length of the longest sequence in some SAM records."""
    longest = 0
    for line in sam_lines:
        if line.startswith("@"):
            continue

        fields = line.rstrip("\n").split("\t")
        if len(fields) < 10 or fields[9] == "*":
            continue
        longest = max(longest, len(fields[9]))

    return longest


def sample_records(
    sam_lines: Iterable[str], skip: int, take: int, spill: IO[str]
) -> Iterator[str]:
    """Take a sample from the middle of a stream of SAM records.

    The first `skip` records are skipped and the next `take` are
    yielded. The skipped records are written to `spill`: if the stream
    ends before any record is yielded, the spilled records are used as
    sample instead.
    """
    lines = iter(sam_lines)
    skipped = 0
    for line in lines:
        if skipped < skip:
            spill.write(line)
            skipped += 1
            continue

        yield line
        yield from itertools.islice(lines, take - 1)
        return

    spill.seek(0)
    yield from spill


def template_lengths(sam_lines: Iterable[str]) -> List[int]:
    """Get the absolute template length of the first mates of proper pairs."""
    lengths: List[int] = []
    for line in sam_lines:
        fields = line.split("\t", 9)
        if len(fields) < 9:
            continue

        try:
            flag = int(fields[1])
            length = abs(int(fields[8]))
        except ValueError:
            continue

        if (
            flag & SAM_PROPER_PAIR
            and flag & SAM_READ1
            and not flag & (SAM_SECONDARY | SAM_SUPPLEMENTARY)
            and length > 0
        ):
            lengths.append(length)

    return lengths


def insert_size_stats(lengths: Sequence[int]) -> Tuple[float, float, np.ndarray]:
    """Calculate mean and standard deviation of the insert sizes.

    Outliers are removed first, keeping only the values lower than
    eleven times the median.

    Returns:
        The mean, the standard deviation and the filtered values.

    """
    if not lengths:
        raise DataError("no properly paired read available to estimate the insert size")

    values = np.asarray(lengths, dtype=np.int64)
    median = np.median(values)
    filtered = values[values < median + 10 * median]
    return float(np.mean(filtered)), float(np.std(filtered)), filtered


def write_histogram(values: np.ndarray, filename: str) -> None:
    """Write the density of each insert size, from 0 to the largest one."""
    counts = np.bincount(values)
    density = counts / counts.sum()
    with open(filename, "w") as fd:
        for size, value in enumerate(density):
            fd.write("%d\t%f\n" % (size, value))


def parse_distro_output(output: str) -> Tuple[float, float]:
    """Parse the `mean:<x> stdev:<y>` line of the distribution estimator."""
    match = RE_DISTRO_OUTPUT.search(output)
    if not match:
        raise DataError("unexpected output from the insert size estimator: %r" % output)

    return float(match.group(1)), float(match.group(2))


class InsertSizeEstimator:
    """Estimate the parameters of paired-end libraries from BAM files."""

    def __init__(self, analysis: Analysis) -> None:
        self.analysis = analysis
        self.executor = Executor(analysis)

    def read_length(self, bam: str) -> int:
        """Get the longest read among the first primary alignments."""
        with self.executor.stream(
            [
                self.analysis.config.samtools,
                "view",
                "-F",
                SAM_SECONDARY | SAM_SUPPLEMENTARY,
                bam,
            ],
            "cannot read alignments from %s" % bam,
        ) as sam_lines:
            read_length = max_read_length(
                itertools.islice(sam_lines, READ_LENGTH_SAMPLE)
            )

        if read_length == 0:
            raise DataError("cannot determine the read length of %s" % bam)

        self.analysis.logger.info("Read length of %s: %d", bam, read_length)
        return read_length

    def _run_distro(
        self, records: Iterable[str], read_length: int, histogram: str
    ) -> Tuple[float, float]:
        pairend_distro = self.analysis.config.pairend_distro
        args = [
            pairend_distro,
            "-r",
            str(read_length),
            "-X",
            str(DISTRO_MAX_STDEV),
            "-N",
            str(DISTRO_RECORDS),
            "-o",
            histogram,
        ]
        self.analysis.logger.debug("Running command: %s", " ".join(args))
        try:
            process = subprocess.Popen(
                args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                universal_newlines=True,
            )
        except OSError as error:
            raise PipelineError(
                "cannot run %s: %s" % (pairend_distro, error)
            ) from error

        assert process.stdin is not None
        assert process.stdout is not None
        try:
            for record in records:
                process.stdin.write(record)
        except BrokenPipeError:
            # The estimator stops reading once it has enough records
            pass
        try:
            process.stdin.close()
        except BrokenPipeError:
            pass

        output = process.stdout.read()
        process.stdout.close()
        status = process.wait()
        if status != 0:
            raise PipelineError(
                "%s exited with status %d" % (os.path.basename(pairend_distro), status)
            )

        return parse_distro_output(output)

    def estimate(self, bam: str, read_length: int, histogram: str) -> InsertSizeStats:
        """Estimate the insert size distribution of a BAM file.

        The records from `INSERT_SIZE_SKIP` to `INSERT_SIZE_SKIP +
        INSERT_SIZE_SAMPLE` (excluding secondary alignments) are used.
        If the file is shorter, its first records are used instead. The
        estimate is performed by the external estimator when available,
        otherwise it is computed here. In both cases `histogram` is
        written.
        """
        spill_filename = histogram + ".skipped.sam"
        with self.executor.stream(
            [self.analysis.config.samtools, "view", "-F", SAM_SECONDARY, bam],
            "cannot read alignments from %s" % bam,
        ) as sam_lines, open(spill_filename, "w+") as spill:
            records = sample_records(
                sam_lines, INSERT_SIZE_SKIP, INSERT_SIZE_SAMPLE, spill
            )
            if self.analysis.config.pairend_distro is not None:
                mean, stdev = self._run_distro(records, read_length, histogram)
            else:
                self.analysis.logger.info(
                    "pairend_distro not available, estimating the insert size "
                    "distribution internally"
                )
                mean, stdev, values = insert_size_stats(template_lengths(records))
                write_histogram(values, histogram)

        os.unlink(spill_filename)

        stats = InsertSizeStats(mean, stdev, read_length, histogram)
        self.analysis.logger.info("Insert size of %s: %s", bam, stats)
        return stats

    def run(
        self, bam: str, histogram: str, read_length: Optional[int] = None
    ) -> InsertSizeStats:
        """Estimate the read length, if needed, and the insert size."""
        if read_length is None:
            read_length = self.read_length(bam)
        return self.estimate(bam, read_length, histogram)
