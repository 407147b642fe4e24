"""Windowed variant calling.

The variant caller is run on each genomic window in parallel. The
per-window VCF files are then merged into a single sorted file, which
is optionally annotated, compressed and indexed.
"""
import os
import shlex
import shutil
from functools import partial
from logging import Logger
from typing import List, Optional, Sequence

import vcf

from .core.analysis import Analysis
from .core.exceptions import DataError, PipelineError
from .core.executor import Executor, Stage, Task, TaskResult
from .core.ranges import GenomicWindow, derive_windows, load_windows


def filter_by_quality(filename: str, min_quality: float) -> None:
    """Remove the records with a QUAL lower than `min_quality`.

    Records without a QUAL value are removed as well. The file is
    replaced in place.
    """
    filtered_filename = filename + ".filtered"
    with open(filename) as in_fd, open(filtered_filename, "w") as out_fd:
        reader = vcf.Reader(in_fd)
        writer = vcf.Writer(out_fd, reader)
        for record in reader:
            if record.QUAL is not None and record.QUAL >= min_quality:
                writer.write_record(record)
        writer.flush()

    os.replace(filtered_filename, filename)


def merge_window_outputs(
    results: Sequence[TaskResult], merged_filename: str, logger: Logger
) -> int:
    """Merge the VCF files produced for each window.

    The header is taken from the first successful window, the records
    from all the successful windows, in the order of `results`. A window
    that failed is logged and it does not contribute any record.

    Returns:
        int: the number of records written to `merged_filename`.

    Raises:
        PipelineError: if no window succeeded.

    """
    for result in results:
        if not result.success:
            logger.warning(
                "Window %s does not contribute any variant: %s",
                result.window,
                result.reason,
            )

    successes = [result for result in results if result.success and result.output]
    if not successes:
        raise PipelineError("variant calling failed for every window")

    n_records = 0
    with open(merged_filename, "w") as out_fd:
        with open(successes[0].output) as fd:
            for line in fd:
                if not line.startswith("#"):
                    break
                out_fd.write(line if line.endswith("\n") else line + "\n")

        for result in successes:
            with open(result.output) as fd:
                for line in fd:
                    if line.startswith("#") or not line.strip():
                        continue
                    out_fd.write(line if line.endswith("\n") else line + "\n")
                    n_records += 1

    logger.info(
        "Merged %d records from %d of %d windows",
        n_records,
        len(successes),
        len(results),
    )
    return n_records


class VariantCalling:
    """Call small variants on a set of BAM files, window by window."""

    def __init__(self, analysis: Analysis) -> None:
        """Create an instance of the class."""
        self.analysis = analysis
        parameters = analysis.parameters

        self.reference: str = parameters["reference"]
        self.bams: List[str] = list(parameters.get("bams", []))
        self.windows_filename: Optional[str] = parameters.get("windows")
        self.min_quality: Optional[float] = parameters.get("min_quality")
        self.annotate: bool = bool(parameters.get("annotate", False))
        self.output_filename = analysis.output_filename(".vcf.gz")

    def get_windows(self) -> List[GenomicWindow]:
        """Get the windows from the user file or the first BAM header."""
        if self.windows_filename is not None:
            windows = load_windows(self.windows_filename)
        else:
            executor = Executor(self.analysis)
            header = executor.capture(
                [self.analysis.config.samtools, "view", "-H", self.bams[0]],
                "cannot read the header of %s" % self.bams[0],
            )
            windows = derive_windows(header)

        if not windows:
            raise DataError("no genomic window available for the variant calling")

        self.analysis.logger.info("Variant calling split in %d windows", len(windows))
        return windows

    def caller_args(self, window: GenomicWindow) -> List[str]:
        """Get the variant caller command line for a window."""
        return [
            self.analysis.config.freebayes,
            "-f",
            self.reference,
            "--region",
            window.region,
            "--min-repeat-entropy",
            "1",
            "--genotype-qualities",
        ] + self.bams

    def get_tasks(self, windows: Sequence[GenomicWindow], tmpdir: str) -> List[Task]:
        """Get a variant calling task for each window."""
        finalizer = None
        if self.min_quality is not None:
            finalizer = partial(filter_by_quality, min_quality=self.min_quality)

        tasks: List[Task] = []
        for index, window in enumerate(windows):
            basename = os.path.join(tmpdir, "window.%06d" % index)
            tasks.append(
                Task(
                    "window %s" % window,
                    [Stage(self.caller_args(window), stdout=basename + ".vcf")],
                    output=basename + ".vcf",
                    stderr=basename + ".log",
                    finalizer=finalizer,
                    window=window,
                )
            )
        return tasks

    def _annotation_stage(self) -> Stage:
        config = self.analysis.config
        return Stage(
            [config.java]
            + shlex.split(config.java_args)
            + [
                "-jar",
                config.snpeff_jar,
                "eff",
                "-c",
                config.snpeff_config,
                "-noStats",
                config.snpeff_genome,
            ]
        )

    def compress(self, merged_filename: str, tmpdir: str) -> None:
        """Sort, annotate, compress and index the merged VCF file.

        The final files are moved to their destination only when every
        step succeeded.
        """
        config = self.analysis.config
        executor = Executor(self.analysis)
        compressed_filename = os.path.join(tmpdir, "merged.vcf.gz")

        stages = [Stage([config.bedtools, "sort", "-header", "-i", merged_filename])]
        if self.annotate:
            stages.append(self._annotation_stage())
        stages.append(Stage([config.bgzip, "-c"], stdout=compressed_filename))

        executor.run_pipeline(stages, "cannot sort and compress the variants")
        executor.run_pipeline(
            [Stage([config.tabix, "-f", "-p", "vcf", compressed_filename])],
            "cannot index the variants",
        )

        shutil.move(compressed_filename, self.output_filename)
        shutil.move(compressed_filename + ".tbi", self.output_filename + ".tbi")

    def run(self) -> None:
        """Run the variant calling and produce the indexed VCF file."""
        logger = self.analysis.logger
        logger.info("Running variant calling")

        windows = self.get_windows()
        executor = Executor(self.analysis)
        with self.analysis.temporary_directory() as tmpdir:
            tasks = self.get_tasks(windows, tmpdir)
            results = executor.run(tasks, self.analysis.threads)

            merged_filename = os.path.join(tmpdir, "merged.vcf")
            merge_window_outputs(results, merged_filename, logger)
            self.compress(merged_filename, tmpdir)

        logger.info("Finished variant calling: %s", self.output_filename)
