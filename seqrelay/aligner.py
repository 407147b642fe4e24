"""The module responsible for the alignment of the FASTQ files.

The aligner output is classified on the fly, producing three sorted
and indexed BAM files: the full alignment, the split reads and the
discordant read pairs.
"""
import os
import shutil
from typing import List

from .core import utils
from .core.analysis import Analysis
from .core.exceptions import PipelineError
from .core.executor import Executor, Stage, Task

STREAMS = ("full", "splitters", "discordants")


class Aligner:
    """Run the streaming alignment pipeline for one set of reads.

    The aligner writes SAM records to the classifier (samblaster), which
    writes the whole stream to its standard output and the split and
    the discordant records to two FIFOs. Three consumer chains convert
    and sort these streams at the same time, therefore no unsorted
    intermediate file is ever written.
    """

    def __init__(self, analysis: Analysis) -> None:
        """Create an instance of the class."""
        self.analysis = analysis
        parameters = analysis.parameters

        self.reference: str = parameters["reference"]
        self.reads: List[str] = list(parameters["reads"])
        self.read_group: str = parameters["read_group"]
        self.interleaved: bool = parameters["interleaved"]
        self.include_duplicates: bool = parameters["include_duplicates"]
        self.max_split_count: int = parameters["max_split_count"]
        self.min_non_overlap: int = parameters["min_non_overlap"]

        sort_memory = parameters.get("sort_memory")
        if sort_memory is None:
            sort_memory = analysis.config.sort_memory
        self.sort_memory = int(sort_memory)

        self.output_filenames = {
            "full": analysis.output_filename(".bam"),
            "splitters": analysis.output_filename(".splitters.bam"),
            "discordants": analysis.output_filename(".discordants.bam"),
        }

    def _aligner_stage(self) -> Stage:
        config = self.analysis.config
        args = [
            config.bwa,
            "mem",
            "-t",
            self.analysis.threads,
            "-M",
            "-R",
            self.read_group,
        ]
        if self.interleaved:
            args.append("-p")
        args.append(self.reference)
        args.extend(self.reads)
        return Stage(args)

    def _classifier_stage(self, split_fifo: str, discordant_fifo: str) -> Stage:
        args = [
            self.analysis.config.samblaster,
            "-M",
            "--addMateTags",
            "--maxSplitCount",
            self.max_split_count,
            "--minNonOverlap",
            self.min_non_overlap,
            "-s",
            split_fifo,
            "-d",
            discordant_fifo,
        ]
        if not self.include_duplicates:
            args.append("--excludeDups")
        return Stage(args)

    def _view_stage(self, input_filename: str) -> Stage:
        return Stage(
            [
                self.analysis.config.sambamba,
                "view",
                "-S",
                "-f",
                "bam",
                "-l",
                "0",
                input_filename,
            ]
        )

    def _sort_stage(
        self, output_filename: str, sort_tmpdir: str, threads: int
    ) -> Stage:
        return Stage(
            [
                self.analysis.config.sambamba,
                "sort",
                "-t",
                threads,
                "-m",
                "%dG" % self.sort_memory,
                "--tmpdir=%s" % sort_tmpdir,
                "-o",
                output_filename,
                "/dev/stdin",
            ]
        )

    def get_tasks(self, tmpdir: str) -> List[Task]:
        """Get the three concurrent legs of the alignment.

        The FIFOs for the split and the discordant reads are created
        inside `tmpdir`, unless they already exist. The BAM files are
        written in `tmpdir` as well.
        """
        split_fifo = os.path.join(tmpdir, "splitters.fifo")
        discordant_fifo = os.path.join(tmpdir, "discordants.fifo")
        for fifo in (split_fifo, discordant_fifo):
            if not utils.make_fifo(fifo):
                self.analysis.logger.info("Reusing existing FIFO %s", fifo)

        tasks: List[Task] = []
        for stream in STREAMS:
            sort_tmpdir = os.path.join(tmpdir, "%s_sort_tmp" % stream)
            os.makedirs(sort_tmpdir, exist_ok=True)
            output_filename = os.path.join(tmpdir, "%s.bam" % stream)
            stderr = os.path.join(tmpdir, "%s.log" % stream)

            if stream == "full":
                stages = [
                    self._aligner_stage(),
                    self._classifier_stage(split_fifo, discordant_fifo),
                    self._view_stage("/dev/stdin"),
                    self._sort_stage(
                        output_filename, sort_tmpdir, self.analysis.threads
                    ),
                ]
            elif stream == "splitters":
                stages = [
                    self._view_stage(split_fifo),
                    self._sort_stage(output_filename, sort_tmpdir, 1),
                ]
            else:
                stages = [
                    self._view_stage(discordant_fifo),
                    self._sort_stage(output_filename, sort_tmpdir, 1),
                ]

            tasks.append(
                Task(stream, stages, output=output_filename, stderr=stderr)
            )

        return tasks

    def get_index_tasks(self, bam_filenames: List[str]) -> List[Task]:
        """Get the tasks to index the sorted BAM files."""
        return [
            Task(
                "index %s" % os.path.basename(bam_filename),
                [Stage([self.analysis.config.sambamba, "index", bam_filename])],
                output=bam_filename + ".bai",
            )
            for bam_filename in bam_filenames
        ]

    def _move_outputs(self, tmpdir: str) -> None:
        for stream in STREAMS:
            bam_filename = os.path.join(tmpdir, "%s.bam" % stream)
            final_filename = self.output_filenames[stream]
            shutil.move(bam_filename, final_filename)
            shutil.move(bam_filename + ".bai", final_filename + ".bai")

    def run(self) -> None:
        """Align the reads and produce the three indexed BAM files.

        The legs of the alignment are run together with three parallel
        jobs, because each FIFO writer blocks until its reader is
        attached. Then the three BAM files are indexed, again in
        parallel. The files are moved to their final names only when
        everything succeeded.
        """
        self.analysis.logger.info("Running alignment")
        executor = Executor(self.analysis)

        with self.analysis.temporary_directory() as tmpdir:
            tasks = self.get_tasks(tmpdir)
            results = executor.run(tasks, len(STREAMS))
            if not all(result.success for result in results):
                raise PipelineError("alignment error")

            bam_filenames = [task.output for task in tasks if task.output]
            index_results = executor.run(
                self.get_index_tasks(bam_filenames), len(STREAMS)
            )
            if not all(result.success for result in index_results):
                raise PipelineError("BAM indexing error")

            self._move_outputs(tmpdir)

        self.analysis.logger.info(
            "Finished alignment: %s", ", ".join(self.output_filenames.values())
        )
