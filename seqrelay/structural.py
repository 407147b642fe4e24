"""Structural variation detection for split and paired reads using lumpy.

Each sample set is made of three BAM files: the full alignment, the
split reads and the discordant read pairs, as produced by the `align`
pipeline. The discordant reads source needs the insert size
distribution of the library, which is estimated from the full
alignment when it is not specified by the user.
"""
import os
import shutil
from typing import List, Optional

from .core.analysis import Analysis
from .core.exceptions import ValidationError
from .core.executor import Executor, Stage
from .insert_size import InsertSizeEstimator, InsertSizeStats

BACK_DISTANCE = 10
WEIGHT = 1
MIN_MAPPING_THRESHOLD = 20
DISCORDANT_Z = 5


def _with_id(params: str, sample_id: int) -> str:
    if any(param.startswith("id:") for param in params.split(",")):
        return params
    return "%s,id:%d" % (params, sample_id)


def pair_end_params(
    bam: str,
    stats: Optional[InsertSizeStats],
    sample_id: int,
    custom: Optional[str] = None,
) -> str:
    """Get the lumpy parameters for a discordant reads source.

    If `custom` is specified, it is used instead of the estimated
    statistics. In this case it must include the histogram file and the
    distribution values.
    """
    if custom is not None:
        return _with_id("bam_file:%s,%s" % (bam, custom), sample_id)

    assert stats is not None
    return (
        "bam_file:{bam},histo_file:{histogram},mean:{mean},stdev:{stdev},"
        "read_length:{read_length},min_non_overlap:{read_length},"
        "discordant_z:{discordant_z},back_distance:{back_distance},"
        "weight:{weight},id:{sample_id},"
        "min_mapping_threshold:{min_mapping_threshold}".format(
            bam=bam,
            histogram=stats.histogram,
            mean=stats.mean,
            stdev=stats.stdev,
            read_length=stats.read_length,
            discordant_z=DISCORDANT_Z,
            back_distance=BACK_DISTANCE,
            weight=WEIGHT,
            sample_id=sample_id,
            min_mapping_threshold=MIN_MAPPING_THRESHOLD,
        )
    )


def split_read_params(bam: str, sample_id: int, custom: Optional[str] = None) -> str:
    """Get the lumpy parameters for a split reads source."""
    if custom is not None:
        return _with_id("bam_file:%s,%s" % (bam, custom), sample_id)

    return (
        "bam_file:%s,back_distance:%d,weight:%d,id:%d,min_mapping_threshold:%d"
        % (bam, BACK_DISTANCE, WEIGHT, sample_id, MIN_MAPPING_THRESHOLD)
    )


class StructuralVariantCalling:
    """Run lumpy on one or more sample sets."""

    def __init__(self, analysis: Analysis) -> None:
        """Create an instance of the class."""
        self.analysis = analysis
        parameters = analysis.parameters

        self.full_bams: List[str] = list(parameters["full_bams"])
        self.split_bams: List[str] = list(parameters["split_bams"])
        self.discordant_bams: List[str] = list(parameters["discordant_bams"])
        self.min_weight: int = parameters["min_weight"]
        self.trim_threshold: float = parameters["trim_threshold"]
        self.exclude: Optional[str] = parameters.get("exclude")
        self.split_params: Optional[str] = parameters.get("split_params")
        self.pair_params: Optional[str] = parameters.get("pair_params")
        self.read_length: Optional[int] = parameters.get("read_length")
        self.output_filename = analysis.output_filename(".bedpe")

        if not (
            len(self.full_bams) == len(self.split_bams) == len(self.discordant_bams)
        ):
            raise ValidationError(
                "the full, split and discordant BAM lists have different lengths"
            )

    def get_lumpy_args(self, tmpdir: str) -> List[str]:
        """Get the lumpy command line, estimating the parameters if needed."""
        estimator = InsertSizeEstimator(self.analysis)
        args = [
            self.analysis.config.lumpy,
            "-mw",
            str(self.min_weight),
            "-tt",
            str(self.trim_threshold),
        ]
        if self.exclude is not None:
            args.extend(["-x", self.exclude])

        samples = zip(self.full_bams, self.split_bams, self.discordant_bams)
        for sample_id, (full_bam, split_bam, discordant_bam) in enumerate(samples, 1):
            stats: Optional[InsertSizeStats] = None
            if self.pair_params is None:
                histogram = os.path.join(tmpdir, "sample%d.histo" % sample_id)
                stats = estimator.run(full_bam, histogram, self.read_length)

            args.extend(
                [
                    "-pe",
                    pair_end_params(discordant_bam, stats, sample_id, self.pair_params),
                    "-sr",
                    split_read_params(split_bam, sample_id, self.split_params),
                ]
            )

        return args

    def run(self) -> None:
        """Call the structural variants and write the BEDPE file."""
        logger = self.analysis.logger
        logger.info("Running lumpy on %d sample sets", len(self.full_bams))

        executor = Executor(self.analysis)
        with self.analysis.temporary_directory() as tmpdir:
            bedpe_filename = os.path.join(tmpdir, "lumpy.bedpe")
            executor.run_pipeline(
                [Stage(self.get_lumpy_args(tmpdir), stdout=bedpe_filename)],
                "lumpy error",
            )
            shutil.move(bedpe_filename, self.output_filename)

        logger.info("Finished lumpy: %s", self.output_filename)
