"""The module to call somatic variants on a tumor/normal pair."""
from typing import List

from .core.analysis import Analysis
from .core.ranges import GenomicWindow
from .variant_calling import VariantCalling


class SomaticCalling(VariantCalling):
    """Call variants on a tumor/normal pair in pooled-discrete mode.

    The windowing, the merge and the compression are the same of
    `VariantCalling`. The caller only reports variants supported by at
    least `min_alt_count` reads and `min_alt_fraction` of the reads in
    a sample, and the calls with a QUAL lower than `min_quality` are
    filtered out in each window.
    """

    def __init__(self, analysis: Analysis) -> None:
        """Create an instance of the class."""
        super().__init__(analysis)
        parameters = analysis.parameters

        self.normal: str = parameters["normal"]
        self.tumor: str = parameters["tumor"]
        self.bams = [self.normal, self.tumor]
        self.min_alt_fraction: float = parameters["min_alt_fraction"]
        self.min_alt_count: int = parameters["min_alt_count"]

    def caller_args(self, window: GenomicWindow) -> List[str]:
        return [
            self.analysis.config.freebayes,
            "-f",
            self.reference,
            "--region",
            window.region,
            "--pooled-discrete",
            "--genotype-qualities",
            "--min-repeat-entropy",
            "1",
            "--min-alternate-fraction",
            str(self.min_alt_fraction),
            "--min-alternate-count",
            str(self.min_alt_count),
            self.normal,
            self.tumor,
        ]

    def run(self) -> None:
        self.analysis.logger.info(
            "Running somatic calling for tumor %s and normal %s",
            self.tumor,
            self.normal,
        )
        super().run()
