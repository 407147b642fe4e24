"""
The SeqRelay package.

SeqRelay orchestrates external bioinformatics tools in streaming
pipelines: alignment with on-the-fly classification of split and
discordant reads, windowed parallel variant calling, somatic calling
and structural variant detection.

Here a brief description of all the modules and packages available:
    * seqrelay - the starting point of the executable. Argument parsing
                 and initial checks are performed in this module.
    * core - A package with the main core features of SeqRelay.
    * config - The module responsible for handling the configuration
               file data and for finding the external programs.
    * aligner - The module responsible for the alignment of the fastq
                files and the production of full, splitters and
                discordants BAM files.
    * variant_calling - The windowed variant calling, with the merge,
                        the annotation and the compression of the
                        results.
    * somatic - The variant calling specialized for tumor/normal pairs.
    * insert_size - The estimation of read length and insert size
                    distribution of a paired-end library.
    * structural - The module responsible for running lumpy.
"""

__version__ = "0.1"
