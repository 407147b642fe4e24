import logging
import os

import pytest

from seqrelay.config import Config
from seqrelay.core.exceptions import DataError, PipelineError
from seqrelay.core.executor import TaskResult
from seqrelay.core.ranges import GenomicWindow
from seqrelay.somatic import SomaticCalling
from seqrelay.variant_calling import (VariantCalling, filter_by_quality,
                                      merge_window_outputs)

VCF_HEADER = (
    "##fileformat=VCFv4.2\n"
    "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n"
)

FAKE_FREEBAYES = r"""
region="$4"
chrom="${region%%:*}"
case "$chrom" in
  chr2) echo "cannot call $region" >&2; exit 1;;
esac
printf '##fileformat=VCFv4.2\n#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n'
printf '%s\t100\t.\tA\tG\t50\t.\t.\n' "$chrom"
printf '%s\t200\t.\tC\tT\t0.5\t.\t.\n' "$chrom"
"""


def records(filename):
    with open(filename) as fd:
        return [line for line in fd if not line.startswith("#")]


def write_vcf(path, lines):
    path.write_text(VCF_HEADER + "".join(lines))
    return str(path)


def test_merge_counts_every_successful_window(tmp_path):
    first = write_vcf(tmp_path / "w0.vcf", ["chr1\t10\t.\tA\tG\t50\t.\t.\n"])
    second = write_vcf(
        tmp_path / "w2.vcf",
        ["chr3\t10\t.\tA\tG\t50\t.\t.\n", "chr3\t20\t.\tA\tG\t50\t.\t.\n"],
    )
    results = [
        TaskResult("w0", True, output=first, window=GenomicWindow("chr1", 0, 100)),
        TaskResult("w1", False, reason="freebayes exited with status 1"),
        TaskResult("w2", True, output=second, window=GenomicWindow("chr3", 0, 100)),
    ]
    merged = str(tmp_path / "merged.vcf")

    n_records = merge_window_outputs(results, merged, logging.getLogger("test"))

    assert n_records == 3
    with open(merged) as fd:
        content = fd.read()
    assert content.startswith(VCF_HEADER)
    assert content.count("#CHROM") == 1
    assert [line.split("\t")[0] for line in records(merged)] == ["chr1", "chr3", "chr3"]


def test_merge_header_from_first_successful_window(tmp_path):
    only = tmp_path / "w1.vcf"
    only.write_text("##source=caller\n" + VCF_HEADER)
    results = [
        TaskResult("w0", False, reason="failed"),
        TaskResult("w1", True, output=str(only)),
    ]
    merged = str(tmp_path / "merged.vcf")

    assert merge_window_outputs(results, merged, logging.getLogger("test")) == 0
    with open(merged) as fd:
        assert fd.readline() == "##source=caller\n"


def test_merge_fails_without_successful_windows(tmp_path):
    results = [TaskResult("w0", False, reason="failed")]
    with pytest.raises(PipelineError):
        merge_window_outputs(results, str(tmp_path / "merged.vcf"), logging.getLogger("test"))


def test_filter_by_quality(tmp_path):
    filename = write_vcf(
        tmp_path / "window.vcf",
        [
            "chr1\t10\t.\tA\tG\t50\t.\t.\n",
            "chr1\t20\t.\tA\tG\t0.5\t.\t.\n",
            "chr1\t30\t.\tA\tG\t.\t.\t.\n",
            "chr1\t40\t.\tA\tG\t1\t.\t.\n",
        ],
    )

    filter_by_quality(filename, 1)

    positions = [line.split("\t")[1] for line in records(filename)]
    assert positions == ["10", "40"]
    assert not os.path.exists(filename + ".filtered")


def test_caller_args(make_analysis):
    config = Config()
    config.freebayes = "/opt/bin/freebayes"
    calling = VariantCalling(
        make_analysis(
            config=config, reference="ref.fa", bams=["a.bam", "b.bam"], min_quality=1
        )
    )

    assert calling.caller_args(GenomicWindow("chr1", 0, 100)) == [
        "/opt/bin/freebayes",
        "-f",
        "ref.fa",
        "--region",
        "chr1:0-100",
        "--min-repeat-entropy",
        "1",
        "--genotype-qualities",
        "a.bam",
        "b.bam",
    ]
    assert calling.output_filename.endswith("sample.vcf.gz")


def test_somatic_caller_args(make_analysis):
    config = Config()
    config.freebayes = "/opt/bin/freebayes"
    calling = SomaticCalling(
        make_analysis(
            config=config,
            reference="ref.fa",
            normal="normal.bam",
            tumor="tumor.bam",
            min_alt_fraction=0.05,
            min_alt_count=2,
            min_quality=1e-5,
        )
    )

    args = calling.caller_args(GenomicWindow("chr1", 0, 100))

    assert "--pooled-discrete" in args
    assert args[args.index("--min-alternate-fraction") + 1] == "0.05"
    assert args[args.index("--min-alternate-count") + 1] == "2"
    assert args[-2:] == ["normal.bam", "tumor.bam"]
    assert calling.bams == ["normal.bam", "tumor.bam"]


def test_windows_from_bam_header(make_analysis, make_tool):
    config = Config()
    config.samtools = make_tool(
        "samtools", r"printf '@SQ\tSN:chr1\tLN:100\n@SQ\tSN:chr2\tLN:50\n'"
    )
    calling = VariantCalling(
        make_analysis(config=config, reference="ref.fa", bams=["a.bam"])
    )

    assert calling.get_windows() == [
        GenomicWindow("chr1", 0, 100),
        GenomicWindow("chr2", 0, 50),
    ]


def test_no_windows(make_analysis, tmp_path):
    windows = tmp_path / "windows.bed"
    windows.write_text("")
    calling = VariantCalling(
        make_analysis(reference="ref.fa", bams=["a.bam"], windows=str(windows))
    )
    with pytest.raises(DataError):
        calling.get_windows()


def test_run_with_failing_window(make_analysis, make_tool, tmp_path):
    config = Config()
    config.freebayes = make_tool("freebayes", FAKE_FREEBAYES)
    config.bedtools = make_tool("bedtools", 'cat "$4"')
    config.bgzip = make_tool("bgzip", "cat")
    config.tabix = make_tool("tabix", 'touch "$4.tbi"')
    windows = tmp_path / "windows.bed"
    windows.write_text("chr1\t0\t1000\nchr2\t0\t1000\nchr3\t0\t500\n")
    temp_dir = tmp_path / "tmp"

    analysis = make_analysis(
        command="call-variants",
        config=config,
        reference="ref.fa",
        bams=["a.bam"],
        windows=str(windows),
        min_quality=1.0,
        annotate=False,
        threads=2,
        temp_dir=str(temp_dir),
    )
    calling = VariantCalling(analysis)
    calling.run()

    output = calling.output_filename
    assert os.path.exists(output + ".tbi")
    assert [line.split("\t")[:2] for line in records(output)] == [
        ["chr1", "100"],
        ["chr3", "100"],
    ]
    assert os.listdir(str(temp_dir)) == []
