import os

import pytest

from seqrelay import seqrelay
from seqrelay.config import Config


def run_main(argv):
    with pytest.raises(SystemExit) as exit_info:
        seqrelay.main(argv)
    return exit_info.value.code


@pytest.fixture
def inputs(tmp_path, monkeypatch):
    monkeypatch.chdir(str(tmp_path))
    for name in ("ref.fa", "r1.fq", "r2.fq", "a.bam", "b.bam", "a.splitters.bam",
                 "a.discordants.bam"):
        (tmp_path / name).write_text("x\n")
    return tmp_path


def test_no_arguments(capsys):
    assert run_main([]) == 1
    assert "usage" in capsys.readouterr().err


def test_help_exits_with_error(capsys):
    assert run_main(["align", "-h"]) == 1
    assert "-R STR" in capsys.readouterr().err


def test_unknown_command(capsys):
    assert run_main(["assemble"]) == 1
    assert "Error:" in capsys.readouterr().err


def test_missing_positional(capsys):
    assert run_main(["call-variants", "ref.fa"]) == 1


def test_configout(tmp_path):
    filename = str(tmp_path / "out.ini")
    assert run_main(["--configout", filename]) == 0
    assert Config(filename).sort_memory == 20


def test_align_requires_read_group(inputs, capsys):
    assert run_main(["align", "ref.fa", "r1.fq", "r2.fq"]) == 1
    err = capsys.readouterr().err
    assert "Error: the read group (-R) is mandatory" in err
    assert "usage" in err


def test_align_missing_reads(inputs, capsys):
    assert run_main(["align", "-R", "@RG\\tID:x", "ref.fa", "missing.fq"]) == 1
    assert "'missing.fq' does not exist" in capsys.readouterr().err


def test_align_interleaved_requires_one_file(inputs, capsys):
    assert run_main(["align", "-p", "-R", "@RG\\tID:x", "ref.fa", "r1.fq", "r2.fq"]) == 1
    assert "only one FASTQ" in capsys.readouterr().err


def test_invalid_bool(inputs, capsys):
    assert run_main(["call-variants", "-A", "maybe", "ref.fa", "a.bam"]) == 1
    assert "expected 'true' or 'false'" in capsys.readouterr().err


def test_sv_mismatched_lists(inputs, capsys):
    argv = ["sv", "-B", "a.bam,b.bam", "-S", "a.splitters.bam", "-D", "a.discordants.bam"]
    assert run_main(argv) == 1
    assert "same number" in capsys.readouterr().err


def test_missing_tools_are_reported(inputs, capsys):
    config = Config()
    config.samtools = str(inputs / "no-samtools")
    config.lumpy = str(inputs / "no-lumpy")
    config.save(str(inputs / "custom.ini"))

    argv = ["-K", "custom.ini", "sv", "-B", "a.bam", "-S", "a.splitters.bam",
            "-D", "a.discordants.bam"]
    assert run_main(argv) == 1
    err = capsys.readouterr().err
    assert "Error: cannot find the following executables" in err
    assert "samtools" in err and "lumpy" in err
    assert not os.path.exists(str(inputs / "a.bedpe"))


def test_call_variants(inputs, make_tool):
    config = Config()
    config.samtools = make_tool("samtools", r"printf '@SQ\tSN:chr1\tLN:100\n'")
    config.freebayes = make_tool(
        "freebayes",
        r"printf '##fileformat=VCFv4.2\n#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n'"
        "\n"
        r"printf 'chr1\t10\t.\tA\tG\t30\t.\t.\n'",
    )
    config.bedtools = make_tool("bedtools", 'cat "$4"')
    config.bgzip = make_tool("bgzip", "cat")
    config.tabix = make_tool("tabix", 'touch "$4.tbi"')
    config.save(str(inputs / "seqrelay.ini"))

    assert run_main(["var", "-t", "2", "-o", "calls/result", "ref.fa", "a.bam"]) == 0

    assert os.path.exists(str(inputs / "calls" / "result.vcf.gz"))
    assert os.path.exists(str(inputs / "calls" / "result.vcf.gz.tbi"))
