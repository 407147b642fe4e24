import os
import stat

import pytest

from seqrelay.aligner import Aligner
from seqrelay.config import Config
from seqrelay.core import utils
from seqrelay.core.exceptions import PipelineError

FAKE_SAMBLASTER = """
echo split > "$8"
echo discordant > "${10}"
cat
"""

FAKE_SAMBAMBA = """
case "$1" in
  view) cat "$7";;
  sort) cat > "$8";;
  index) touch "$2.bai";;
esac
"""


def align_parameters(tmp_path, **parameters):
    defaults = {
        "reference": "ref.fa",
        "reads": ["r1.fq", "r2.fq"],
        "read_group": "@RG\\tID:rg1\\tSM:sample",
        "interleaved": False,
        "include_duplicates": False,
        "max_split_count": 2,
        "min_non_overlap": 20,
        "sort_memory": None,
        "threads": 4,
    }
    defaults.update(parameters)
    return defaults


def fake_config(make_tool, bwa="echo aligned"):
    config = Config()
    config.bwa = make_tool("bwa", bwa)
    config.samblaster = make_tool("samblaster", FAKE_SAMBLASTER)
    config.sambamba = make_tool("sambamba", FAKE_SAMBAMBA)
    return config


def test_make_fifo_is_idempotent(tmp_path):
    fifo = str(tmp_path / "stream.fifo")
    assert utils.make_fifo(fifo)
    assert not utils.make_fifo(fifo)
    assert stat.S_ISFIFO(os.stat(fifo).st_mode)

    regular = tmp_path / "regular"
    regular.write_text("x")
    with pytest.raises(FileExistsError):
        utils.make_fifo(str(regular))


def test_task_graph(make_analysis, tmp_path):
    config = Config()
    config.bwa = "bwa"
    config.samblaster = "samblaster"
    config.sambamba = "sambamba"
    aligner = Aligner(make_analysis(config=config, **align_parameters(tmp_path)))
    work_dir = tmp_path / "work"
    work_dir.mkdir()

    tasks = aligner.get_tasks(str(work_dir))
    # Leftover FIFOs of a previous run are reused
    assert len(aligner.get_tasks(str(work_dir))) == 3

    assert [task.name for task in tasks] == ["full", "splitters", "discordants"]
    full, splitters, discordants = tasks
    assert [stage.program for stage in full.pipeline] == [
        "bwa",
        "samblaster",
        "sambamba",
        "sambamba",
    ]
    assert full.pipeline[0].args == [
        "bwa",
        "mem",
        "-t",
        "4",
        "-M",
        "-R",
        "@RG\\tID:rg1\\tSM:sample",
        "ref.fa",
        "r1.fq",
        "r2.fq",
    ]
    assert "--excludeDups" in full.pipeline[1].args
    assert "20G" in full.pipeline[3].args

    split_fifo = str(work_dir / "splitters.fifo")
    assert split_fifo in full.pipeline[1].args
    assert splitters.pipeline[0].args[-1] == split_fifo
    assert discordants.pipeline[0].args[-1] == str(work_dir / "discordants.fifo")
    assert stat.S_ISFIFO(os.stat(split_fifo).st_mode)


def test_interleaved_with_duplicates(make_analysis, tmp_path):
    aligner = Aligner(
        make_analysis(
            **align_parameters(
                tmp_path,
                reads=["pairs.fq"],
                interleaved=True,
                include_duplicates=True,
                sort_memory=2,
            )
        )
    )
    work_dir = tmp_path / "work"
    work_dir.mkdir()

    full = aligner.get_tasks(str(work_dir))[0]

    assert full.pipeline[0].args[-3:] == ["-p", "ref.fa", "pairs.fq"]
    assert "--excludeDups" not in full.pipeline[1].args
    assert "2G" in full.pipeline[3].args


def test_run_produces_three_indexed_bams(make_analysis, make_tool, tmp_path):
    analysis = make_analysis(
        command="align", config=fake_config(make_tool), **align_parameters(tmp_path)
    )
    aligner = Aligner(analysis)

    aligner.run()

    for filename in aligner.output_filenames.values():
        assert os.path.getsize(filename) > 0
        assert os.path.exists(filename + ".bai")
    with open(aligner.output_filenames["splitters"]) as fd:
        assert fd.read() == "split\n"
    with open(aligner.output_filenames["full"]) as fd:
        assert fd.read() == "aligned\n"


def test_run_fails_without_partial_outputs(make_analysis, make_tool, tmp_path):
    analysis = make_analysis(
        command="align",
        config=fake_config(make_tool, bwa="exit 1"),
        **align_parameters(tmp_path)
    )
    aligner = Aligner(analysis)

    with pytest.raises(PipelineError, match="alignment error"):
        aligner.run()

    for filename in aligner.output_filenames.values():
        assert not os.path.exists(filename)
