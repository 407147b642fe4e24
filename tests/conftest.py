"""Pytest fixtures shared by the test modules."""
import stat

import pytest

from seqrelay.config import Config
from seqrelay.core.analysis import Analysis


@pytest.fixture
def make_tool(tmp_path):
    """Create fake external programs as small shell scripts."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def _make_tool(name, body):
        path = bin_dir / name
        path.write_text("#!/bin/sh\n%s\n" % body)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make_tool


@pytest.fixture
def make_analysis(tmp_path):
    def _make_analysis(command="test", config=None, **parameters):
        parameters.setdefault("output_prefix", str(tmp_path / "out" / "sample"))
        parameters.setdefault("temp_dir", str(tmp_path / "tmp"))
        if config is None:
            config = Config()
        return Analysis(command, config, parameters)

    return _make_analysis
