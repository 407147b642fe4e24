#!/bin/env python3

from setuptools import find_packages, setup

setup(
    name="SeqRelay",
    version="0.1",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.6",
    install_requires=["pandas", "numpy", "PyVCF3"],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["seqrelay = seqrelay.seqrelay:main"]},
    description="Streaming alignment and variant calling pipelines",
    license="MIT",
)
