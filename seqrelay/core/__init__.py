"""
The core of SeqRelay.

The modules contained in this package are used by all the pipelines and
they do not depend on any specific external tool.

The modules contained in this package are the following:
    * analysis - The module containing the information that needs to be shared between the steps of a single invocation.
    * executor - The real core of SeqRelay. This module contains the classes responsible to build and run the process graphs.
    * utils - A set of utility functions.
    * ranges - A module to read and derive the genomic windows.
    * exceptions - A small set of custom exceptions.
"""
