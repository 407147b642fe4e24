"""A small set of custom exceptions."""


class PipelineError(RuntimeError):
    """An exception generated during pipeline execution.

    Generally this exception is raised within `Executor` or by a
    pipeline step when a mandatory external process fails.
    """


class DataError(RuntimeError):
    """A generic exception for invalid data."""


class ConfigError(RuntimeError):
    """An exception generated when the tool registry cannot be built."""


class ValidationError(RuntimeError):
    """An exception generated in case of invalid command line input."""
