"""The module containing the Analysis class.

See the documentation of the class for more information.
"""

import os
from types import MappingProxyType
from typing import Any, ContextManager, Dict, Mapping, Optional

from ..config import Config
from . import utils


class Analysis:
    """The status of a single pipeline invocation.

    The class bundles the validated request obtained from the command
    line, the resolved tool registry and the logger. Most of the parts
    of SeqRelay need an `Analysis` instance to perform meaningful
    operations.

    The request parameters are stored in a read-only mapping: once an
    analysis is created they cannot change.
    """

    def __init__(
        self, command: str, config: Config, parameters: Dict[str, Any]
    ) -> None:
        """Create a new analysis with basic elements.

        Args:
            command: the name of the pipeline that is run.
            config: a resolved configuration.
            parameters: the validated parameters taken from the command
                        line. It must contain at least `output_prefix`.
        """
        self.command = command
        self.config = config
        self.parameters: Mapping[str, Any] = MappingProxyType(dict(parameters))
        self.output_prefix: str = self.parameters["output_prefix"]
        self.verbose: bool = bool(self.parameters.get("verbose", False))
        self.logger = utils.create_logger(
            "seqrelay.%s" % command, verbose=self.verbose
        )

        output_dir = os.path.dirname(self.output_prefix)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)

    @property
    def threads(self) -> int:
        """Return the number of parallel jobs requested by the user."""
        return max(1, int(self.parameters.get("threads", 1)))

    @property
    def temp_root(self) -> Optional[str]:
        """Return the directory in which temporary directories are made."""
        return self.parameters.get("temp_dir")

    def temporary_directory(self) -> ContextManager[str]:
        """Create the temporary working directory of the analysis.

        The directory is removed when the context is left.
        """
        prefix = "seqrelay.%s." % os.path.basename(self.output_prefix)
        return utils.temporary_directory(self.temp_root, prefix, self.logger)

    def output_filename(self, suffix: str) -> str:
        """Get the name of a final output file."""
        return "%s%s" % (self.output_prefix, suffix)
