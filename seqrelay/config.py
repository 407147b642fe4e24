"""The configuration module of SeqRelay.

The configuration is the registry of the external programs used by the
pipelines. It can be loaded from an ini file or, for every entry that is
not specified, discovered on the `PATH`.
"""

import os
import shutil
import sys
from configparser import ConfigParser
from configparser import Error as ConfigParserError
from itertools import chain
from typing import Any, Dict, Iterable, List, Optional

from .core.exceptions import ConfigError

DEFAULT_CONFIG_FILENAME = "seqrelay.ini"


class Config:
    """The configuration of SeqRelay.

    This class is responsible for reading the configuration ini file and
    for resolving every executable to an absolute path. A plausible
    default value is available for each field, in order to create a
    template config file and to run without a config file at all when
    the tools are installed system-wide.

    Once `resolve` has been called the object is frozen and cannot be
    modified anymore.
    """

    executables = (
        "bwa",
        "samblaster",
        "sambamba",
        "samtools",
        "freebayes",
        "bedtools",
        "bgzip",
        "tabix",
        "lumpy",
        "java",
    )
    optional_executables = ("pairend_distro",)
    files = ("snpeff_jar", "snpeff_config")
    parameters = ("snpeff_genome", "java_args", "sort_memory")

    required_by_command = {
        "align": ("bwa", "samblaster", "sambamba"),
        "call-variants": ("samtools", "freebayes", "bedtools", "bgzip", "tabix"),
        "call-somatic": ("samtools", "freebayes", "bedtools", "bgzip", "tabix"),
        "call-sv": ("samtools", "lumpy"),
    }
    annotation_executables = ("java",)

    def __init__(self, filename: Optional[str] = None) -> None:
        """Create a template config and fill it from a file content.

        A config is created with the bare program names, which are
        searched on the `PATH` when the config is resolved. If a
        `filename` is specified, the parameters are filled with the
        content of the specified config file.
        """
        self._frozen = False
        self.bwa: Optional[str] = "bwa"
        self.samblaster: Optional[str] = "samblaster"
        self.sambamba: Optional[str] = "sambamba"
        self.samtools: Optional[str] = "samtools"
        self.freebayes: Optional[str] = "freebayes"
        self.bedtools: Optional[str] = "bedtools"
        self.bgzip: Optional[str] = "bgzip"
        self.tabix: Optional[str] = "tabix"
        self.lumpy: Optional[str] = "lumpy"
        self.java: Optional[str] = "java"
        self.pairend_distro: Optional[str] = "pairend_distro.py"
        self.snpeff_jar = "snpEff.jar"
        self.snpeff_config = "snpEff.config"
        self.snpeff_genome = "GRCh37.75"
        self.java_args = "-Xmx9g"
        self.sort_memory = 20
        self.filename = filename

        if filename:
            self._check_after_init(filename)

    def __setattr__(self, key: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise AttributeError("the configuration cannot be modified once resolved")
        super().__setattr__(key, value)

    def _check_after_init(self, filename: str) -> None:
        VALID_SECTIONS = ("EXECUTABLES", "FILES", "PARAMETERS")

        parser = ConfigParser()
        try:
            read_files = parser.read(filename)
        except ConfigParserError as error:
            raise ConfigError(
                "config file '%s' is malformed: %s" % (filename, error)
            ) from error

        if not read_files:
            raise ConfigError("config file '%s' cannot be read" % filename)

        for section_name in VALID_SECTIONS:
            if section_name not in parser:
                sys.stderr.write(
                    "WARNING: %s section in config not "
                    "found. Values are set to default\n" % section_name
                )
                continue

            section = parser[section_name]
            valid_keys = {
                "EXECUTABLES": chain(Config.executables, Config.optional_executables),
                "FILES": Config.files,
                "PARAMETERS": Config.parameters,
            }[section_name]
            valid_keys = set(valid_keys)
            for key in section:
                if key not in valid_keys:
                    sys.stderr.write(
                        "WARNING: '%s' is not a valid key for section %s\n"
                        % (key, section_name)
                    )
                    continue
                setattr(self, key, section[key])

        if "PARAMETERS" in parser and "sort_memory" in parser["PARAMETERS"]:
            try:
                self.sort_memory = parser["PARAMETERS"].getint("sort_memory")
            except ValueError as error:
                raise ConfigError("sort_memory must be an integer") from error

        for section_name in parser.keys():
            if section_name not in chain(VALID_SECTIONS, ("DEFAULT",)):
                sys.stderr.write("WARNING: '%s' section is invalid\n" % section_name)

    def save(self, filename: str) -> None:
        """Save the object into a config file."""
        config = ConfigParser()

        executables = {}
        for executable in chain(Config.executables, Config.optional_executables):
            executables[executable] = str(getattr(self, executable))
        config["EXECUTABLES"] = executables

        files = {}
        for filepath in Config.files:
            files[filepath] = getattr(self, filepath)
        config["FILES"] = files

        parameters = {}
        for parameter in Config.parameters:
            parameters[parameter] = str(getattr(self, parameter))
        config["PARAMETERS"] = parameters

        with open(filename, "w") as fd:
            config.write(fd)

    @staticmethod
    def _which(executable: Optional[str]) -> Optional[str]:
        if not executable:
            return None

        path = shutil.which(executable)
        if path is None:
            return None
        return os.path.abspath(path)

    def resolve(self, required: Iterable[str], annotate: bool = False) -> None:
        """Resolve the executables and freeze the configuration.

        Every executable is replaced with its absolute path. The
        executables in `required` must be found, otherwise a
        `ConfigError` is raised listing all the missing ones. The other
        executables that cannot be found are set to `None`.

        When `annotate` is true, java and the snpEff files are
        required as well.
        """
        required = set(required)
        if annotate:
            required.update(Config.annotation_executables)

        missing: List[str] = []
        resolved: Dict[str, Optional[str]] = {}
        for param in chain(Config.executables, Config.optional_executables):
            path = Config._which(getattr(self, param))
            if path is None and param in required:
                missing.append("%s (%s)" % (param, getattr(self, param)))
            resolved[param] = path

        if missing:
            raise ConfigError(
                "cannot find the following executables: %s. Check config."
                % ", ".join(missing)
            )

        if annotate:
            for param in Config.files:
                filepath = getattr(self, param)
                if not os.access(filepath, os.R_OK):
                    raise ConfigError(
                        "{} for param {} cannot be read. Check config.".format(
                            filepath, param
                        )
                    )

        for param, path in resolved.items():
            setattr(self, param, path)

        self._frozen = True

    @property
    def resolved(self) -> bool:
        """Return whether `resolve` has already been called."""
        return self._frozen


def load_config(filename: Optional[str]) -> Config:
    """Load the config specified by the user or the default one.

    If `filename` is `None`, the default `seqrelay.ini` in the current
    working directory is used when present. Otherwise a default config,
    relying on the `PATH`, is returned.
    """
    if filename is not None:
        if not os.path.exists(filename):
            raise ConfigError("config file '%s' does not exist." % filename)
        return Config(filename)

    if os.path.exists(DEFAULT_CONFIG_FILENAME):
        return Config(DEFAULT_CONFIG_FILENAME)

    return Config()
