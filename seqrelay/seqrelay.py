import argparse
import logging
import os
import sys
from typing import Any, Callable, Dict, List, NoReturn, Optional, Sequence

from .aligner import Aligner
from .config import Config, load_config
from .core import utils
from .core.analysis import Analysis
from .core.exceptions import (ConfigError, DataError, PipelineError,
                              ValidationError)
from .core.executor import LOG_FORMAT
from .somatic import SomaticCalling
from .structural import StructuralVariantCalling
from .variant_calling import VariantCalling


class ArgumentParser(argparse.ArgumentParser):
    """An argument parser that exits with status 1 on errors."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, "Error: %s\n" % message)


class HelpAction(argparse.Action):
    """Print the help and exit with status 1, like a missing argument."""

    def __init__(
        self,
        option_strings: Sequence[str],
        dest: str = argparse.SUPPRESS,
        default: Any = argparse.SUPPRESS,
        help: Optional[str] = None,
    ) -> None:
        super().__init__(
            option_strings=option_strings,
            dest=dest,
            default=default,
            nargs=0,
            help=help,
        )

    def __call__(
        self,
        parser: argparse.ArgumentParser,
        namespace: argparse.Namespace,
        values: Any,
        option_string: Optional[str] = None,
    ) -> None:
        parser.print_help(sys.stderr)
        parser.exit(1)


def _add_common_arguments(
    parser: argparse.ArgumentParser, threads: bool = True
) -> None:
    parser.add_argument(
        "-o",
        action="store",
        dest="output_prefix",
        metavar="STR",
        help="Output prefix. By default it is obtained from the first input file.",
    )
    if threads:
        parser.add_argument(
            "-t",
            action="store",
            dest="threads",
            type=int,
            metavar="INT",
            default=1,
            help="Number of threads or parallel jobs to use (default=1).",
        )
    parser.add_argument(
        "-T",
        action="store",
        dest="temp_dir",
        metavar="DIR",
        help="The directory in which the temporary directory is created "
        "(default: the system temporary directory).",
    )
    parser.add_argument(
        "-K",
        "--config",
        action="store",
        dest="config",
        metavar="FILE",
        default=argparse.SUPPRESS,
        help="Select the configuration file with the paths of the executables.",
    )
    parser.add_argument(
        "-v",
        action="store_true",
        dest="verbose",
        help="Verbose mode: print each command before running it.",
    )
    parser.add_argument("-h", action=HelpAction, help="Show this help and exit.")


def _add_variant_calling_arguments(
    parser: argparse.ArgumentParser, min_quality: float
) -> None:
    parser.add_argument(
        "-w",
        action="store",
        dest="windows",
        metavar="FILE",
        help="A BED file with the windows used to parallelize the calling. "
        "By default a window is created for each reference sequence.",
    )
    parser.add_argument(
        "-q",
        action="store",
        dest="min_quality",
        type=float,
        metavar="FLOAT",
        default=min_quality,
        help="Minimum QUAL of the variants in the output (default=%g)." % min_quality,
    )
    parser.add_argument(
        "-A",
        action="store",
        dest="annotate",
        type=utils.parsed_bool,
        metavar="BOOL",
        default=False,
        help="Annotate the variants with snpEff: true or false (default=false).",
    )


def get_parser() -> argparse.ArgumentParser:
    parser = ArgumentParser(
        prog="seqrelay",
        description="Streaming alignment, variant calling, somatic calling and "
        "structural variant detection built on external tools.",
        add_help=False,
    )
    parser.add_argument(
        "-K",
        "--config",
        action="store",
        dest="config",
        metavar="FILE",
        help="Select the configuration file. If it is not specified, the "
        "program uses 'seqrelay.ini' in the current working directory, if "
        "available, or it searches every executable in the PATH.",
    )
    parser.add_argument(
        "--configout",
        action="store",
        metavar="FILE",
        help="Dumps a default configuration in a file. When this option is "
        "passed, any other option will be ignored and the program will exit "
        "after the file is being written.",
    )
    parser.add_argument(
        "-h", "--help", action=HelpAction, help="Show this help and exit."
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    align = subparsers.add_parser(
        "align",
        add_help=False,
        help="Align the reads and produce full, splitters and discordants BAMs.",
    )
    align.add_argument("reference", help="The reference genome (indexed for bwa).")
    align.add_argument(
        "reads",
        nargs="+",
        help="One or two FASTQ files, or one interleaved FASTQ file with -p.",
    )
    align.add_argument(
        "-R",
        action="store",
        dest="read_group",
        metavar="STR",
        help='The read group header line, i.e. "@RG\\tID:id\\tSM:sample". Required.',
    )
    align.add_argument(
        "-p",
        action="store_true",
        dest="interleaved",
        help="The single FASTQ file contains interleaved pairs.",
    )
    align.add_argument(
        "-i",
        action="store_true",
        dest="include_duplicates",
        help="Include duplicates in splitters and discordants.",
    )
    align.add_argument(
        "-c",
        action="store",
        dest="max_split_count",
        type=int,
        metavar="INT",
        default=2,
        help="Maximum number of split alignments for a read to be included "
        "in splitters (default=2).",
    )
    align.add_argument(
        "-m",
        action="store",
        dest="min_non_overlap",
        type=int,
        metavar="INT",
        default=20,
        help="Minimum non-overlapping base pairs between two alignments for a "
        "read to be included in splitters (default=20).",
    )
    align.add_argument(
        "-M",
        action="store",
        dest="sort_memory",
        type=int,
        metavar="INT",
        help="Memory in GB for each BAM sort (default from config, 20).",
    )
    _add_common_arguments(align)
    align.set_defaults(command_name="align", command_parser=align)

    variants = subparsers.add_parser(
        "call-variants",
        aliases=["var"],
        add_help=False,
        help="Call small variants on one or more BAM files.",
    )
    variants.add_argument("reference", help="The reference genome.")
    variants.add_argument("bams", nargs="+", help="The input BAM files.")
    _add_variant_calling_arguments(variants, 1.0)
    _add_common_arguments(variants)
    variants.set_defaults(command_name="call-variants", command_parser=variants)

    somatic = subparsers.add_parser(
        "call-somatic",
        aliases=["somatic"],
        add_help=False,
        help="Call somatic variants on a tumor/normal pair.",
    )
    somatic.add_argument("reference", help="The reference genome.")
    somatic.add_argument("normal", help="The BAM file of the normal sample.")
    somatic.add_argument("tumor", help="The BAM file of the tumor sample.")
    somatic.add_argument(
        "-F",
        action="store",
        dest="min_alt_fraction",
        type=float,
        metavar="FLOAT",
        default=0.05,
        help="Minimum fraction of reads supporting the alternate allele "
        "(default=0.05).",
    )
    somatic.add_argument(
        "-C",
        action="store",
        dest="min_alt_count",
        type=int,
        metavar="INT",
        default=2,
        help="Minimum number of reads supporting the alternate allele (default=2).",
    )
    _add_variant_calling_arguments(somatic, 1e-5)
    _add_common_arguments(somatic)
    somatic.set_defaults(command_name="call-somatic", command_parser=somatic)

    sv = subparsers.add_parser(
        "call-sv",
        aliases=["sv"],
        add_help=False,
        help="Detect structural variants with lumpy.",
    )
    sv.add_argument(
        "-B",
        action="store",
        dest="full_bams",
        type=utils.comma_list,
        metavar="BAMS",
        help="Full BAM files, comma separated. Required.",
    )
    sv.add_argument(
        "-S",
        action="store",
        dest="split_bams",
        type=utils.comma_list,
        metavar="BAMS",
        help="Split reads BAM files, in the same order of -B. Required.",
    )
    sv.add_argument(
        "-D",
        action="store",
        dest="discordant_bams",
        type=utils.comma_list,
        metavar="BAMS",
        help="Discordant reads BAM files, in the same order of -B. Required.",
    )
    sv.add_argument(
        "-m",
        action="store",
        dest="min_weight",
        type=int,
        metavar="INT",
        default=4,
        help="Minimum weight of the evidence for a call (default=4).",
    )
    sv.add_argument(
        "-r",
        action="store",
        dest="trim_threshold",
        type=float,
        metavar="FLOAT",
        default=0.0,
        help="Trim threshold of the breakpoint probability (default=0).",
    )
    sv.add_argument(
        "-x",
        action="store",
        dest="exclude",
        metavar="FILE",
        help="A BED file with the regions to exclude.",
    )
    sv.add_argument(
        "-s",
        action="store",
        dest="split_params",
        metavar="STR",
        help="Custom lumpy parameters for split reads, replacing the defaults.",
    )
    sv.add_argument(
        "-p",
        action="store",
        dest="pair_params",
        metavar="STR",
        help="Custom lumpy parameters for discordant reads, replacing the "
        "estimated ones. It must include histo_file, mean, stdev, read_length "
        "and min_non_overlap.",
    )
    sv.add_argument(
        "-l",
        action="store",
        dest="read_length",
        type=int,
        metavar="INT",
        help="The read length. By default it is estimated from the full BAMs.",
    )
    _add_common_arguments(sv, threads=False)
    sv.set_defaults(command_name="call-sv", command_parser=sv)

    return parser


def check_files_exist(filenames: Sequence[Optional[str]]) -> None:
    """Raise a `ValidationError` for the first file that does not exist."""
    for filename in filenames:
        if filename is not None and not os.path.exists(filename):
            raise ValidationError("file '%s' does not exist." % filename)


def _common_parameters(args: argparse.Namespace, default_input: str) -> Dict[str, Any]:
    output_prefix = args.output_prefix
    if not output_prefix:
        output_prefix = utils.default_prefix(default_input)

    threads = getattr(args, "threads", 1)
    if threads < 1:
        raise ValidationError("the number of threads must be at least 1")

    return {
        "output_prefix": output_prefix,
        "threads": threads,
        "temp_dir": args.temp_dir,
        "verbose": args.verbose,
    }


def get_align_parameters(args: argparse.Namespace) -> Dict[str, Any]:
    if not args.read_group:
        raise ValidationError("the read group (-R) is mandatory")
    if not args.read_group.startswith("@RG"):
        raise ValidationError("the read group must start with '@RG'")

    if args.interleaved and len(args.reads) != 1:
        raise ValidationError("only one FASTQ file can be used with -p")
    if len(args.reads) > 2:
        raise ValidationError("at most two FASTQ files can be aligned together")

    check_files_exist([args.reference] + args.reads)

    parameters = _common_parameters(args, args.reads[0])
    parameters.update(
        {
            "reference": args.reference,
            "reads": args.reads,
            "read_group": args.read_group,
            "interleaved": args.interleaved,
            "include_duplicates": args.include_duplicates,
            "max_split_count": args.max_split_count,
            "min_non_overlap": args.min_non_overlap,
            "sort_memory": args.sort_memory,
        }
    )
    return parameters


def _variant_calling_parameters(
    args: argparse.Namespace, default_input: str
) -> Dict[str, Any]:
    parameters = _common_parameters(args, default_input)
    parameters.update(
        {
            "reference": args.reference,
            "windows": args.windows,
            "min_quality": args.min_quality,
            "annotate": args.annotate,
        }
    )
    return parameters


def get_variants_parameters(args: argparse.Namespace) -> Dict[str, Any]:
    check_files_exist([args.reference] + args.bams + [args.windows])

    parameters = _variant_calling_parameters(args, args.bams[0])
    parameters["bams"] = args.bams
    return parameters


def get_somatic_parameters(args: argparse.Namespace) -> Dict[str, Any]:
    if not 0 <= args.min_alt_fraction <= 1:
        raise ValidationError("the minimum alternate fraction must be in [0, 1]")
    if args.min_alt_count < 0:
        raise ValidationError("the minimum alternate count cannot be negative")

    check_files_exist([args.reference, args.normal, args.tumor, args.windows])

    parameters = _variant_calling_parameters(args, args.tumor)
    parameters.update(
        {
            "normal": args.normal,
            "tumor": args.tumor,
            "min_alt_fraction": args.min_alt_fraction,
            "min_alt_count": args.min_alt_count,
        }
    )
    return parameters


def get_sv_parameters(args: argparse.Namespace) -> Dict[str, Any]:
    for option, bams in (
        ("-B", args.full_bams),
        ("-S", args.split_bams),
        ("-D", args.discordant_bams),
    ):
        if not bams:
            raise ValidationError("%s is mandatory" % option)

    if not len(args.full_bams) == len(args.split_bams) == len(args.discordant_bams):
        raise ValidationError(
            "-B, -S and -D must contain the same number of BAM files"
        )

    if args.read_length is not None and args.read_length <= 0:
        raise ValidationError("the read length must be positive")

    check_files_exist(
        args.full_bams + args.split_bams + args.discordant_bams + [args.exclude]
    )

    parameters = _common_parameters(args, args.full_bams[0])
    parameters.update(
        {
            "full_bams": args.full_bams,
            "split_bams": args.split_bams,
            "discordant_bams": args.discordant_bams,
            "min_weight": args.min_weight,
            "trim_threshold": args.trim_threshold,
            "exclude": args.exclude,
            "split_params": args.split_params,
            "pair_params": args.pair_params,
            "read_length": args.read_length,
        }
    )
    return parameters


COMMANDS: Dict[str, Dict[str, Callable[..., Any]]] = {
    "align": {"parameters": get_align_parameters, "runner": Aligner},
    "call-variants": {
        "parameters": get_variants_parameters,
        "runner": VariantCalling,
    },
    "call-somatic": {"parameters": get_somatic_parameters, "runner": SomaticCalling},
    "call-sv": {
        "parameters": get_sv_parameters,
        "runner": StructuralVariantCalling,
    },
}


def main(argv: Optional[List[str]] = None) -> None:
    parser = get_parser()
    if argv is None:
        argv = sys.argv[1:]

    if not argv:
        parser.print_help(sys.stderr)
        sys.exit(1)

    args = parser.parse_args(argv)
    if args.configout is not None:
        Config().save(args.configout)
        print("Sample config written to '%s'" % args.configout)
        sys.exit(0)

    if args.command is None:
        parser.error("a command is required")

    command = COMMANDS[args.command_name]
    command_parser: argparse.ArgumentParser = args.command_parser

    try:
        parameters = command["parameters"](args)
    except ValidationError as error:
        command_parser.print_usage(sys.stderr)
        print("Error: %s" % error, file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(format=LOG_FORMAT)

    try:
        config = load_config(args.config)
        config.resolve(
            Config.required_by_command[args.command_name],
            annotate=parameters.get("annotate", False),
        )

        analysis = Analysis(args.command_name, config, parameters)
        command["runner"](analysis).run()
    except ValidationError as error:
        command_parser.print_usage(sys.stderr)
        print("Error: %s" % error, file=sys.stderr)
        sys.exit(1)
    except (ConfigError, DataError, PipelineError) as error:
        print("Error: %s" % error, file=sys.stderr)
        sys.exit(1)

    sys.exit(0)
