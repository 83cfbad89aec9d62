"""
mir2petri: rustc MIR text -> Petri net (PNML, LoLA, DOT).
CLI entry point. Uses only Python standard library.

Exit codes: 1 input missing or unparsable, 2 output folder missing,
3 translation failure, 4 output file generation failure.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .errors import TranslationError
from .mir_parser import MirProgram, ParseError
from .pnml_writer import WRITERS, net_to_dict
from .translator import Translator

logger = logging.getLogger(__name__)

EXIT_INPUT = 1
EXIT_OUTPUT_FOLDER = 2
EXIT_TRANSLATION = 3
EXIT_OUTPUT_FILE = 4

_LOG_LEVELS = [logging.WARNING, logging.INFO, logging.DEBUG]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mir2petri",
        description="Translate rustc MIR text into a Petri net for deadlock detection.",
    )
    parser.add_argument("--mir", required=True, help="Input MIR text file (rustc -Z unpretty=mir)")
    parser.add_argument(
        "--out-dir",
        default=".",
        help="Existing folder for the output files (default: current directory)",
    )
    parser.add_argument(
        "--filename",
        default="net",
        help="Base name of the output files, without extension (default: net)",
    )
    parser.add_argument(
        "--format",
        dest="formats",
        action="append",
        choices=sorted(WRITERS),
        help="Output format, repeatable (default: pnml)",
    )
    parser.add_argument(
        "--entry-fn",
        default="main",
        help="Entry function name (default: main)",
    )
    parser.add_argument(
        "--max-fns",
        type=int,
        default=None,
        metavar="N",
        help="Max number of functions to parse (default: no limit)",
    )
    parser.add_argument(
        "--dump-json",
        metavar="FILE",
        help="Optional: dump the Petri net as JSON for debugging",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="More logging output (-v info, -vv debug)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=_LOG_LEVELS[min(args.verbose, len(_LOG_LEVELS) - 1)],
        format="%(levelname)s %(name)s: %(message)s",
    )

    mir_path = Path(args.mir)
    if not mir_path.exists():
        print(f"Error: MIR file not found: {mir_path}", file=sys.stderr)
        return EXIT_INPUT

    out_dir = Path(args.out_dir)
    if not out_dir.is_dir():
        print(f"Error: output folder does not exist: {out_dir}", file=sys.stderr)
        return EXIT_OUTPUT_FOLDER

    try:
        text = mir_path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        print(f"Error: cannot read MIR file: {e}", file=sys.stderr)
        return EXIT_INPUT

    try:
        program = MirProgram.from_text(text, max_fns=args.max_fns)
    except ParseError as e:
        print(f"Parse error: {e}", file=sys.stderr)
        return EXIT_INPUT

    if not program.functions:
        print("Error: no functions parsed from MIR", file=sys.stderr)
        return EXIT_INPUT

    translator = Translator(program, entry_fn=args.entry_fn)
    translator.run()
    try:
        net = translator.get_result()
    except TranslationError as e:
        print(f"Translation error: {e}", file=sys.stderr)
        return EXIT_TRANSLATION

    for fmt in args.formats or ["pnml"]:
        path = out_dir / f"{args.filename}.{fmt}"
        try:
            WRITERS[fmt](net, str(path))
        except OSError as e:
            print(f"Error: cannot write {fmt.upper()}: {e}", file=sys.stderr)
            return EXIT_OUTPUT_FILE
        logger.info("wrote %s", path)

    if args.dump_json:
        try:
            Path(args.dump_json).write_text(
                json.dumps(net_to_dict(net), indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
        except OSError as e:
            print(f"Warning: cannot write dump-json: {e}", file=sys.stderr)

    return 0


if __name__ == "__main__":
    sys.exit(main())
