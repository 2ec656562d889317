"""Command-line entry point: rubyfont INPUT... -o DIR."""

import argparse
import glob
import logging
import sys
from pathlib import Path

from .config import Config, OUTPUT_FORMATS, RUBY_KINDS, load_config
from .errors import ConfigError
from .injector import Position, SideAdvance, Strategy
from .pipeline import process_batch

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rubyfont",
        description="Add ruby annotations (pinyin, romaji, ...) to TrueType fonts and collections.",
    )
    parser.add_argument("inputs", nargs="+", metavar="INPUT", help="font files or glob patterns")
    parser.add_argument("-o", "--output", type=Path, help="output directory")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--kind", choices=RUBY_KINDS, help="reading source")
    parser.add_argument("--ruby-font", type=Path, help="font the ruby text is drawn with")
    parser.add_argument("--readings", type=Path, help="YAML reading table for --kind table")
    parser.add_argument("--position", choices=[p.value for p in Position])
    parser.add_argument("--strategy", choices=[s.value for s in Strategy])
    parser.add_argument("--side-advance", choices=[s.value for s in SideAdvance])
    parser.add_argument("--tight", action="store_true", default=None, help="place each annotation independently")
    parser.add_argument("--subset", action="store_true", default=None, help="keep only annotated glyphs")
    parser.add_argument("--split", action="store_true", default=None, help="write collection members separately")
    parser.add_argument("--format", choices=OUTPUT_FORMATS)
    parser.add_argument("-j", "--jobs", type=int, help="worker processes")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true")
    verbosity.add_argument("-q", "--quiet", action="store_true")
    return parser


def expand_inputs(patterns) -> list:
    paths = []
    for pattern in patterns:
        matches = sorted(glob.glob(pattern))
        if not matches:
            if Path(pattern).exists():
                matches = [pattern]
            else:
                logger.warning("No files match %s", pattern)
        paths.extend(Path(m) for m in matches)
    return paths


def apply_overrides(config: Config, args) -> Config:
    ruby = config.ruby
    if args.kind:
        ruby.kind = args.kind
    if args.ruby_font:
        ruby.font = args.ruby_font
    if args.readings:
        ruby.readings = args.readings
    if args.position:
        ruby.position = Position(args.position)
    if args.strategy:
        ruby.strategy = Strategy(args.strategy)
    if args.side_advance:
        ruby.side_advance = SideAdvance(args.side_advance)
    if args.tight is not None:
        ruby.tight = args.tight
    if args.subset is not None:
        config.subset.enabled = args.subset
    if args.split is not None:
        config.output.split = args.split
    if args.format:
        config.output.format = args.format
    if args.output:
        config.output.directory = args.output
    if args.jobs is not None:
        if args.jobs < 1:
            raise ConfigError("--jobs must be at least 1")
        config.jobs = args.jobs
    return config


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        config = load_config(args.config) if args.config else Config()
        apply_overrides(config, args)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    paths = expand_inputs(args.inputs)
    if not paths:
        print("Error: no input fonts found", file=sys.stderr)
        return 1

    try:
        results = process_batch(paths, config)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    failed = [r for r in results if not r.ok]
    for result in results:
        if result.ok:
            for output in result.outputs:
                print(f"Font saved to: {output}")
        else:
            print(f"Failed: {result.source}: {result.error}")
    print(f"{len(results) - len(failed)} of {len(results)} file(s) processed")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
