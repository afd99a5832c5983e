from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from .catalog import CATALOG_NAMES, available_groups
from .pipeline import BuildContext, build, clean, push
from .sources import DEFAULT_CONFIG, BuildConfig, load_config
from .workspace import BuildError, resolve_paths


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="monorepo-builder",
        description="Merge several repositories into one monorepo, keeping their history.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser_ = subparsers.add_parser("build", help="Build the monorepo from source repositories.")
    _add_common_arguments(build_parser_)
    build_parser_.add_argument(
        "--jobs",
        type=int,
        default=1,
        help="Rewrite this many sources concurrently (merges stay sequential).",
    )
    build_parser_.add_argument(
        "--report",
        type=Path,
        help="Write a Markdown build report to this path.",
    )
    build_parser_.add_argument(
        "--push",
        action="store_true",
        help="Force push to origin after a successful build.",
    )

    push_parser = subparsers.add_parser(
        "push", help="Force push the default and auxiliary branches to origin."
    )
    _add_common_arguments(push_parser)

    clean_parser = subparsers.add_parser("clean", help="Remove the monorepo and staging directories.")
    _add_common_arguments(clean_parser)

    sources_parser = subparsers.add_parser("sources", help="List configured sources and fixups.")
    _add_common_arguments(sources_parser)

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--workspace",
        type=Path,
        default=Path("."),
        help="Directory holding the temp/ staging and monorepo/ target directories.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="JSON file describing sources and fixups (defaults to the built-in jumpstarter set).",
    )
    parser.add_argument(
        "--assets",
        type=Path,
        help="Directory with files copied in by fixups (default: config 'assets' or the workspace).",
    )


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def load_context(args: argparse.Namespace) -> BuildContext:
    config: BuildConfig = DEFAULT_CONFIG
    if args.config:
        config = load_config(args.config, known_fixups=CATALOG_NAMES)
    paths = resolve_paths(args.workspace, assets=args.assets or config.assets)
    return BuildContext(paths=paths, config=config, jobs=getattr(args, "jobs", 1))


def run(args: argparse.Namespace) -> int:
    configure_logging(args.verbose)
    logging.debug("Arguments: %s", args)

    context = load_context(args)
    if args.command == "build":
        if args.jobs < 1:
            raise BuildError("--jobs must be at least 1")
        build(context, report_path=args.report)
        if args.push:
            push(context)
        return 0
    if args.command == "push":
        push(context)
        return 0
    if args.command == "clean":
        clean(context)
        return 0
    if args.command == "sources":
        _print_sources(context)
        return 0
    raise BuildError(f"Unknown command: {args.command}")


def _print_sources(context: BuildContext) -> None:
    config = context.config
    for source in config.sources:
        print(f"{source.name}: {source.url} -> {source.subdir}/ (refs: {', '.join(source.refs)})")
        for branch in source.branches:
            print(f"  branch {branch}")
    groups = available_groups(config)
    selected = config.fixups if config.fixups is not None else list(groups)
    print(f"fixups: {', '.join(selected)}")
    print(f"branch fixups: {', '.join(config.branch_fixups)}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return run(args)
    except BuildError as exc:
        logging.error("%s", exc)
        return 2
    except KeyboardInterrupt:
        logging.error("Interrupted")
        return 130


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
