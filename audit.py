#!/usr/bin/env python3
"""
bin-audit - List and rebuild compiled binaries from their source packages.

Scans the directories on PATH and GOBIN under your home directory (plus
$GOPATH/bin), identifies Go binaries by their embedded build information
and rebuilds them in place from the latest source.

Usage:
    audit.py                      # List managed binaries
    audit.py ~/bin golang.org/x   # List binaries in ~/bin from golang.org/x/...
    audit.py -u                   # Rebuild every writable binary
    audit.py -u gopls             # Rebuild the gopls found on PATH
    audit.py -s .                 # Download all sources into $GOPATH
"""

import argparse
import os
import sys

from bin_audit.config import ConfigError, load_config, validate_config
from bin_audit.environment import detect_host
from bin_audit.inventory import SearchPathError, search
from bin_audit.logging_config import get_logger, setup_logging
from bin_audit.render import format_skip, make_reporter, render_json, render_listing
from bin_audit.toolchain import GoToolchain
from bin_audit.update import fetch_sources, update


def install_arguments(args: argparse.Namespace) -> list[str]:
    """Extra arguments for the install command."""
    extra = list(args.install_args or [])
    if args.ldflags:
        extra.append(f"-ldflags={args.ldflags}")
    return extra


def resolve_sources_root(value: str, workspace_var: str) -> str:
    """
    Directory the sources are downloaded into.

    "." means the first entry of the workspace variable (e.g. $GOPATH).

    Raises:
        ValueError: If "." is given and the variable is unset
    """
    if value != ".":
        return os.path.abspath(value)
    entries = [e for e in os.environ.get(workspace_var, "").split(os.pathsep) if e]
    if not entries:
        raise ValueError(f"${workspace_var} is not set")
    return os.path.abspath(entries[0])


def cmd_list(inventory, args: argparse.Namespace) -> int:
    """Print the inventory."""
    if args.json:
        render_json(inventory.to_list())
    else:
        render_listing(inventory)
    return 0


def cmd_update(inventory, toolchain, host, config, args: argparse.Namespace) -> int:
    """Rebuild every writable binary in the inventory."""
    if args.json:
        report = lambda binary, elapsed, error: None  # noqa: E731
    else:
        for binary in inventory:
            if not binary.writable:
                print(format_skip(binary, sys.stdout))
        report = make_reporter()

    result = update(
        inventory,
        toolchain,
        report,
        extra_args=install_arguments(args),
        host=host,
        config=config,
        verbose=args.verbose,
    )

    if args.json:
        render_json({"binaries": inventory.to_list(), "summary": result.to_dict()})

    get_logger().debug(
        f"Updated {len(result.succeeded)} binaries, {len(result.failed)} failed, "
        f"{len(result.skipped)} skipped in {result.duration_seconds:.2f}s"
    )
    return 0 if result.success else 1


def cmd_sources(inventory, toolchain, host, config, args: argparse.Namespace) -> int:
    """Download the sources of every binary into a build root."""
    try:
        root = resolve_sources_root(args.sources, config.toolchain.workspace_var)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    report = (lambda binary, elapsed, error: None) if args.json else make_reporter()
    failures = fetch_sources(
        inventory, toolchain, root, report,
        host=host, config=config, verbose=args.verbose,
    )

    if args.json:
        render_json({"root": root, "binaries": inventory.to_list(), "failed_sources": failures})
    return 0 if failures == 0 else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bin-audit",
        description="List and rebuild compiled binaries from their source packages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Arguments may be directories or paths (search there instead of the\n"
            "default paths), names of executables on PATH, or package prefixes\n"
            "(keep only binaries built from matching packages)."
        ),
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--update", "-u",
        action="store_true",
        help="Rebuild writable binaries from the latest source",
    )
    mode.add_argument(
        "--sources", "-s",
        metavar="DIR",
        help="Download sources into DIR ('.' for the first $GOPATH entry)",
    )

    parser.add_argument(
        "--ldflags",
        metavar="FLAGS",
        help="Linker flags passed to the build as -ldflags=FLAGS",
    )
    parser.add_argument(
        "--install-arg",
        dest="install_args",
        action="append",
        metavar="ARG",
        help="Extra argument for the install command (repeatable)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Write JSON instead of text lines",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Configuration file (YAML or JSON)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "targets",
        nargs="*",
        help="Directories, paths, executable names or package prefixes",
    )
    return parser


def main(argv=None) -> int:
    """Main entry point for bin-audit."""
    args = build_parser().parse_args(argv)

    # Setup logging
    setup_logging(verbose=args.verbose)
    logger = get_logger()

    try:
        config = load_config(args.config, verbose=args.verbose)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    for warning in validate_config(config):
        logger.warning(warning)

    host = detect_host(verbose=args.verbose)
    toolchain = GoToolchain(
        config.toolchain,
        host,
        timeout=config.preferences.action_timeout_seconds,
        verbose=args.verbose,
    )

    try:
        inventory = search(args.targets, toolchain, host=host, config=config, verbose=args.verbose)
    except SearchPathError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    # Route to appropriate command
    if args.update:
        return cmd_update(inventory, toolchain, host, config, args)
    elif args.sources:
        return cmd_sources(inventory, toolchain, host, config, args)
    else:
        return cmd_list(inventory, args)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
