#!/usr/bin/env python3
"""Main entry point for sshtail."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .config import (
    HostKeyPolicy,
    TailOptions,
    load_spec,
    new_spec_template,
    read_user_config,
    spec_filename,
    write_default_key,
)
from .errors import KeyLoadError, SpecError, TailError
from .keys import resolve_credentials
from .multiplexer import run_spec


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sshtail",
        description="Tail files on multiple SSH hosts as one consolidated stream",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    spec_parser = commands.add_parser("spec", help="Operations involving spec files")
    spec_commands = spec_parser.add_subparsers(dest="spec_command", required=True)

    init_parser = spec_commands.add_parser(
        "init", help="Initialize a spec template (YAML) with the given file name"
    )
    init_parser.add_argument("name", help="Spec file name ('.yml' is appended)")
    init_parser.add_argument(
        "--with-comments",
        action="store_true",
        help="Include comments explaining the format",
    )
    init_parser.add_argument(
        "--exclude-keys",
        action="store_true",
        help="Exclude the keys section to create a portable spec file",
    )
    init_parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Overwrite the target file without asking",
    )

    run_parser = spec_commands.add_parser(
        "run", help="Connect to every host in a spec file and tail the files specified"
    )
    run_parser.add_argument("spec", type=Path, help="Path to the spec file")
    run_parser.add_argument(
        "--insecure-skip-host-key-check",
        action="store_true",
        help="Do not verify host keys against known_hosts",
    )
    run_parser.add_argument(
        "--known-hosts",
        type=Path,
        help="known_hosts file to verify host keys with (default: ~/.ssh/known_hosts)",
    )
    run_parser.add_argument(
        "--connect-timeout",
        type=float,
        help="Seconds to wait for each connection to open",
    )
    run_parser.add_argument(
        "--log-dir",
        type=Path,
        help="Also write each host's output to <log-dir>/<timestamp>/<host>.log",
    )
    run_parser.add_argument(
        "--dashboard",
        action="store_true",
        help="Run with the TUI dashboard",
    )

    usekey_parser = commands.add_parser(
        "usekey", help="Set the default SSH key used when a host has no key entry"
    )
    usekey_parser.add_argument("path", help="Path to the private key")

    return parser


def setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stderr)
        # asyncssh logs every channel at INFO
        logging.getLogger("asyncssh").setLevel(logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    if args.command == "usekey":
        return _use_key(args.path)
    if args.spec_command == "init":
        return _init_spec(args.name, args.with_comments, args.exclude_keys, args.overwrite)
    return _run(args)


def _use_key(key_path: str) -> int:
    try:
        config_path = write_default_key(key_path)
    except OSError as e:
        print(f"Error: Unable to write config file: {e}", file=sys.stderr)
        return 1
    print(f"Default key set to {key_path} in {config_path}")
    return 0


def _init_spec(name: str, with_comments: bool, exclude_keys: bool, overwrite: bool) -> int:
    filename = Path(spec_filename(name))
    print(f"Creating template spec file '{filename}'")
    text = new_spec_template(with_comments=with_comments, exclude_keys=exclude_keys)

    if not overwrite and filename.exists():
        response = input("The file already exists, do you want to replace it (Y/N)? ")
        if response.strip().lower() not in ("y", "yes"):
            print("Canceling init operation", file=sys.stderr)
            return 1

    try:
        filename.write_text(text)
    except OSError as e:
        print(f"Error: Unable to write to file {filename}: {e}", file=sys.stderr)
        return 1
    print("Spec written to file")
    return 0


def options_from_args(args: argparse.Namespace) -> TailOptions:
    """Turn parsed command line flags into core options."""
    return TailOptions(
        host_key_policy=(
            HostKeyPolicy.SKIP if args.insecure_skip_host_key_check else HostKeyPolicy.KNOWN_HOSTS
        ),
        known_hosts=args.known_hosts.expanduser() if args.known_hosts else None,
        connect_timeout=args.connect_timeout,
        log_dir=args.log_dir.expanduser().resolve() if args.log_dir else None,
        install_signal_handlers=not args.dashboard,
    )


def _run(args: argparse.Namespace) -> int:
    try:
        spec = load_spec(args.spec)
    except SpecError as e:
        print(f"Unable to parse spec file '{args.spec}': {e}", file=sys.stderr)
        return 1

    options = options_from_args(args)

    try:
        user_config = read_user_config()
        credentials = resolve_credentials(spec, user_config.default_key)
    except (SpecError, KeyLoadError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.dashboard:
        return _run_dashboard(spec, credentials, options)
    return _run_headless(spec, credentials, options)


def _run_headless(spec, credentials, options: TailOptions) -> int:
    """Run without TUI dashboard, writing the merged stream to stdout."""
    try:
        result = asyncio.run(run_spec(spec, credentials, sys.stdout.buffer, options))
    except TailError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted during setup", file=sys.stderr)
        return 130

    if result.close_errors:
        failed = ", ".join(e.host_tag for e in result.close_errors)
        print(f"Sessions closed with errors: {failed}", file=sys.stderr)
    return 0


def _run_dashboard(spec, credentials, options: TailOptions) -> int:
    """Run with the TUI dashboard."""
    from .dashboard import Dashboard

    app = Dashboard(spec, credentials, options)
    app.run()

    if app.setup_error:
        print(f"Error: {app.setup_error}", file=sys.stderr)
        return 1
    print("Shut down complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
