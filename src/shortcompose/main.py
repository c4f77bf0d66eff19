"""Subcommand dispatcher for shortcompose.

Usage:
    shortcompose run    --manifest job.yaml [--output-dir out/]
    shortcompose cards  --manifest job.yaml --output-dir cards/
"""

import argparse
import sys


def main(args=None):
    parser = argparse.ArgumentParser(
        prog="shortcompose",
        description="Generated-clip vertical short-video pipeline.",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Register subcommands. Each delegates to its own module's main().
    subparsers.add_parser("run", help="Generate clips and compose the final short")
    subparsers.add_parser("cards", help="Render overlay cards only (template preview)")

    # Parse only the subcommand name, pass the rest to the subcommand's parser.
    parsed, remaining = parser.parse_known_args(args)

    if parsed.command is None:
        parser.print_help()
        sys.exit(1)

    if parsed.command == "run":
        from .run_cli import main as run_main
        run_main(remaining)
    elif parsed.command == "cards":
        from .cards_cli import main as cards_main
        cards_main(remaining)


if __name__ == "__main__":
    main()
