"""Subcommand dispatcher for daycompile.

Usage:
    daycompile compile --manifest day.yaml --output day.mp4
    daycompile plan    --manifest day.yaml
"""

import argparse
import sys


def main(args=None):
    parser = argparse.ArgumentParser(
        prog="daycompile",
        description="Compile a day of logged photos and clips into one video.",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Register subcommands. Each delegates to its own module's main().
    subparsers.add_parser("compile", help="Compile a day manifest into an mp4")
    subparsers.add_parser("plan", help="Print the timeline without encoding")

    # Parse only the subcommand name, pass the rest to the subcommand's parser.
    parsed, remaining = parser.parse_known_args(args)

    if parsed.command is None:
        # No subcommand given at all — show help and exit with error.
        parser.print_help()
        sys.exit(1)

    if parsed.command == "compile":
        from .cli import main as compile_main
        compile_main(remaining)
    elif parsed.command == "plan":
        from .plan_cli import main as plan_main
        plan_main(remaining)


if __name__ == "__main__":
    main()
