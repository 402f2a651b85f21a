# main.py
"""CLI entry point for the BookForge book generator."""

from __future__ import annotations

import argparse
import sys

from orchestration.cli_runner import run


def _add_generation_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--model", default=None, help="Model identifier")
    parser.add_argument("--genre", default=None)
    parser.add_argument("--audience", default=None)
    parser.add_argument("--keywords", default=None, help="Comma-separated keywords")
    parser.add_argument("--role", default=None, help="Author persona used in prompts")
    parser.add_argument("--length", default=None, help="short, medium or long")
    parser.add_argument("--language", default=None)
    parser.add_argument("--author", default=None)
    parser.add_argument("--title", default=None)
    parser.add_argument("--subtitle", default=None)
    parser.add_argument("--chapter-count", type=int, default=None)
    parser.add_argument("--temperature", type=float, default=None)
    parser.add_argument("--detailed", action="store_true", help="Longer chapters")
    parser.add_argument(
        "--images", action="store_true", help="Ask for illustration placeholders"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bookforge", description="Generate a book: concept, outline, chapters."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    set_key = sub.add_parser("set-key", help="Verify and store the API key")
    set_key.add_argument("key")

    titles = sub.add_parser("titles", help="Suggest titles and descriptions")
    titles.add_argument("--description", default=None)

    sub.add_parser("concept", help="Generate the book concept")
    sub.add_parser("outline", help="Generate the table of contents")

    chapters = sub.add_parser("chapters", help="Generate chapters from the outline")
    mode = chapters.add_mutually_exclusive_group()
    mode.add_argument("--auto", dest="auto", action="store_true", default=None)
    mode.add_argument("--manual", dest="auto", action="store_false")

    cover = sub.add_parser("cover", help="Generate a cover image")
    cover.add_argument("--prompt", default=None)
    cover.add_argument("--size", default=None)

    prefs = sub.add_parser("prefs", help="Store default generation settings")
    prefs_mode = prefs.add_mutually_exclusive_group()
    prefs_mode.add_argument("--auto", dest="auto", action="store_true", default=None)
    prefs_mode.add_argument("--manual", dest="auto", action="store_false")

    sub.add_parser("status", help="Show project progress")
    sub.add_parser("reset", help="Clear the current project")

    for name in ("titles", "concept", "outline", "chapters", "cover", "prefs", "status", "reset"):
        _add_generation_options(sub.choices[name])
    return parser


def main() -> None:
    """Parse command-line arguments and run BookForge."""
    args = build_parser().parse_args()
    sys.exit(run(args))


if __name__ == "__main__":
    main()
