"""Command line interface: validate and repair image references, upgrade processed URLs, or serve the app."""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from rteimages.config import get_reference_config, get_settings
from rteimages.dependencies import create_reference_updater, create_validator
from rteimages.models.db import close_db, get_db_session
from rteimages.models.validation import ValidationResult

logger = logging.getLogger("rteimages")

SRC_COLUMN_WIDTH = 50

# ANSI color codes, only used when the terminal supports them
_USE_COLOR = sys.stdout.isatty()


def _color(code: str, text: str) -> str:
    if _USE_COLOR:
        return f"\033[{code}m{text}\033[0m"
    return text


def green(text: str) -> str:
    return _color("32", text)


def yellow(text: str) -> str:
    return _color("33", text)


def bold(text: str) -> str:
    return _color("1", text)


def truncate_src(value: str | None, width: int = SRC_COLUMN_WIDTH) -> str:
    if value is None:
        return "-"
    if len(value) <= width:
        return value
    return value[: width - 3] + "..."


def format_issue_table(result: ValidationResult) -> str:
    headers = ["Type", "Table", "UID", "Field", "File UID", "Current src", "Expected src", "Fixable"]
    rows = [
        [
            issue.type.value,
            issue.table,
            str(issue.uid),
            issue.field,
            "-" if issue.file_uid is None else str(issue.file_uid),
            truncate_src(issue.current_src),
            truncate_src(issue.expected_src),
            "yes" if issue.is_fixable() else "no",
        ]
        for issue in result.issues
    ]
    widths = [max(len(row[i]) for row in [headers, *rows]) for i in range(len(headers))]

    def line(cells: list[str]) -> str:
        return "  ".join(cell.ljust(width) for cell, width in zip(cells, widths)).rstrip()

    separator = "  ".join("-" * width for width in widths)
    return "\n".join([line(headers), separator, *(line(row) for row in rows)])


def print_summary(result: ValidationResult) -> None:
    print(bold("Image reference validation"))
    print(f"  Scanned records:  {result.scanned_records}")
    print(f"  Scanned images:   {result.scanned_images}")
    print(f"  Issues found:     {len(result.issues)}")
    print(f"  Affected records: {result.affected_records}")
    print()


async def validate_command(session: AsyncSession, args: argparse.Namespace) -> int:
    """Scan, report and optionally fix. Returns the process exit code."""
    settings = get_settings()
    validator = create_validator(session, settings, get_reference_config())
    result = await validator.validate(args.table)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print_summary(result)

    if not result.has_issues:
        if not args.json:
            print(green("No image reference issues found."))
        return 0

    if not args.json:
        print(format_issue_table(result))
        print()

    # Orphaned references count as fixable but have no src to write
    repairable = len(result.repairable_issues)
    if not args.fix or args.dry_run:
        print(f"Dry-run mode. {repairable} fixable issue(s) found. Use --fix to apply corrections.")
        return 1

    if repairable == 0:
        print(yellow("No fixable issues found. Remaining issues need manual attention."))
        return 1

    updated = await validator.fix(result)
    print(green(f"Fixed {updated} record(s) ({repairable} fixable issues)."))
    return 0


async def upgrade_processed_command(session: AsyncSession, args: argparse.Namespace) -> int:
    """Repoint processed rendition URLs to their originals."""
    validator = create_validator(session, get_settings(), get_reference_config())
    updated = await create_reference_updater(session).upgrade_processed_src(validator, args.table)
    if updated:
        print(green(f"Repointed processed image URLs in {updated} record(s)."))
    else:
        print("No processed image URLs found.")
    return 0


COMMANDS: dict[str, Callable[[AsyncSession, argparse.Namespace], Awaitable[int]]] = {
    "validate": validate_command,
    "upgrade-processed": upgrade_processed_command,
}


async def run_command(args: argparse.Namespace) -> int:
    exit_code = 1
    try:
        # Runs once; letting the generator finish commits the session
        async for session in get_db_session():
            exit_code = await COMMANDS[args.command](session, args)
    finally:
        await close_db()
    return exit_code


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("rteimages.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rteimages", description=__doc__)
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Validate image references in rich-text fields")
    validate.add_argument("--fix", action="store_true", help="Apply corrections to fixable issues")
    validate.add_argument("--dry-run", action="store_true", help="Only report, even with --fix (default)")
    validate.add_argument("-t", "--table", default=None, help="Only scan this table")
    validate.add_argument("--json", action="store_true", help="Print the report as JSON")

    upgrade = subparsers.add_parser(
        "upgrade-processed", help="Point images stored with processed rendition URLs at their originals"
    )
    upgrade.add_argument("-t", "--table", default=None, help="Only upgrade this table")

    serve_parser = subparsers.add_parser("serve", help="Run the admin API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if get_settings().debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command in COMMANDS:
        return asyncio.run(run_command(args))
    return serve(args)


if __name__ == "__main__":
    sys.exit(main())
