#!/usr/bin/env python3
"""Run the rteimages checks locally: formatting, linting, tests and type checking."""

import argparse
import subprocess
import sys
import time
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.resolve()

_USE_COLOR = sys.stdout.isatty()


def _color(code: str, text: str) -> str:
    if _USE_COLOR:
        return f"\033[{code}m{text}\033[0m"
    return text


def green(text: str) -> str:
    return _color("32", text)


def red(text: str) -> str:
    return _color("31", text)


def bold(text: str) -> str:
    return _color("1", text)


CHECKS: dict[str, list[str]] = {
    "format": [sys.executable, "-m", "ruff", "format", "--check", "src", "tests"],
    "lint": [sys.executable, "-m", "ruff", "check", "src", "tests"],
    "tests": [sys.executable, "-m", "pytest", "-q"],
    "types": [sys.executable, "-m", "pyright"],
}


def run_check(cmd: list[str]) -> tuple[bool, float]:
    start = time.monotonic()
    result = subprocess.run(cmd, cwd=PROJECT_ROOT)
    return result.returncode == 0, time.monotonic() - start


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("checks", nargs="*", help=f"Checks to run: {', '.join(CHECKS)} (default: all)")
    parser.add_argument("--fail-fast", action="store_true", help="Stop at the first failing check")
    args = parser.parse_args()

    selected = args.checks or list(CHECKS)
    unknown = [name for name in selected if name not in CHECKS]
    if unknown:
        parser.error(f"unknown check(s): {', '.join(unknown)}")
    failed: list[str] = []

    for name in selected:
        print(bold(f"==> {name}"), flush=True)
        passed, elapsed = run_check(CHECKS[name])
        print(f"{green('PASS') if passed else red('FAIL')} {name} ({elapsed:.1f}s)\n")
        if not passed:
            failed.append(name)
            if args.fail_fast:
                break

    if failed:
        print(f"{bold('Failed:')} {', '.join(failed)}")
        sys.exit(1)
    print(green(f"All {len(selected)} checks passed"))


if __name__ == "__main__":
    main()
