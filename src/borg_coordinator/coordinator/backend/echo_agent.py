"""Local demo agent for CLI backend integration tests."""

from __future__ import annotations

import argparse
import os
import sys
import time

from borg_coordinator.coordinator.roles import WORKSPACE_ENV_VAR


def main(argv: list[str] | None = None) -> int:
    """Echo the prompt read from stdin, optionally failing or hanging."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--hang", action="store_true", help="Never return.")
    parser.add_argument("--stderr", default="", help="Text written to stderr.")
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--show-workspace", action="store_true")
    args = parser.parse_args(argv)

    if args.hang:
        while True:
            time.sleep(60)

    prompt = sys.stdin.read()
    sys.stdout.write(prompt.strip() or "empty prompt")
    if args.show_workspace:
        sys.stdout.write(f"\nworkspace={os.getenv(WORKSPACE_ENV_VAR, '')}")
    if args.stderr:
        sys.stderr.write(args.stderr)
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
