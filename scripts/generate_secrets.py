#!/usr/bin/env python3
"""Generate high-entropy secrets for Digital Room deployments."""

from __future__ import annotations

import argparse
import os
import re
import secrets
import sys
from pathlib import Path

DEFAULT_BYTE_LENGTH = 48
SECRET_VARIABLES = ("JWT_SECRET_KEY", "WEBRTC_TURN_CREDENTIAL")


def generate_secret(byte_length: int) -> str:
    """Return a URL-safe secret with ~1.33 * byte_length characters."""
    if byte_length <= 0:
        raise ValueError(f"byte length must be positive (got {byte_length})")
    return secrets.token_urlsafe(byte_length)


def update_env_file(path: Path, variable: str, secret: str) -> bool:
    """Insert or replace ``variable`` in an env-style file.

    Returns True when an existing assignment was replaced.
    """
    assignment = f"{variable}={secret}"
    pattern = re.compile(rf"^{re.escape(variable)}=")
    replaced = False
    lines: list[str] = []
    if path.exists():
        for line in path.read_text(encoding="utf-8").splitlines():
            if pattern.match(line):
                lines.append(assignment)
                replaced = True
            else:
                lines.append(line)
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
    if not replaced:
        lines.append(assignment)

    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    if os.name == "posix":
        os.chmod(path, 0o600)
    return replaced


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "variable",
        nargs="?",
        default="JWT_SECRET_KEY",
        choices=SECRET_VARIABLES,
        help="Setting the secret is generated for.",
    )
    parser.add_argument(
        "--bytes",
        type=int,
        default=DEFAULT_BYTE_LENGTH,
        help="Number of random bytes (roughly 3/4 of the resulting secret length).",
    )
    parser.add_argument(
        "--update-env",
        type=Path,
        metavar="PATH",
        help="Update or create the specified env file with the generated secret.",
    )
    parser.add_argument(
        "--silent",
        action="store_true",
        help="Do not print the secret to stdout (useful for CI rotations).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        secret = generate_secret(args.bytes)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    if args.update_env:
        action = "Replaced" if update_env_file(args.update_env, args.variable, secret) else "Added"
        print(f"{action} {args.variable} in {args.update_env}.", file=sys.stderr)

    if not args.silent:
        print(secret)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
