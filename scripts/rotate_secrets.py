#!/usr/bin/env python3
"""
Rotate ENCRYPTION_KEY in a .env file.

Usage:
  python scripts/rotate_secrets.py [path/to/.env]
Every connection id sealed under the old key stops opening, so connected
Jira users have to run the OAuth flow again. Restart the server afterwards.
"""
import argparse
import secrets
import sys
from pathlib import Path

from dotenv import dotenv_values, set_key


def rotate_env_key(env_path: Path, key: str = "ENCRYPTION_KEY") -> str:
    """Write a fresh 256-bit hex value for ``key``; other entries are left alone."""
    if not env_path.exists():
        raise FileNotFoundError(env_path)
    new = secrets.token_hex(32)
    set_key(str(env_path), key, new, quote_mode="never")
    return new


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("env_file", nargs="?", default=".env")
    parser.add_argument("--key", default="ENCRYPTION_KEY")
    args = parser.parse_args()

    env_path = Path(args.env_file)
    had_key = bool(env_path.exists() and dotenv_values(env_path).get(args.key))
    try:
        rotate_env_key(env_path, args.key)
    except FileNotFoundError:
        print(f"Missing {env_path}")
        return 1
    print(f"Rotated {args.key} in {env_path}")
    if had_key and args.key == "ENCRYPTION_KEY":
        print("All previously issued Jira connection ids are now invalid; users must reconnect.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
