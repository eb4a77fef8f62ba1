"""
OpenAI API key lookup.

The key is read from the environment after ``.env`` (repo root first, then
the working directory) has been loaded. Only the analyzer needs it; the
prober and aggregator run without any key.

    mofa-check-keys        # exit 1 if OPENAI_API_KEY is missing
"""

import argparse
import os
import sys
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import find_dotenv, load_dotenv

REQUIRED_KEYS = ("OPENAI_API_KEY",)

_repo_env = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_repo_env if _repo_env.exists() else find_dotenv(usecwd=True))


class MissingAPIKeyError(Exception):
    """Raised when OPENAI_API_KEY is not configured."""
    pass


def get_openai_key(environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Return OPENAI_API_KEY, stripped.

    Raises:
        MissingAPIKeyError: If the key is unset or blank
    """
    env = os.environ if environ is None else environ
    key = env.get("OPENAI_API_KEY", "").strip()
    if not key:
        raise MissingAPIKeyError(
            "OPENAI_API_KEY environment variable required. "
            "Copy .env.example to .env and add your key."
        )
    return key


def check_keys(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Map each required key to "OK" or "MISSING"."""
    env = os.environ if environ is None else environ
    return {name: "OK" if env.get(name, "").strip() else "MISSING" for name in REQUIRED_KEYS}


def main(argv: Optional[List[str]] = None) -> int:
    """Print key status; exit 1 when any key is missing."""
    argparse.ArgumentParser(
        prog="mofa-check-keys",
        description="Report whether the API keys the analyzer needs are configured",
    ).parse_args(argv)

    status = check_keys()
    for name, state in status.items():
        print(f"{name}: {state}")
    return 1 if "MISSING" in status.values() else 0


if __name__ == "__main__":
    sys.exit(main())
