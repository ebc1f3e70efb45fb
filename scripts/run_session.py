"""Launches a resilient session against the configured endpoint from a source checkout."""

from __future__ import annotations

import sys
from pathlib import Path


def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))

    # Lazy import after adjusting sys.path
    from wsession.bootstrap import main as run_session  # type: ignore

    run_session(sys.argv[1:])


if __name__ == "__main__":
    main()
