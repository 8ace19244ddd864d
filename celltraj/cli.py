"""Command-line interface for celltraj."""

from __future__ import annotations

import argparse
from typing import Iterable


def main(argv: Iterable[str] | None = None) -> int:
    """Run the full pipeline from a JSON config.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success).
    """
    parser = argparse.ArgumentParser(description="celltraj trajectory analysis pipeline")
    parser.add_argument(
        "--config",
        default="configs/celltraj_example.json",
        help="Path to JSON config",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)

    from celltraj.pipeline.runner import run_pipeline

    run_pipeline(args.config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
