#!/usr/bin/env python3
"""Run the celltraj trajectory pipeline from a JSON config."""

from __future__ import annotations

import argparse

from celltraj.pipeline.runner import run_pipeline


def main() -> int:
    parser = argparse.ArgumentParser(description="celltraj trajectory pipeline")
    parser.add_argument(
        "--config",
        default="configs/celltraj_example.json",
        help="Path to JSON config",
    )
    args = parser.parse_args()
    run_pipeline(args.config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
