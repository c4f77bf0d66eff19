"""CLI for overlay card preview — render every card, no generation.

Usage:
    shortcompose cards --manifest job.yaml --output-dir cards/
"""

import argparse
import sys

from .job_manifest import load_job_manifest
from .pipeline import build_renderer


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Render the overlay cards of a job manifest to PNG files.",
    )
    parser.add_argument(
        "--manifest", required=True,
        help="Path to job YAML manifest",
    )
    parser.add_argument(
        "--output-dir", required=True,
        help="Directory for the rendered PNG cards",
    )
    parsed = parser.parse_args(args)

    config = load_job_manifest(parsed.manifest)
    renderer = build_renderer(config)

    assets = []
    for segment in config["segments"]:
        assets.extend(renderer.render_all(segment, parsed.output_dir))

    failed = [a for a in assets if not a.success]
    print(f"Done: {len(assets) - len(failed)}/{len(assets)} cards in {parsed.output_dir}")
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
