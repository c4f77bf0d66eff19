"""CLI for the full pipeline — generate, render cards, compose.

Usage:
    shortcompose run --manifest job.yaml
    shortcompose run --manifest job.yaml --output-dir out/ --concurrency 3
    shortcompose run --manifest job.yaml --validate

The fal API key is read from FAL_KEY (a .env file in the working
directory is loaded first).
"""

import argparse
import os
import sys

from dotenv import load_dotenv

from .job_manifest import load_job_manifest, validate_assets
from .pipeline import build_orchestrator, inline_seed_images


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Generate one clip per segment and compose a vertical short.",
    )
    parser.add_argument(
        "--manifest", required=True,
        help="Path to job YAML manifest",
    )
    parser.add_argument(
        "--output-dir", default=None,
        help="Output directory (overrides output.dir in the manifest)",
    )
    parser.add_argument(
        "--concurrency", type=int, default=None,
        help="Segments generated in parallel (overrides generation.concurrency)",
    )
    parser.add_argument(
        "--keep-scratch", action="store_true",
        help="Keep intermediate files after a successful run",
    )
    parser.add_argument(
        "--validate", action="store_true",
        help="Validate manifest and assets only, no generation",
    )
    parsed = parser.parse_args(args)

    if parsed.concurrency is not None and parsed.concurrency < 1:
        parser.error("--concurrency must be >= 1")

    config = load_job_manifest(parsed.manifest)
    for warning in validate_assets(config):
        print(f"  WARN   {warning}")

    segments = config["segments"]
    if parsed.validate:
        print(
            f"Manifest valid: {len(segments)} segments, "
            f"{len(config['cues'])} cues, "
            f"{config['video']['resolution'][0]}x{config['video']['resolution'][1]} "
            f"@ {config['video']['fps']}fps"
        )
        return

    load_dotenv()
    api_key = os.environ.get("FAL_KEY", "")
    if not api_key:
        parser.error("FAL_KEY is not set (environment or .env)")

    orchestrator = build_orchestrator(
        config, api_key,
        output_dir=parsed.output_dir,
        concurrency=parsed.concurrency,
        keep_scratch=parsed.keep_scratch,
    )
    result = orchestrator.run(inline_seed_images(segments), config["cues"])

    if not result.success:
        print(f"Failed at {result.failed_stage}: {result.error}", file=sys.stderr)
        sys.exit(1)
    w, h = result.resolution
    print(f"Done: {result.output_path} ({result.duration:.1f}s, {w}x{h})")


if __name__ == "__main__":
    main()
