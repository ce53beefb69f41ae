"""Command-line entry point for the music video pipeline."""

from __future__ import annotations

import argparse
import logging
import sys

from mvgen.pipeline import MusicVideoGenerator


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Generate a music video from an audio track.")
    parser.add_argument(
        "--audio",
        help="Audio file to use (defaults to the first audio file in the input directory).",
    )
    parser.add_argument(
        "--lyrics",
        help="Lyrics file (defaults to a .txt/.lrc next to the audio).",
    )
    parser.add_argument(
        "--resume",
        metavar="RUN_ID",
        help="Resume a previous run from its last completed step.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log node inputs/outputs and client polling.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Entry point used by ``python run.py``."""
    args = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    pipeline = MusicVideoGenerator()
    state = pipeline.run(audio_path=args.audio, lyrics_path=args.lyrics, resume_run_id=args.resume)
    print("Generation completed.")
    print(f"Run id: {state.run_id}")
    print(f"Final video: {state.final_video or 'N/A'}")
    if state.manifest_path:
        print(f"Composition manifest (dry run): {state.manifest_path}")
    print(f"Report: {state.report_path or 'N/A'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
