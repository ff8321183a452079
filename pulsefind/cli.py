"""
PulseFind - Beat Identification CLI

Command-line interface for scanning a beat against the local fingerprint
store and external recognition services. Installed as 'pulsefind'.

Example usage:
    pulsefind path/to/beat.mp3
    pulsefind --deep --mode strict path/to/beat.wav
    pulsefind --output results.json path/to/beat.wav
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from pulsefind import __version__
from pulsefind.core.engine import create_scan_engine
from pulsefind.core.models import MatchingMode, ScanResult
from pulsefind.utils.config import load_config
from pulsefind.utils.errors import AudioLoadError, PulseFindError
from pulsefind.utils.logging import setup_logging_from_config


def print_scan_result(audio_file: Path, result: ScanResult) -> None:
    """Print a ranked match table to the console."""
    print("\n" + "=" * 78)
    print("PULSEFIND SCAN RESULTS")
    print("=" * 78)
    print(f"File: {audio_file.name}")
    print(f"Processing Time: {result.processing_time:.3f}s")
    print(f"Mode: {result.matching_mode.value} (threshold {result.active_threshold}%)")
    print(f"Source: {'local fingerprint store' if result.from_cache else 'external scan'}")
    print(
        f"Characteristics: {result.characteristics.tempo_bpm:.0f} BPM, "
        f"{result.characteristics.genre.value}, "
        f"energy {result.characteristics.energy:.2f}"
    )
    print(result.thresholds.explanation)
    print("-" * 78)

    if not result.matches:
        print(result.message or "No matches")
        print("-" * 78)
        return

    print(f"{'#':<4} {'Title':<28} {'Artist':<22} {'Conf':>5}  Sources")
    print("-" * 78)
    for rank, match in enumerate(result.matches, start=1):
        sources = ", ".join(s.value for s in match.sources)
        print(
            f"{rank:<4} {_clip(match.title, 28):<28} {_clip(match.artist, 22):<22} "
            f"{match.confidence:>4.0f}%  {sources}"
        )
    print("-" * 78)

    metrics = result.metrics
    print(
        f"Segments scanned: {metrics.segments_scanned} | "
        f"Before filter: {metrics.results_before_filter} | "
        f"After filter: {metrics.results_after_filter}"
    )


def _clip(text: str, width: int) -> str:
    if len(text) <= width:
        return text
    return text[:width - 3] + "..."


def scan_single_file(
    audio_file: Path,
    config: dict,
    deep_scan: bool = False,
    matching_mode: str = "loose",
    output_json: Optional[Path] = None,
    verbose: bool = False,
) -> int:
    """
    Scan a single audio file.

    Args:
        audio_file: Path to audio file
        config: Configuration dictionary
        deep_scan: Plan the deep segment set
        matching_mode: "strict" or "loose"
        output_json: Optional path for JSON output
        verbose: Enable verbose error output

    Returns:
        Exit code (0 for success, 1 for error, 2 for unusable audio)
    """
    if not audio_file.exists():
        print(f"Error: Audio file not found: {audio_file}")
        return 1

    print(f"Scanning: {audio_file}")
    engine = create_scan_engine(config)

    try:
        result = engine.scan_file(audio_file, deep_scan=deep_scan, matching_mode=matching_mode)

        print_scan_result(audio_file, result)

        if output_json:
            output_json.parent.mkdir(parents=True, exist_ok=True)
            with open(output_json, 'w') as f:
                f.write(result.to_json(indent=2))
            print(f"\nJSON results saved to: {output_json}")

        return 0

    except AudioLoadError as e:
        print(f"Error: {e.message}")
        return 2

    except PulseFindError as e:
        print(f"Error during scan: {e}")
        if verbose:
            import traceback
            traceback.print_exc()
        return 1

    finally:
        engine.shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pulsefind",
        description="Identify released songs that contain a submitted beat",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    pulsefind beat.mp3
    pulsefind --deep beat.wav
    pulsefind --mode strict --output results.json beat.wav
        """
    )
    parser.add_argument(
        "audio_file",
        type=Path,
        help="Path to the beat to scan"
    )
    parser.add_argument(
        "--deep",
        action="store_true",
        help="Scan 8 segments instead of 4"
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in MatchingMode],
        default=MatchingMode.LOOSE.value,
        help="Matching mode (default: loose)"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Path to save JSON output"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"PulseFind {__version__}"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the pulsefind command."""
    args = build_parser().parse_args(argv)

    # Load configuration
    config_path = str(args.config) if args.config else None
    try:
        config = load_config(config_path)
    except PulseFindError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging_from_config(config, verbose=args.verbose)

    exit_code = scan_single_file(
        audio_file=args.audio_file,
        config=config,
        deep_scan=args.deep,
        matching_mode=args.mode,
        output_json=args.output,
        verbose=args.verbose,
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
