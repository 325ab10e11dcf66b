"""
Video Captioner - CLI Entry Point

Usage:
    python main.py video.mp4
    python main.py video.mp4 -o captions.vtt
    python main.py video.mp4 --words 4 --format ass
    python main.py video.mp4 --export-video out.mp4 --quality 1080p --container mp4
    python main.py video.mp4 --preview-at 12.5 --preview-out frame.png
"""

import sys
import argparse
import logging
from pathlib import Path

from config import load_config
from captioner.errors import CaptionerError
from captioner.exporter import QUALITIES
from captioner.encoder import CONTAINERS
from captioner.orchestrator import CaptionSession
from captioner.subtitle_writer import FORMATS


def setup_logging(level: str = "INFO", log_file: str = None):
    """Configure logging for the application."""
    log_format = (
        "%(asctime)s | %(levelname)-7s | %(name)-20s | %(message)s"
    )
    date_format = "%H:%M:%S"

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        datefmt=date_format,
        handlers=handlers
    )

    # Suppress noisy third-party loggers
    logging.getLogger("faster_whisper").setLevel(logging.INFO)
    logging.getLogger("moviepy").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def print_banner():
    """Print the application banner."""
    banner = """
==========================================================
                  Video Captioner

  Word-timed captions  +  Burned-in caption export
  Powered by Faster-Whisper, Pillow & FFmpeg
==========================================================
"""
    print(banner)


def print_progress(message: str, percent: int):
    """Console progress callback with progress bar."""
    bar_width = 30
    filled = int(bar_width * percent / 100)
    bar = "#" * filled + "-" * (bar_width - filled)
    print(f"\r  [{bar}] {percent:3d}%  {message:<50}", end="", flush=True)
    if percent >= 100:
        print()  # Newline at completion


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Video Captioner - Transcribe a video into timed captions, "
                    "export subtitle files and burn styled captions into the video.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py talk.mp4                          # SRT next to the video
  python main.py talk.mp4 -o talk.vtt              # WebVTT output
  python main.py talk.mp4 --words 2                # Two words per caption
  python main.py talk.mp4 --style style.json       # Custom caption style
  python main.py talk.mp4 --export-video out.webm  # Burn captions into a video
  python main.py talk.mp4 --preview-at 3.2         # Save one captioned frame
        """
    )

    parser.add_argument(
        "video",
        type=Path,
        help="Path to the input video file (.mp4, .mkv, .mov, .webm, etc.)"
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Subtitle output path (default: video name with the format's extension)"
    )
    parser.add_argument(
        "-f", "--format",
        default=None,
        choices=list(FORMATS),
        help="Subtitle format (default: from the output extension, else srt)"
    )
    parser.add_argument(
        "-w", "--words",
        type=int,
        default=0,
        help="Words per caption; 0 = auto (pauses, punctuation, emphasis)"
    )
    parser.add_argument(
        "-m", "--model",
        default=None,
        help="Whisper model (e.g. tiny.en, base, small; default from config.yaml)"
    )
    parser.add_argument(
        "-l", "--language",
        default=None,
        help="Force language code (e.g., 'en', 'es'). Default: auto-detect"
    )
    parser.add_argument(
        "--style",
        type=Path,
        default=None,
        help="Caption style JSON (a style object or a captions.json export)"
    )
    parser.add_argument(
        "--export-video",
        type=Path,
        default=None,
        help="Also render a video with the captions burned in"
    )
    parser.add_argument(
        "--quality",
        default=None,
        choices=list(QUALITIES),
        help="Export resolution (default: original)"
    )
    parser.add_argument(
        "--container",
        default=None,
        choices=list(CONTAINERS),
        help="Export container (default: webm); unsupported ones fall back"
    )
    parser.add_argument(
        "--realtime",
        action="store_true",
        help="Pace the export at playback speed"
    )
    parser.add_argument(
        "--preview-at",
        type=float,
        default=None,
        help="Save the captioned frame at this time (seconds)"
    )
    parser.add_argument(
        "--preview-out",
        type=Path,
        default=None,
        help="Preview image path (default: <video>_preview.png)"
    )
    parser.add_argument(
        "--max-cpu",
        type=int,
        default=None,
        help="Maximum CPU usage percent before backing off (default: 70)"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to custom config.yaml file"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all output except the progress bar"
    )
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    # ── Validate input ──
    if not args.video.exists():
        print(f"Error: Video file not found: {args.video}")
        sys.exit(1)
    if args.words < 0:
        print("Error: --words must be 0 (auto) or a positive number")
        sys.exit(1)

    # ── Determine output paths ──
    fmt = args.format or (args.output.suffix.lstrip(".").lower() if args.output else "srt")
    if fmt not in FORMATS:
        print(f"Error: Unsupported subtitle format '{fmt}' (use one of {', '.join(FORMATS)})")
        sys.exit(1)
    output_path = args.output or args.video.with_suffix(f".{fmt}")

    # ── Load config ──
    config = load_config(args.config)
    config.update_from_args(args)

    # ── Setup logging ──
    log_level = "DEBUG" if args.verbose else ("WARNING" if args.quiet else config.logging.level)
    setup_logging(level=log_level, log_file=config.logging.file)

    # ── Banner ──
    if not args.quiet:
        print_banner()
        print(f"  Input:    {args.video}")
        print(f"  Output:   {output_path} ({fmt})")
        print(f"  Model:    Faster-Whisper {config.asr.model} ({config.asr.compute_type})")
        print(f"  Captions: {'Auto' if args.words == 0 else f'{args.words} words'}")
        if args.export_video:
            print(f"  Video:    {args.export_video} ({config.export.quality}, {config.export.format})")
        print(f"  CPU Limit: {config.throttle.max_cpu_percent}%")
        print()

    progress_fn = print_progress if not args.quiet else None

    # ── Run session ──
    try:
        with CaptionSession(config) as session:
            session.open(args.video)
            if args.style:
                session.load_style(args.style)

            captions = session.transcribe(args.words, progress_cb=progress_fn)
            session.export_subtitles(output_path, fmt)

            if not args.quiet:
                print(f"\n  [OK] Captions saved to: {output_path}")
                print(f"  [INFO] Total captions: {len(captions)}")

            if args.preview_at is not None:
                preview_path = args.preview_out or args.video.with_name(
                    f"{args.video.stem}_preview.png"
                )
                session.preview_frame(args.preview_at).save(preview_path)
                if not args.quiet:
                    print(f"  [OK] Preview frame saved to: {preview_path}")

            if args.export_video:
                if not args.quiet:
                    print(f"\n  [>] Rendering captioned video...")
                job = session.export_video(args.export_video, progress_cb=progress_fn)
                if not args.quiet:
                    if job.fell_back:
                        print(f"  [WARN] {job.container} is not supported here; "
                              f"wrote {job.actual_container} instead")
                    print(f"  [OK] Video saved to: {job.output_path}")

    except KeyboardInterrupt:
        print("\n\n  [WARN] Processing interrupted by user.")
        sys.exit(130)
    except FileNotFoundError as e:
        print(f"\n  [ERROR] File error: {e}")
        sys.exit(1)
    except CaptionerError as e:
        print(f"\n  [ERROR] {e}")
        sys.exit(1)
    except RuntimeError as e:
        print(f"\n  [ERROR] Runtime error: {e}")
        sys.exit(1)
    except Exception as e:
        logging.exception("Unexpected error")
        print(f"\n  [ERROR] Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
