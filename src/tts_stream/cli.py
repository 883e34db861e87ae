"""
Command-Line Interface for tts-stream.

Reads a text aloud as one continuous stream without running the HTTP
server, and optionally exports everything generated as a WAV file.

Usage Examples:
    # Read a text (credentials from TTS_STREAM_API_KEYS / GEMINI_API_KEY)
    tts-stream "Once upon a time..." --out story.wav

    # Read a whole file with a preset style and two credentials
    tts-stream --file chapter1.txt --style Storyteller --keys KEY1,KEY2

    # Play through the sound card (needs the "playback" extra)
    tts-stream --file chapter1.txt --playback device

    # Dry-run mode (no requests, shows segmentation and request budget)
    tts-stream --file chapter1.txt --dry-run --json

    # List voices, styles and languages
    tts-stream --voices

Environment Variables:
    TTS_STREAM_API_KEYS: Comma separated credentials
    GEMINI_API_KEY: Single credential
    TTS_STREAM_RPM: Requests per minute per credential
    TTS_STREAM_SETTINGS: Settings file path
    TTS_STREAM_LOG_LEVEL: Log level (1-4 or name)
"""

from __future__ import annotations

import argparse
import asyncio
import copy
import json
import math
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from tts_stream.core.config import (
    ConfigValidationError,
    Settings,
    StreamConfig,
    load_settings,
    parse_credentials,
)
from tts_stream.core.logging import configure_logging, get_logger, info, warn
from tts_stream.services.pipeline import (
    PipelineStatus,
    StatusUpdate,
    VoiceParams,
    create_coordinator,
)
from tts_stream.tts.presets import (
    LANGUAGE_DIRECTIVES,
    LANGUAGE_LABELS,
    STYLE_PRESETS,
    VOICES,
    find_voice,
)
from tts_stream.tts.segmenter import split_text

_LOG = get_logger("tts-stream.cli")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        argv: Optional list of arguments (defaults to sys.argv).

    Returns:
        Parsed argument namespace with all CLI options.
    """
    parser = argparse.ArgumentParser(description="tts-stream CLI (continuous read-aloud)")

    # Input options (mutually exclusive: text vs file)
    parser.add_argument("text_pos", nargs="?", help="Text to read (positional)")
    parser.add_argument("--text", help="Text to read")
    parser.add_argument("--file", help="Read the whole file as one text")

    # Output options
    parser.add_argument("--out", help="Export generated audio to this WAV file")
    parser.add_argument("--playback", choices=["silent", "device"],
                        help="Audio output (silent clock or sound device)")

    # Voice overrides
    parser.add_argument("--voice", help="Prebuilt voice name")
    parser.add_argument("--style", help="Style preset label or free-text instruction")
    parser.add_argument("--language", help="Language code (en, hi, hinglish)")

    # Configuration overrides
    parser.add_argument("--config", help="Settings file (default: config/settings.yaml)")
    parser.add_argument("--keys", help="Comma separated API credentials")
    parser.add_argument("--rpm", type=int, help="Requests per minute per credential")
    parser.add_argument("--lookahead", type=int, help="Segments fetched ahead of playback")
    parser.add_argument("--max-chars", type=int, help="Maximum characters per segment")

    # Execution modes
    parser.add_argument("--dry-run", action="store_true",
                        help="Segment and summarize without any request")
    parser.add_argument("--json", action="store_true",
                        help="Print JSON summary")
    parser.add_argument("--voices", action="store_true",
                        help="List voices, style presets and languages")

    return parser.parse_args(argv)


def _load_text(args: argparse.Namespace) -> str:
    """
    Load the input text from arguments or a file.

    Raises:
        SystemExit: If no input is provided or options conflict.
    """
    text = args.text or args.text_pos

    if args.file:
        if text:
            raise SystemExit("Use --file without --text or positional text.")
        content = Path(args.file).read_text(encoding="utf-8")
        if not content.strip():
            raise SystemExit("Input file is empty.")
        return content

    if not text or not text.strip():
        raise SystemExit("Provide --text, --file or a positional text.")
    return text


def _load_settings(args: argparse.Namespace) -> Settings:
    """Settings file plus command-line overrides."""
    if args.config:
        settings = load_settings(args.config)
    else:
        settings = load_settings(os.getenv("TTS_STREAM_SETTINGS", "config/settings.yaml"), required=False)

    raw = copy.deepcopy(settings.raw)
    if args.keys:
        raw.setdefault("credentials", {})["keys"] = parse_credentials(args.keys.split(","))
    if args.rpm is not None:
        raw.setdefault("rate_limit", {})["requests_per_minute"] = args.rpm
    if args.lookahead is not None:
        raw.setdefault("pipeline", {})["lookahead"] = args.lookahead
    if args.max_chars is not None:
        raw.setdefault("segmenting", {})["max_chars"] = args.max_chars
    if args.playback:
        raw.setdefault("playback", {})["output"] = args.playback
    return Settings(raw=raw)


def _resolve_voice(args: argparse.Namespace, config: StreamConfig) -> VoiceParams:
    """
    Voice parameters from arguments, falling back to configuration.

    Raises:
        SystemExit: For an unknown voice or language.
    """
    name = args.voice or config.voice.voice
    voice = find_voice(name)
    if voice is None:
        raise SystemExit(f"Unknown voice: {name} (available: {', '.join(v.name for v in VOICES)})")

    language = (args.language or config.voice.language).lower()
    if language not in LANGUAGE_DIRECTIVES:
        raise SystemExit(f"Unknown language: {language} (available: {', '.join(LANGUAGE_DIRECTIVES)})")

    style = args.style if args.style is not None else config.voice.style
    return VoiceParams(voice=voice.name, style=style, language=language)


def _print_voices(as_json: bool) -> None:
    payload = {
        "voices": [{"name": v.name, "gender": v.gender, "description": v.description} for v in VOICES],
        "styles": list(STYLE_PRESETS),
        "languages": [{"code": code, "label": label} for code, label in LANGUAGE_LABELS.items()],
    }
    if as_json:
        print(json.dumps(payload, ensure_ascii=False))
        return
    print("Voices:")
    for v in VOICES:
        print(f"  {v.name:<8} {v.gender:<7} {v.description}")
    print("Styles:")
    for label in STYLE_PRESETS:
        print(f"  {label}")
    print("Languages:")
    for code, label in LANGUAGE_LABELS.items():
        print(f"  {code:<9} {label}")


def _dry_run_summary(
    text: str,
    config: StreamConfig,
    voice: VoiceParams,
    credential_count: int,
) -> Dict[str, Any]:
    """
    Segmentation and request-budget summary for a text, without synthesis.

    ``min_windows`` is how many rate-limit windows the session needs at
    the very least: every credential can serve ``requests_per_minute``
    requests per window.
    """
    result = split_text(text, config.segmenting.max_chars)
    per_window = max(1, credential_count) * config.rate_limit.requests_per_minute
    return {
        "text_len": len(text),
        "segments": len(result.segments),
        "segment_lengths": [len(s) for s in result.segments],
        "max_chars": config.segmenting.max_chars,
        "voice": voice.voice,
        "style": voice.style,
        "language": voice.language,
        "credentials": credential_count,
        "requests_per_minute": config.rate_limit.requests_per_minute,
        "min_windows": max(1, math.ceil(len(result.segments) / per_window)),
    }


def _on_update(update: StatusUpdate) -> None:
    """Log the status stream."""
    if update.kind in ("waiting", "cooldown", "backoff"):
        info(_LOG, "waiting", kind=update.kind, message=update.message,
             remaining_s=update.cooldown_s)
    elif update.kind == "error":
        warn(_LOG, "segment_error", status=update.status.value, message=update.message)
    else:
        info(_LOG, "status", status=update.status.value, message=update.message,
             progress=update.progress)


async def _run_session(
    text: str,
    config: StreamConfig,
    credentials: List[str],
    voice: VoiceParams,
    out_path: Optional[Path],
) -> Dict[str, Any]:
    """Read ``text`` to the end (or first failure) and export the audio."""
    coordinator = create_coordinator(config, credentials, on_update=_on_update)
    try:
        segments = await coordinator.start(text, voice)
        status = await coordinator.wait_for_status(
            PipelineStatus.COMPLETED, PipelineStatus.ERROR, PipelineStatus.PAUSED
        )

        result: Dict[str, Any] = {
            "session_id": coordinator.session_id,
            "status": status.value,
            "segments": len(segments),
            "progress": coordinator.progress,
            "error": coordinator.error.to_dict() if coordinator.error else None,
        }

        if out_path is not None:
            wav = coordinator.export_wav()
            if wav is not None:
                out_path.parent.mkdir(parents=True, exist_ok=True)
                out_path.write_bytes(wav)
                result["out"] = str(out_path)
                result["bytes"] = len(wav)
        return result
    finally:
        await coordinator.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Orchestrates the CLI workflow:
        1. Parse arguments, list voices if asked
        2. Load settings and apply command-line overrides
        3. Handle dry-run mode (if requested)
        4. Run one streaming session and export the WAV

    Returns:
        Exit code (0 for success, 1 for a failed session, 2 for usage
        or configuration errors, 130 when interrupted).
    """
    args = _parse_args(argv)

    if args.voices:
        _print_voices(args.json)
        return 0

    configure_logging()

    try:
        settings = _load_settings(args)
        config = settings.stream_config()
    except (FileNotFoundError, ConfigValidationError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    text = _load_text(args)
    voice = _resolve_voice(args, config)
    credentials = settings.credentials

    # Handle dry-run mode: segment without synthesis
    if args.dry_run:
        summary = _dry_run_summary(text, config, voice, len(credentials))
        payload = {"ok": True, "dry_run": True, "summary": summary}
        if args.json:
            print(json.dumps(payload, ensure_ascii=False))
        else:
            info(_LOG, "dry_run", segments=summary["segments"], credentials=len(credentials),
                 voice=voice.voice, language=voice.language)
            print(payload)
        print("DRY_RUN_OK")
        return 0

    if not credentials:
        print("No credentials configured. Use --keys or set TTS_STREAM_API_KEYS.", file=sys.stderr)
        return 2

    out_path = Path(args.out) if args.out else None
    info(_LOG, "cli_start", chars=len(text), credentials=len(credentials),
         output=config.playback.output, out=str(out_path) if out_path else None)

    try:
        result = asyncio.run(_run_session(text, config, credentials, voice, out_path))
    except KeyboardInterrupt:
        warn(_LOG, "cli_interrupted")
        return 130

    ok = result["status"] == PipelineStatus.COMPLETED.value
    payload = {"ok": ok, "dry_run": False, **result}
    if args.json:
        print(json.dumps(payload, ensure_ascii=False))
    else:
        print(payload)
    if not ok:
        return 1
    print("CLI_OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
