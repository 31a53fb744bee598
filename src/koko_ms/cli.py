"""
Command-Line Interface for koko-ms.

Every mode runs the same pipeline (segment, dispatch over the instance
pool, assemble, write); they differ in where text comes from and where
audio goes.

Usage Examples:
    # Single text to a file (default tmp/output.wav)
    koko text "Hello from the command line" -o hello.wav

    # Text from a pipe, audio to another pipe
    echo "Hello" | koko text -o - | aplay

    # One WAV per non-empty line: out_0.wav, out_1.wav, ...
    koko file lines.txt -o out.wav

    # Custom names with the {line} placeholder
    koko file lines.txt -o "clips/line_{line}.wav"

    # Read stdin line by line, stream WAV to stdout
    koko stream < book.txt > book.wav

    # OpenAI-compatible server with two model instances
    koko --instances 2 openai --ip 0.0.0.0 --port 3000

    # Voice blend (af_sarah 40%, af_nicole 60%)
    koko -s "af_sarah.4+af_nicole.6" text "Blended voice"

Exit codes:
    0  success
    1  load failure, unknown voice, output failure or failed chunks
    2  configuration error

Environment Variables:
    KOKO_MS_SETTINGS: Settings file (default config/settings.yaml)
    KOKO_MS_LOG_LEVEL: Log level 1-4
    KOKO_MS_MODEL_PATH / KOKO_MS_VOICES_PATH: Model and voices files
"""
from __future__ import annotations

import argparse
import sys
import uuid
from contextlib import closing
from pathlib import Path
from typing import List, Optional

from koko_ms.core.config import ConfigError, KokoConfig, default_settings, load_settings
from koko_ms.core.logging import configure_logging, error, fail, get_logger, info, set_request_id
from koko_ms.services.errors import InferenceError, LoadError, OutputError
from koko_ms.services.synthesis import SynthesisService, SynthesisSummary
from koko_ms.tts.engine import kokoro_session_factory
from koko_ms.tts.pool import InstancePool
from koko_ms.tts.router import RawStream, SinglePath, resolve_target
from koko_ms.tts.segmenter import iter_stream_chunks, prefetch, segment_lines, segment_text

_LOG = get_logger("koko-ms.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Global options come before the subcommand:
        koko -s af_sky -p 1.2 text "Hello"
    """
    parser = argparse.ArgumentParser(prog="koko", description="koko-ms: Kokoro text-to-speech")

    parser.add_argument("-l", "--lan", help="Language code (default en-us)")
    parser.add_argument("-m", "--model", help="Path to the Kokoro ONNX model")
    parser.add_argument("-d", "--data", help="Path to the voices file")
    parser.add_argument("-s", "--style", help="Voice or blend, e.g. af_sky or af_sarah.4+af_nicole.6")
    parser.add_argument("-p", "--speed", type=float, help="Speaking rate (default 1.0)")
    parser.add_argument("--instances", type=int, help="Model instances for the openai server")
    parser.add_argument("--config", help="Settings file (default config/settings.yaml)")
    parser.add_argument("--log-level", help="Log level 1-4 or name")

    sub = parser.add_subparsers(dest="mode", metavar="MODE")
    sub.required = True

    p_text = sub.add_parser("text", aliases=["t"], help="Synthesize one text")
    p_text.add_argument("text", nargs="?", help="Text to speak (stdin when omitted)")
    p_text.add_argument("-o", "--output", help="Output WAV path, '-' for stdout")
    p_text.set_defaults(mode="text")

    p_file = sub.add_parser("file", aliases=["f"], help="One WAV per non-empty line of a file")
    p_file.add_argument("input", help="Text file, one utterance per line")
    p_file.add_argument("-o", "--output", help="Output path or template containing {line}")
    p_file.set_defaults(mode="file")

    p_stream = sub.add_parser("stream", aliases=["stdio", "stdin"], help="Read stdin lines, stream WAV to stdout")
    p_stream.set_defaults(mode="stream")

    p_oai = sub.add_parser("openai", aliases=["oai"], help="Run the OpenAI-compatible HTTP server")
    p_oai.add_argument("--ip", help="Bind address (default 0.0.0.0)")
    p_oai.add_argument("--port", type=int, help="Port (default 3000)")
    p_oai.set_defaults(mode="openai")

    return parser.parse_args(argv)


def _load_config(args: argparse.Namespace) -> KokoConfig:
    """
    Settings file plus command line overrides.

    Raises:
        ConfigError: If a value fails validation or --config is missing.
    """
    if args.config:
        try:
            settings = load_settings(args.config)
        except FileNotFoundError as exc:
            raise ConfigError(str(exc)) from exc
    else:
        settings = default_settings()

    return settings.get_config().with_overrides(
        model_path=args.model,
        voices_path=args.data,
        language=args.lan,
        voice=args.style,
        speed=args.speed,
        instances=args.instances if args.mode == "openai" else 1,
    )


def _read_text(args: argparse.Namespace) -> str:
    if args.text:
        return args.text
    if sys.stdin.isatty():
        raise ConfigError("no text given and stdin is a terminal")
    return sys.stdin.read()


def _report(summary: SynthesisSummary) -> None:
    print(f"Time taken: {summary.seconds:.3f}s", file=sys.stderr)
    print(f"Words per second: {summary.words_per_second:.2f}", file=sys.stderr)


def _run_text(service: SynthesisService, config: KokoConfig, args: argparse.Namespace) -> int:
    text = _read_text(args)
    chunks = segment_text(text, config.chunking.max_chars)
    if not chunks:
        raise ConfigError("input contains no text")
    target = resolve_target(args.output or config.output.text_path, "text", config.output.placeholder)
    summary = service.synthesize_to_target(chunks, target)
    _report(summary)
    return EXIT_OK


def _run_file(service: SynthesisService, config: KokoConfig, args: argparse.Namespace) -> int:
    try:
        content = Path(args.input).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read {args.input}: {exc}") from exc

    chunks = segment_lines(content)
    if not chunks:
        info(_LOG, "nothing_to_do", input=args.input)
        return EXIT_OK

    output = args.output or config.output.file_template
    target = resolve_target(output, "file", config.output.placeholder)
    if isinstance(target, (SinglePath, RawStream)):
        raise ConfigError("file mode writes one WAV per line; '-o -' is not supported")

    report = service.synthesize_batch(chunks, target)
    for index, destination in report.written:
        print(destination, file=sys.stderr)
    if not report.ok:
        for index in sorted(report.failed):
            print(f"line {index} failed: {report.failed[index]}", file=sys.stderr)
        print(f"{len(report.failed)} of {report.total} lines failed", file=sys.stderr)
        return EXIT_FAILED
    return EXIT_OK


def _run_stream(service: SynthesisService, config: KokoConfig, args: argparse.Namespace) -> int:
    target = RawStream(sys.stdout.buffer)
    with closing(prefetch(iter_stream_chunks(sys.stdin), maxsize=config.pool.queue_size)) as chunks:
        summary = service.synthesize_to_target(chunks, target)
    _report(summary)
    return EXIT_OK


def _run_openai(config: KokoConfig, args: argparse.Namespace) -> int:
    import uvicorn

    from koko_ms.main import create_app

    host = args.ip or config.server.host
    port = args.port or config.server.port
    pool = InstancePool(kokoro_session_factory(config.model), instances=config.pool.instances)
    with pool:
        info(_LOG, "server_starting", host=host, port=port, instances=pool.size)
        uvicorn.run(create_app(pool=pool, config=config), host=host, port=port, log_config=None)
    return EXIT_OK


_RUNNERS = {
    "text": _run_text,
    "file": _run_file,
    "stream": _run_stream,
}


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 ok, 1 failure, 2 configuration error).
    """
    args = _parse_args(argv)

    # loggers created at import already configured the defaults
    configure_logging(level=args.log_level, force=args.log_level is not None)
    set_request_id(str(uuid.uuid4())[:12])

    try:
        config = _load_config(args)
        if args.mode == "openai":
            return _run_openai(config, args)

        pool = InstancePool(kokoro_session_factory(config.model), instances=config.pool.instances)
        with pool:
            service = SynthesisService(pool, config)
            return _RUNNERS[args.mode](service, config, args)

    except ConfigError as exc:
        error(_LOG, "config_error", error=str(exc))
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_CONFIG
    except LoadError as exc:
        fail(_LOG, "load_failed", code=exc.code, error=exc.message)
        print(f"error: {exc.message}", file=sys.stderr)
        return EXIT_FAILED
    except (InferenceError, OutputError) as exc:
        fail(_LOG, "synthesis_failed", error=exc.message)
        print(f"error: {exc.message}", file=sys.stderr)
        return EXIT_FAILED
    except KeyboardInterrupt:
        info(_LOG, "interrupted")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
