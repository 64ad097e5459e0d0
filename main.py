import asyncio
import argparse
import shutil
import sys
import tempfile
import threading
import uuid
from pathlib import Path

import soundfile as sf

from presstalk.app import build_dictation_controller, build_transcription
from presstalk.config.settings import create_example_env_file, load_config, resolve_api_key, setup_logging
from presstalk.core.errors import MissingAPIKeyError, user_message_for
from presstalk.core.events import SessionPhase, StopTrigger


def _print_preview(text: str) -> None:
    print(f"\r… {text}", end="", flush=True)


def _on_enter(loop: asyncio.AbstractEventLoop, event: asyncio.Event, prompt: str) -> None:
    """Set `event` on the loop when the user presses Enter."""
    def read():
        print(prompt, flush=True)
        sys.stdin.readline()
        if not loop.is_closed():
            loop.call_soon_threadsafe(event.set)

    # Daemon thread, so a pending readline never blocks interpreter exit.
    threading.Thread(target=read, name="StdinThread", daemon=True).start()


async def transcribe_file(config, source: Path) -> int:
    api_key = resolve_api_key(config)
    if not api_key:
        print(user_message_for(MissingAPIKeyError()))
        return 1

    try:
        recorded_seconds = sf.info(str(source)).duration
    except RuntimeError:
        # Not decodable locally (e.g. m4a); upload the file untouched.
        recorded_seconds = 0.0

    # The coordinator deletes what it is given; hand it a copy.
    working_copy = Path(tempfile.gettempdir()) / f"press-talk-{uuid.uuid4()}{source.suffix}"
    shutil.copyfile(source, working_copy)

    coordinator, warmer = build_transcription(config)
    warmer.prewarm()
    try:
        text = await coordinator.transcribe(
            working_copy,
            recorded_seconds,
            config.request_options(recorded_seconds),
            api_key,
            on_delta=_print_preview,
        )
    except Exception as e:
        print()
        print(user_message_for(e))
        return 1
    finally:
        warmer.close()

    print()
    print(text)
    return 0


async def listen(config) -> int:
    from presstalk.audio.input.mic import MicRecorder

    loop = asyncio.get_running_loop()
    start_pressed = asyncio.Event()
    stop_pressed = asyncio.Event()
    stopped = asyncio.Event()
    finished = asyncio.Event()
    outcome = {"code": 0}

    def on_phase_change(phase: SessionPhase) -> None:
        if phase is not SessionPhase.LISTENING:
            stopped.set()
        if phase is SessionPhase.IDLE:
            finished.set()

    def on_result(text: str) -> None:
        print()
        print(text)

    def on_error(message: str) -> None:
        outcome["code"] = 1
        print()
        print(message)

    controller, warmer = build_dictation_controller(
        config,
        MicRecorder(),
        on_phase_change=on_phase_change,
        on_preview=_print_preview,
        on_result=on_result,
        on_error=on_error,
    )

    try:
        _on_enter(loop, start_pressed, "Press Enter to start recording...")
        await start_pressed.wait()
        await controller.start_listening()
        if controller.phase is not SessionPhase.LISTENING:
            return 1

        _on_enter(loop, stop_pressed, "Recording. Press Enter to stop (silence stops it too).")
        stop_wait = asyncio.ensure_future(stop_pressed.wait())
        auto_wait = asyncio.ensure_future(stopped.wait())
        await asyncio.wait({stop_wait, auto_wait}, return_when=asyncio.FIRST_COMPLETED)
        stop_wait.cancel()
        auto_wait.cancel()
        if controller.phase is SessionPhase.LISTENING:
            await controller.stop_and_transcribe(StopTrigger.MANUAL)

        await finished.wait()
        return outcome["code"]
    except asyncio.CancelledError:
        await controller.cancel()
        raise
    finally:
        warmer.close()


async def main():
    parser = argparse.ArgumentParser(description="PressTalk push-to-talk transcription")
    parser.add_argument("--config", type=str, help="Path to config file", default=".env")
    parser.add_argument("--transport", choices=["upload", "realtime"], help="Override the configured transport")
    parser.add_argument("--log-level", type=str, help="Override the configured log level")
    parser.add_argument("--create-config", action="store_true", help="Create example config file")
    subparsers = parser.add_subparsers(dest="command")
    transcribe_parser = subparsers.add_parser("transcribe", help="Transcribe an existing audio file")
    transcribe_parser.add_argument("file", type=str, help="Audio file to transcribe")
    subparsers.add_parser("listen", help="Record from the microphone and transcribe")

    args = parser.parse_args()

    if args.create_config:
        create_example_env_file()
        print("Example configuration file created at .env.example")
        print("Please copy it to .env and fill in your API key.")
        return 0

    try:
        config = load_config(Path(args.config) if args.config else None)
    except ValueError as e:
        print(f"Configuration error: {e}")
        print("Please check your configuration file.")
        return 2

    if args.transport:
        config.transport = args.transport
    if args.log_level:
        config.log_level = args.log_level
    setup_logging(config.log_level)

    if args.command == "transcribe":
        source = Path(args.file)
        if not source.exists():
            print(f"File not found: {source}")
            return 2
        return await transcribe_file(config, source)
    if args.command == "listen":
        return await listen(config)

    parser.print_help()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nGoodbye!")
