import argparse
import asyncio
import sys

from muesli.capture import CaptureController, QualityProfile, SoundDeviceSource
from muesli.config import config
from muesli.errors import MuesliError
from muesli.logging import logger, setup_logging
from muesli.storage import SQLiteGateway
from muesli.sync import EntityStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="muesli", description="Capture and synthesize ideas")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("folders", help="List folders")

    new_folder = sub.add_parser("new-folder", help="Create a folder")
    new_folder.add_argument("name")
    new_folder.add_argument("description")
    new_folder.add_argument("--tag", action="append", default=[], dest="tags")

    note = sub.add_parser("note", help="Add a text note to a folder")
    note.add_argument("folder_id")
    note.add_argument("content")
    note.add_argument("--tag", action="append", default=[], dest="tags")

    record = sub.add_parser("record", help="Record a voice note into a folder")
    record.add_argument("folder_id")
    record.add_argument("--seconds", type=float, default=10.0, help="Recording length")
    record.add_argument("--quality", choices=["standard", "high"], default=None)
    record.add_argument(
        "--transcribe", action="store_true", help="Transcribe the recording with Gemini"
    )

    synth = sub.add_parser("synthesize", help="Synthesize a folder's notes")
    synth.add_argument("folder_id")
    return parser


async def run(args: argparse.Namespace) -> int:
    gateway = SQLiteGateway(config.db_path, config.blob_dir)
    synthesizer = None
    transcriber = None
    if args.command == "synthesize":
        from muesli.synthesis.gemini import GeminiSynthesizer

        synthesizer = GeminiSynthesizer()
    elif args.command == "record" and args.transcribe:
        from muesli.synthesis.gemini import GeminiTranscriber

        transcriber = GeminiTranscriber()

    store = EntityStore(gateway, synthesizer, transcriber)
    try:
        if args.command == "folders":
            for folder in await store.fetch_folders():
                print(f"{folder.id}  {folder.name} - {folder.description}")

        elif args.command == "new-folder":
            folder = await store.create_folder(args.name, args.description, args.tags)
            print(folder.id)

        elif args.command == "note":
            note = await store.add_note(args.folder_id, args.content, tags=args.tags)
            print(note.id)

        elif args.command == "record":
            await record(store, gateway, args)

        elif args.command == "synthesize":
            await store.fetch_notes(args.folder_id)
            idea = await store.synthesize_folder(args.folder_id)
            print(idea.content)
    finally:
        store.close()
        gateway.close()
    return 0


async def record(store: EntityStore, gateway: SQLiteGateway, args: argparse.Namespace) -> None:
    profile = QualityProfile.named(args.quality or config.get("quality"))
    source = SoundDeviceSource(config.get("mic_device_id"))
    async with CaptureController(source, gateway, config.get("upload_format")) as controller:
        await controller.start(profile)
        logger.info("Recording for %.1fs...", args.seconds)
        await asyncio.sleep(args.seconds)
        audio = await controller.stop()
        note = await store.commit_recording(args.folder_id, controller)
        print(note.id)
        if args.transcribe:
            note = await store.transcribe_note(note.id, audio.data, audio.mime_type)
            print(note.transcription)


def main():
    args = build_parser().parse_args()
    setup_logging(verbose=args.verbose)
    try:
        sys.exit(asyncio.run(run(args)))
    except MuesliError as e:
        logger.error("%s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
