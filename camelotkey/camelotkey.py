#!/usr/bin/env python3
import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from modules.engine import CamelotEngine
from modules.helperClasses import UserInputs
from modules.track_list import TrackListError, TrackListManager, TrackResult
from settings import CamelotSettings, build_user_inputs


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)]
    )


class CamelotKeyApp:
    def __init__(self, user_inputs: UserInputs):
        self.engine = CamelotEngine(user_inputs)

    async def lookup(self, title: str, artist: str) -> dict:
        record = await self.engine.lookup(title, artist)
        return {"title": title, "artist": artist, **record.to_dict()}

    async def batch(self, path: str, output: Optional[str] = None) -> List[dict]:
        """Resolve every track in a YAML/JSON file, in file order."""
        manager = TrackListManager(path)
        requests = manager.load()
        logging.info(f"Resolving {len(requests)} tracks from {path}")

        results: List[TrackResult] = []
        for request in requests:
            record = await self.engine.lookup(request.title, request.artist, request.cache_key)
            results.append(TrackResult(request=request, record=record))

        found = sum(1 for r in results if r.record.is_hit)
        logging.info(f"Batch complete: {found}/{len(results)} keys found")

        if output:
            manager.save_results(results, output)
        return [result.to_dict() for result in results]

    async def run(self, args: argparse.Namespace) -> object:
        await self.engine.initialize()
        try:
            if args.command == "lookup":
                return await self.lookup(args.title, args.artist)
            if args.command == "batch":
                return await self.batch(args.file, args.output)
            if args.command == "set-api-key":
                await self.engine.set_api_key(args.api_key)
                logging.info("GetSongBPM API key saved")
                return {"ok": True}
            if args.command == "stats":
                return await self.engine.get_cache_stats()
            raise ValueError(f"Unknown command: {args.command}")
        finally:
            await self.engine.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="camelotkey",
        description="Look up the Camelot key of a song by title and artist",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    lookup = subparsers.add_parser("lookup", help="Resolve a single song")
    lookup.add_argument("--title", required=True)
    lookup.add_argument("--artist", required=True)

    batch = subparsers.add_parser("batch", help="Resolve songs listed in a YAML or JSON file")
    batch.add_argument("file")
    batch.add_argument("--output", default=None,
                       help="Write results to this YAML or JSON file")

    set_key = subparsers.add_parser("set-api-key", help="Store the GetSongBPM API key")
    set_key.add_argument("api_key")

    subparsers.add_parser("stats", help="Show cache statistics")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    settings = CamelotSettings()
    configure_logging(settings.log_level)

    try:
        app = CamelotKeyApp(build_user_inputs(settings))
        result = asyncio.run(app.run(args))
    except TrackListError as e:
        logging.error(str(e))
        sys.exit(2)
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        sys.exit(1)

    print(json.dumps(result, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
