import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from .cache import make_cache_key
from .helperClasses import LookupRequest, ResolvedKey


class TrackListError(ValueError):
    """A track list file is missing or malformed."""
    pass


@dataclass
class TrackResult:
    request: LookupRequest
    record: ResolvedKey

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.request.title,
            "artist": self.request.artist,
            "cacheKey": self.request.cache_key,
            **self.record.to_dict(),
        }


def _is_yaml(path: Path) -> bool:
    return path.suffix in ['.yaml', '.yml']


class TrackListManager:
    """Reads and writes batch lookup files in YAML or JSON.

    The input is a list of ``{title, artist}`` mappings, either at the top
    level or under a ``tracks`` key. ``cacheKey`` is optional per entry.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> List[LookupRequest]:
        """Load lookup requests from the track list file."""
        if not self.path.exists():
            raise TrackListError(f"Track list not found: {self.path}")

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                if _is_yaml(self.path):
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            logging.error(f"Error parsing track list {self.path}: {e}")
            raise TrackListError(f"Cannot parse {self.path}: {e}") from e

        if isinstance(data, dict):
            data = data.get('tracks', [])
        if not isinstance(data, list):
            raise TrackListError(f"{self.path} must contain a list of tracks")

        requests = []
        for index, entry in enumerate(data):
            if not isinstance(entry, dict):
                raise TrackListError(f"Entry {index} in {self.path} is not a mapping")
            title = " ".join(str(entry.get('title') or '').split())
            artist = " ".join(str(entry.get('artist') or '').split())
            if not title or not artist:
                logging.warning(f"Skipping entry {index} in {self.path}: title and artist are required")
                continue
            requests.append(LookupRequest(
                cache_key=entry.get('cacheKey') or make_cache_key(title, artist),
                title=title,
                artist=artist,
            ))
        return requests

    def save_results(self, results: List[TrackResult], output: Union[str, Path]) -> None:
        """Write results to a YAML or JSON file, chosen by its suffix."""
        output_path = Path(output)
        payload = {'tracks': [result.to_dict() for result in results]}

        with open(output_path, 'w', encoding='utf-8') as f:
            if _is_yaml(output_path):
                yaml.safe_dump(payload, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(payload, f, indent=2)
        logging.info(f"Wrote {len(results)} results to {output_path}")
