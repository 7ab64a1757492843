"""Musical key helpers: note-name spelling and Camelot wheel conversion.

The Camelot wheel numbers the 24 major/minor keys so that adjacent
numbers are a fifth apart: minor keys are ``1A``-``12A`` and major keys
``1B``-``12B``. Relative major/minor pairs share a number
(C major ``8B`` / A minor ``8A``).
"""
import re
from typing import Dict, Optional

from .helperClasses import TonalData

FLATS_TO_SHARPS: Dict[str, str] = {
    "DB": "C#",
    "EB": "D#",
    "GB": "F#",
    "AB": "G#",
    "BB": "A#",
}

CAMELOT_MAJOR: Dict[str, str] = {
    "C": "8B", "G": "9B", "D": "10B", "A": "11B", "E": "12B",
    "B": "1B", "F#": "2B", "C#": "3B", "G#": "4B", "D#": "5B",
    "A#": "6B", "F": "7B",
}

CAMELOT_MINOR: Dict[str, str] = {
    "A": "8A", "E": "9A", "B": "10A", "F#": "11A", "C#": "12A",
    "G#": "1A", "D#": "2A", "A#": "3A", "F": "4A", "C": "5A",
    "G": "6A", "D": "7A",
}

_COMPACT_KEY = re.compile(r"^([A-Ga-g])([#b]?)(m)?$")
_VERBOSE_KEY = re.compile(r"^([A-Ga-g])([#b]?)\s*((?i:major|minor))$")


def _ascii_accidentals(value: str) -> str:
    return value.replace("♭", "b").replace("♯", "#")


def normalize_note_name(raw: Optional[str]) -> str:
    """Normalize a note name to the sharp spelling used by the Camelot tables.

    ``"db"``, ``"D♭"`` and ``"C#"`` all become ``"C#"``. Anything that
    is not a single note letter with an optional accidental is returned
    stripped but otherwise unchanged.
    """
    note = " ".join((raw or "").split())
    note = _ascii_accidentals(note)

    if re.fullmatch(r"[A-Ga-g]b", note):
        upper = note.upper()
        # Fb/Cb have no entry; fall back to the bare letter
        return FLATS_TO_SHARPS.get(upper, upper[0])
    if re.fullmatch(r"[A-Ga-g]#", note):
        return note[0].upper() + "#"
    if re.fullmatch(r"[A-Ga-g]", note):
        return note.upper()
    return note


def parse_provider_key_string(raw: Optional[str]) -> Optional[TonalData]:
    """Parse key strings such as ``"Em"``, ``"F#m"``, ``"Bb"`` or ``"E minor"``.

    Returns None for anything else; there are no partial results.
    """
    if not isinstance(raw, str):
        return None
    text = _ascii_accidentals(" ".join((raw or "").split()))
    if not text:
        return None

    compact = _COMPACT_KEY.match(text)
    if compact:
        letter, accidental, minor = compact.groups()
        key = normalize_note_name(letter.upper() + accidental)
        return TonalData(key=key, scale="minor" if minor else "major")

    verbose = _VERBOSE_KEY.match(text)
    if verbose:
        letter, accidental, scale = verbose.groups()
        key = normalize_note_name(letter.upper() + accidental)
        return TonalData(key=key, scale=scale.lower())

    return None


def key_to_camelot(key: Optional[str], mode: Optional[str]) -> Optional[str]:
    """Map a note name and ``"major"``/``"minor"`` to its Camelot code."""
    note = normalize_note_name(key)
    scale = (mode or "").strip().lower()
    if scale == "major":
        return CAMELOT_MAJOR.get(note)
    if scale == "minor":
        return CAMELOT_MINOR.get(note)
    return None
