"""
Captured sample metadata.

A MetadataRecord wraps one sample item exactly as the Splice API returned it
(``{"sample": {...}, "sample_meta_data": {...}}``) together with the string
keys used to find it again when the matching WAV lands on disk.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

DEFAULT_SOURCE_SUFFIX = ".wav"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def strip_suffix(filename: str, suffix: str = DEFAULT_SOURCE_SUFFIX) -> str:
    """Drop a trailing ``suffix`` (case-sensitive). Other names are returned as-is."""
    if suffix and filename.endswith(suffix):
        return filename[: -len(suffix)]
    return filename


def filename_from_payload(item: Dict[str, Any]) -> Optional[str]:
    """
    Locate the sample filename inside an API item.

    Order: sample_meta_data.filename, sample.filename, last segment of sample.path.
    """
    meta = item.get("sample_meta_data")
    if isinstance(meta, dict) and meta.get("filename"):
        return str(meta["filename"])

    sample = item.get("sample")
    if isinstance(sample, dict):
        if sample.get("filename"):
            return str(sample["filename"])
        path = sample.get("path")
        if path:
            return str(path).rstrip("/").split("/")[-1] or None
    return None


def content_hash_from_payload(item: Dict[str, Any]) -> Optional[str]:
    meta = item.get("sample_meta_data")
    if isinstance(meta, dict) and meta.get("file_hash"):
        return str(meta["file_hash"])
    sample = item.get("sample")
    if isinstance(sample, dict) and sample.get("file_hash"):
        return str(sample["file_hash"])
    return None


# =============================================================================
# CATEGORY MAPPING
# =============================================================================

class SampleCategory(str, Enum):
    """DAW browser categories a sample can be filed under."""
    BASS = "Bass"
    BELL = "Bell"
    BRASS = "Brass"
    CHIP = "Chip"
    CYMBAL = "Cymbal"
    DRONE = "Drone"
    DRUM_LOOP = "Drum Loop"
    GUITAR = "Guitar"
    HI_HAT = "Hi-hat"
    KEYBOARDS = "Keyboards"
    KICK = "Kick"
    LEAD = "Lead"
    MALLET = "Mallet"
    ORCHESTRAL = "Orchestral"
    ORGAN = "Organ"
    OTHER_DRUMS = "Other Drums"
    PAD = "Pad"
    PERCUSSION = "Percussion"
    PIANO = "Piano"
    SNARE = "Snare"
    SOUND_FX = "Sound FX"
    STRINGS = "Strings"
    SYNTH = "Synth"
    TOM = "Tom"
    UNKNOWN = "Unknown"
    VOCAL = "Vocal"
    WINDS = "Winds"


TAG_CATEGORIES: Dict[str, SampleCategory] = {
    # Drum elements
    "kick": SampleCategory.KICK,
    "kicks": SampleCategory.KICK,
    "snare": SampleCategory.SNARE,
    "snares": SampleCategory.SNARE,
    "hihat": SampleCategory.HI_HAT,
    "hi-hat": SampleCategory.HI_HAT,
    "hihats": SampleCategory.HI_HAT,
    "hi-hats": SampleCategory.HI_HAT,
    "cymbal": SampleCategory.CYMBAL,
    "cymbals": SampleCategory.CYMBAL,
    "tom": SampleCategory.TOM,
    "toms": SampleCategory.TOM,
    "percussion": SampleCategory.PERCUSSION,
    "perc": SampleCategory.PERCUSSION,
    "drum loop": SampleCategory.DRUM_LOOP,
    "drum loops": SampleCategory.DRUM_LOOP,
    "drums": SampleCategory.DRUM_LOOP,
    # Melodic elements
    "bass": SampleCategory.BASS,
    "bassline": SampleCategory.BASS,
    "sub bass": SampleCategory.BASS,
    "lead": SampleCategory.LEAD,
    "leads": SampleCategory.LEAD,
    "lead synth": SampleCategory.LEAD,
    "pad": SampleCategory.PAD,
    "pads": SampleCategory.PAD,
    "ambient": SampleCategory.PAD,
    "synth": SampleCategory.SYNTH,
    "synthesizer": SampleCategory.SYNTH,
    # Instruments
    "piano": SampleCategory.PIANO,
    "guitar": SampleCategory.GUITAR,
    "organ": SampleCategory.ORGAN,
    "bell": SampleCategory.BELL,
    "bells": SampleCategory.BELL,
    "brass": SampleCategory.BRASS,
    "strings": SampleCategory.STRINGS,
    "string": SampleCategory.STRINGS,
    "vocal": SampleCategory.VOCAL,
    "vocals": SampleCategory.VOCAL,
    "voice": SampleCategory.VOCAL,
    # Effects
    "fx": SampleCategory.SOUND_FX,
    "sfx": SampleCategory.SOUND_FX,
    "sound fx": SampleCategory.SOUND_FX,
    "effects": SampleCategory.SOUND_FX,
    "drone": SampleCategory.DRONE,
    "texture": SampleCategory.DRONE,
}


def map_tags_to_category(tags: List[str]) -> SampleCategory:
    """Return the category of the first recognised tag, or UNKNOWN."""
    for tag in tags:
        category = TAG_CATEGORIES.get(str(tag).lower())
        if category is not None:
            return category
    return SampleCategory.UNKNOWN


# =============================================================================
# RECORD
# =============================================================================

@dataclass(frozen=True)
class MetadataRecord:
    """
    One captured sample item.

    Attributes:
        record_id: Sample id from the request URL, or the batch-derived id
        filename: Sample filename as the API reports it (e.g. "kick_808.wav")
        payload: The API item, copied at capture time and never mutated
        content_hash: File hash reported by the API, if any
        source_url: Address of the response the record came from
        captured_at: ISO 8601 capture timestamp
        source_suffix: Suffix stripped to form base_name
    """
    record_id: str
    filename: str
    payload: Dict[str, Any] = field(repr=False)
    content_hash: Optional[str] = None
    source_url: str = ""
    captured_at: str = field(default_factory=_now_iso)
    source_suffix: str = DEFAULT_SOURCE_SUFFIX

    @staticmethod
    def from_item(
        item: Dict[str, Any],
        record_id: str,
        source_url: str = "",
        source_suffix: str = DEFAULT_SOURCE_SUFFIX,
    ) -> Optional["MetadataRecord"]:
        """Build a record from an API item; None when no filename can be found."""
        filename = filename_from_payload(item)
        if not filename:
            return None
        return MetadataRecord(
            record_id=str(record_id),
            filename=filename,
            payload=copy.deepcopy(item),
            content_hash=content_hash_from_payload(item),
            source_url=source_url,
            source_suffix=source_suffix,
        )

    @property
    def base_name(self) -> str:
        return strip_suffix(self.filename, self.source_suffix)

    def keys(self) -> List[str]:
        """Non-empty lookup keys: filename, content hash, record id, base name."""
        keys: List[str] = []
        for key in (self.filename, self.content_hash, self.record_id, self.base_name):
            if key and key not in keys:
                keys.append(key)
        return keys

    @property
    def tags(self) -> List[str]:
        meta = self.payload.get("sample_meta_data")
        if isinstance(meta, dict) and isinstance(meta.get("tags"), list):
            return [str(t) for t in meta["tags"]]
        return []

    @property
    def pack_name(self) -> Optional[str]:
        meta = self.payload.get("sample_meta_data")
        if isinstance(meta, dict) and isinstance(meta.get("pack"), dict):
            return meta["pack"].get("name")
        return None

    @property
    def category(self) -> SampleCategory:
        return map_tags_to_category(self.tags)

    def summary(self) -> Dict[str, Any]:
        """Compact view for logs, notifications and the status endpoints."""
        return {
            "record_id": self.record_id,
            "filename": self.filename,
            "content_hash": self.content_hash,
            "base_name": self.base_name,
            "pack_name": self.pack_name,
            "category": self.category.value,
            "source_url": self.source_url,
            "captured_at": self.captured_at,
        }
