"""SRT subtitle merging, formatting, parsing and writing."""

import logging
import math
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable

from gensrt_app._types import Cue

logger = logging.getLogger(__name__)

MAX_DURATION = 15.0
MAX_PAUSE = 0.5

_BLOCK_SEPARATOR = re.compile(r"\r?\n\r?\n")
_LINE_SEPARATOR = re.compile(r"\r?\n")


class FileSystemError(Exception):
    """Subtitle directory or file could not be written."""

    pass


@dataclass
class SubtitleEntry:
    """One raw SRT block, kept verbatim apart from its text."""

    index: str
    timing: str
    text: str


def format_time(seconds: float) -> str:
    """Convert seconds to SRT time format (HH:MM:SS,mmm).

    Hours are not wrapped at 24. Milliseconds are rounded, and a value that
    rounds up to 1000 carries into the seconds field.
    """
    seconds = max(0.0, float(seconds))
    whole = math.floor(seconds)
    millis = round((seconds - whole) * 1000)
    total_ms = whole * 1000 + millis

    total_seconds, ms = divmod(total_ms, 1000)
    hours, rest = divmod(total_seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"


def merge_cues(
    cues: Iterable[Cue],
    max_duration: float = MAX_DURATION,
    max_pause: float = MAX_PAUSE,
) -> list[Cue]:
    """Greedily merge adjacent cues into subtitle-ready entries.

    Cues are sorted by start first. ``next`` is absorbed into ``current`` when
    the pause between them is in ``[0, max_pause)`` and their combined
    durations stay within ``max_duration``; the merged cue spans up to
    ``next.end``, so the pause becomes part of it. Overlapping cues (negative
    pause) always start a new entry. Input cues are not modified.
    """
    ordered = sorted(cues, key=lambda cue: cue.start)
    if not ordered:
        return []

    merged = []
    current = replace(ordered[0])
    for nxt in ordered[1:]:
        pause = nxt.start - current.end
        if (
            pause >= 0
            and pause < max_pause
            and current.duration + nxt.duration <= max_duration
        ):
            current.duration = nxt.end - current.start
            current.text = f"{current.text} {nxt.text}"
        else:
            merged.append(current)
            current = replace(nxt)
    merged.append(current)
    return merged


def serialize_cues(cues: list[Cue]) -> str:
    """Render cues as SRT text.

    Zero cues give an empty string. Blocks are separated by a blank line and
    the last block has no trailing newline.
    """
    return "\n\n".join(
        f"{i}\n{format_time(cue.start)} --> {format_time(cue.end)}\n{cue.text}"
        for i, cue in enumerate(cues, start=1)
    )


def save_srt(
    cues: list[Cue],
    out_path: Path,
    max_duration: float = MAX_DURATION,
    max_pause: float = MAX_PAUSE,
) -> list[Cue]:
    """Merge cues and write them as an SRT file.

    An empty cue list produces a zero-byte file.

    Returns:
        The merged cues that were written

    Raises:
        FileSystemError: If the directory or file cannot be written
    """
    merged = merge_cues(cues, max_duration=max_duration, max_pause=max_pause)
    write_text(out_path, serialize_cues(merged))
    logger.info("SRT file saved to %s (%d cues)", out_path, len(merged))
    return merged


def write_text(out_path: Path, content: str) -> None:
    """Write UTF-8 text, creating parent directories.

    Raises:
        FileSystemError: If the directory or file cannot be written
    """
    out_path = Path(out_path)
    try:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(content, encoding="utf-8")
    except OSError as e:
        logger.error("Failed to write %s: %s", out_path, e)
        raise FileSystemError(f"Failed to write {out_path}: {e}") from e


def parse_srt(content: str) -> list[SubtitleEntry]:
    """Split SRT text into raw entries; blank blocks are ignored."""
    entries = []
    for block in _BLOCK_SEPARATOR.split(content.strip("\r\n")):
        if not block.strip():
            continue
        index, timing, *text_lines = _LINE_SEPARATOR.split(block) + [""]
        entries.append(
            SubtitleEntry(index=index, timing=timing, text="\n".join(text_lines).rstrip("\n"))
        )
    return entries


def build_srt(entries: list[SubtitleEntry]) -> str:
    """Render raw entries back to SRT text with one trailing newline."""
    return "\n\n".join(f"{e.index}\n{e.timing}\n{e.text}" for e in entries) + "\n"
