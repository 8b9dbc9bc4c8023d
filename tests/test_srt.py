"""Tests for SRT merging, formatting and writing."""

from pathlib import Path
from unittest.mock import patch

import pytest

from gensrt_app._types import Cue
from gensrt_app.srt import (
    FileSystemError,
    SubtitleEntry,
    build_srt,
    format_time,
    merge_cues,
    parse_srt,
    save_srt,
    serialize_cues,
)


class TestFormatTime:
    """Tests for format_time."""

    def test_zero(self):
        assert format_time(0) == "00:00:00,000"

    def test_hours_minutes_seconds(self):
        """Test a value with every field populated."""
        assert format_time(3661.234) == "01:01:01,234"

    def test_millisecond_carry(self):
        """Test milliseconds rounding to 1000 carry into seconds."""
        assert format_time(59.9999) == "00:01:00,000"

    def test_negative_clamped(self):
        """Test negative times are clamped to zero."""
        assert format_time(-1.5) == "00:00:00,000"

    def test_hours_not_wrapped(self):
        """Test hours beyond a day are not wrapped."""
        assert format_time(100 * 3600) == "100:00:00,000"


class TestMergeCues:
    """Tests for merge_cues."""

    def test_merge_close_cues(self):
        """Test two cues separated by a short pause merge into one."""
        cues = [Cue(0.0, 2.0, "hello"), Cue(2.3, 1.0, "world")]
        merged = merge_cues(cues, max_duration=15.0, max_pause=0.5)
        assert len(merged) == 1
        assert merged[0].start == 0.0
        assert merged[0].duration == pytest.approx(3.3)
        assert merged[0].text == "hello world"

    def test_long_pause_not_merged(self):
        """Test a pause at or above max_pause keeps cues apart."""
        cues = [Cue(0.0, 2.0, "a"), Cue(2.5, 1.0, "b")]
        merged = merge_cues(cues, max_duration=15.0, max_pause=0.5)
        assert [c.text for c in merged] == ["a", "b"]

    def test_duration_limit(self):
        """Test combined durations over max_duration are not merged."""
        cues = [Cue(0.0, 10.0, "a"), Cue(10.1, 6.0, "b")]
        merged = merge_cues(cues, max_duration=15.0, max_pause=0.5)
        assert len(merged) == 2

    def test_overlap_not_merged(self):
        """Test overlapping cues (negative pause) start a new entry."""
        cues = [Cue(0.0, 2.0, "a"), Cue(1.5, 1.0, "b")]
        merged = merge_cues(cues)
        assert len(merged) == 2

    def test_sorted_by_start(self):
        """Test out-of-order input is merged in start order."""
        cues = [Cue(2.3, 1.0, "world"), Cue(0.0, 2.0, "hello")]
        merged = merge_cues(cues)
        assert merged[0].text == "hello world"

    def test_input_not_mutated(self):
        """Test merging leaves the input cues untouched."""
        cues = [Cue(0.0, 2.0, "hello"), Cue(2.3, 1.0, "world")]
        merge_cues(cues)
        assert cues[0].duration == 2.0
        assert cues[0].text == "hello"

    def test_idempotent(self):
        """Test merging merged output changes nothing."""
        cues = [
            Cue(0.0, 2.0, "a"),
            Cue(2.1, 1.0, "b"),
            Cue(5.0, 1.0, "c"),
            Cue(9.0, 3.0, "d"),
        ]
        once = merge_cues(cues)
        twice = merge_cues(once)
        assert once == twice

    def test_empty(self):
        assert merge_cues([]) == []


class TestSerialize:
    """Tests for serialize_cues and save_srt."""

    def test_serialize_empty(self):
        """Test zero cues serialize to an empty string."""
        assert serialize_cues([]) == ""

    def test_serialize_blocks(self):
        """Test block layout and numbering."""
        text = serialize_cues([Cue(0.0, 1.5, "one"), Cue(3.0, 1.0, "two")])
        assert text == (
            "1\n00:00:00,000 --> 00:00:01,500\none\n\n"
            "2\n00:00:03,000 --> 00:00:04,000\ntwo"
        )

    def test_save_srt_zero_cues(self, tmp_path):
        """Test saving zero cues writes a zero-byte file."""
        out = tmp_path / "empty.srt"
        assert save_srt([], out) == []
        assert out.exists()
        assert out.stat().st_size == 0

    def test_save_srt_merges(self, tmp_path):
        """Test save_srt writes the merged cues."""
        out = tmp_path / "nested" / "out.srt"
        merged = save_srt([Cue(0.0, 2.0, "hello"), Cue(2.3, 1.0, "world")], out)
        assert len(merged) == 1
        assert out.read_text(encoding="utf-8") == (
            "1\n00:00:00,000 --> 00:00:03,300\nhello world"
        )

    def test_save_srt_write_failure(self, tmp_path):
        """Test OS errors surface as FileSystemError."""
        with patch.object(Path, "write_text", side_effect=PermissionError("denied")):
            with pytest.raises(FileSystemError, match="denied"):
                save_srt([Cue(0.0, 1.0, "x")], tmp_path / "out.srt")


class TestParseBuild:
    """Tests for parse_srt and build_srt."""

    def test_parse_entries(self):
        """Test blocks are split into index, timing and text."""
        content = (
            "1\r\n00:00:00,000 --> 00:00:01,000\r\nfirst line\r\nsecond line\r\n\r\n"
            "2\r\n00:00:02,000 --> 00:00:03,000\r\nthird\r\n"
        )
        entries = parse_srt(content)
        assert len(entries) == 2
        assert entries[0].index == "1"
        assert entries[0].timing == "00:00:00,000 --> 00:00:01,000"
        assert entries[0].text == "first line\nsecond line"
        assert entries[1].text == "third"

    def test_parse_empty(self):
        assert parse_srt("") == []

    def test_parse_skips_blank_blocks(self):
        """Test extra blank lines between blocks are ignored."""
        content = "1\n00:00:00,000 --> 00:00:01,000\na\n\n\n\n2\n00:00:02,000 --> 00:00:03,000\nb\n"
        assert [e.text for e in parse_srt(content)] == ["a", "b"]

    def test_build(self):
        """Test entries are rendered with a trailing newline."""
        entries = [
            SubtitleEntry("1", "00:00:00,000 --> 00:00:01,000", "hola"),
            SubtitleEntry("2", "00:00:02,000 --> 00:00:03,000", "mundo"),
        ]
        assert build_srt(entries) == (
            "1\n00:00:00,000 --> 00:00:01,000\nhola\n\n"
            "2\n00:00:02,000 --> 00:00:03,000\nmundo\n"
        )
