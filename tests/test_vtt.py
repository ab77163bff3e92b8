"""Tests for captionline.vtt module."""

from __future__ import annotations

import pytest

from captionline.vtt import (
    has_header,
    has_substantive_text,
    is_text_line,
    parse_records,
    reconstruct,
    text_units,
)


class TestIsTextLine:
    @pytest.mark.parametrize(
        "line",
        [
            "",
            "   ",
            "WEBVTT",
            "WEBVTT - Kind: captions",
            "00:00:01.000 --> 00:00:02.000",
            "00:01.000 --> 00:02.000 align:start",
            "align:start position:10%",
            "NOTE this is a comment",
            "STYLE",
            "REGION",
            "42",
        ],
    )
    def test_non_text(self, line: str) -> None:
        assert not is_text_line(line)

    @pytest.mark.parametrize(
        "line", ["Hello world", "- Who's there?", "NOTEBOOK on the desk", "42 apples", "♪"]
    )
    def test_text(self, line: str) -> None:
        assert is_text_line(line)


class TestRecords:
    def test_parse_and_units(self, sample_vtt: str) -> None:
        records = parse_records(sample_vtt)
        assert text_units(records) == [
            "Hello everyone and welcome to the show.",
            "Today we talk about rivers and water.",
            "Thank you for watching.",
        ]

    def test_crlf_input(self) -> None:
        records = parse_records("WEBVTT\r\n\r\nHello\r\n")
        assert text_units(records) == ["Hello"]

    def test_reconstruct_round_trip_preserves_layout(self, sample_vtt: str) -> None:
        records = parse_records(sample_vtt)
        units = text_units(records)
        rebuilt = reconstruct(records, [u.upper() for u in units])

        assert rebuilt.count("\n") == sample_vtt.count("\n")
        assert "THANK YOU FOR WATCHING." in rebuilt
        assert "00:00:05.000 --> 00:00:07.000" in rebuilt

    def test_reconstruct_rejects_count_mismatch(self, sample_vtt: str) -> None:
        records = parse_records(sample_vtt)
        with pytest.raises(ValueError):
            reconstruct(records, ["only one"])


class TestContentChecks:
    def test_header_with_bom(self) -> None:
        assert has_header("﻿WEBVTT\n\nHi")
        assert not has_header("Hi\nWEBVTT")

    def test_substantive_text(self, sample_vtt: str) -> None:
        assert has_substantive_text(sample_vtt)
        assert not has_substantive_text("WEBVTT\n\n1\n00:00:00.000 --> 00:00:01.000\n...\n")
