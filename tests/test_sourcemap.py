"""Tests for source map encoding."""

import pytest

from minify_watch.sourcemap import SourceMapBuilder, encode_vlq


class TestEncodeVlq:

    @pytest.mark.parametrize("value, expected", [
        (0, "A"),
        (1, "C"),
        (-1, "D"),
        (15, "e"),
        (16, "gB"),
        (-16, "hB"),
        (1000, "w+B"),
    ])
    def test_known_values(self, value, expected):
        assert encode_vlq(value) == expected


class TestSourceMapBuilder:

    def test_empty_map(self):
        builder = SourceMapBuilder("a.min.js", "a.js")
        data = builder.to_dict()
        assert data == {
            "version": 3,
            "file": "a.min.js",
            "sources": ["a.js"],
            "names": [],
            "mappings": "",
        }

    def test_segments_are_relative_within_a_line(self):
        builder = SourceMapBuilder("a.min.js", "a.js")
        builder.add(0, 0, 0, 0)
        builder.add(0, 4, 0, 4)
        builder.add(0, 5, 0, 6)
        assert builder.mappings() == "AAAA,IAAI,CAAE"

    def test_blank_generated_lines(self):
        builder = SourceMapBuilder("a.min.js", "a.js")
        builder.add(0, 0, 0, 0)
        builder.add(2, 0, 1, 0)
        assert builder.mappings() == "AAAA;;AACA"

    def test_generated_column_resets_per_line(self):
        builder = SourceMapBuilder("a.min.js", "a.js")
        builder.add(0, 10, 0, 10)
        builder.add(1, 2, 3, 2)
        assert builder.mappings() == "UAAU;EAGR"
