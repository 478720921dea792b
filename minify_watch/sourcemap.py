"""Source map (revision 3) generation.

Only what the minifiers need: a Base64 VLQ encoder and a builder that
collects (generated position -> original position) segments and renders
the ``mappings`` string.
"""

from __future__ import annotations

from typing import Any

_BASE64 = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_VLQ_SHIFT = 5
_VLQ_MASK = (1 << _VLQ_SHIFT) - 1
_VLQ_CONTINUATION = 1 << _VLQ_SHIFT


def encode_vlq(value: int) -> str:
    """Encode a signed integer as a Base64 VLQ string."""
    vlq = ((-value) << 1) | 1 if value < 0 else value << 1
    out = []
    while True:
        digit = vlq & _VLQ_MASK
        vlq >>= _VLQ_SHIFT
        if vlq:
            digit |= _VLQ_CONTINUATION
        out.append(_BASE64[digit])
        if not vlq:
            break
    return "".join(out)


class SourceMapBuilder:
    """Accumulates mapping segments for a single-source map.

    Lines and columns passed to :meth:`add` are zero-based. Segments must
    be added in generated order.
    """

    def __init__(self, output_name: str, source_name: str):
        self.output_name = output_name
        self.source_name = source_name
        # generated line -> [(generated column, original line, original column)]
        self._lines: list[list[tuple[int, int, int]]] = [[]]

    def add(self, gen_line: int, gen_column: int, src_line: int, src_column: int) -> None:
        while len(self._lines) <= gen_line:
            self._lines.append([])
        self._lines[gen_line].append((gen_column, src_line, src_column))

    def mappings(self) -> str:
        prev_src_line = 0
        prev_src_column = 0
        encoded_lines = []
        for segments in self._lines:
            prev_gen_column = 0
            encoded = []
            for gen_column, src_line, src_column in segments:
                encoded.append(
                    encode_vlq(gen_column - prev_gen_column)
                    + encode_vlq(0)  # single source, index never changes
                    + encode_vlq(src_line - prev_src_line)
                    + encode_vlq(src_column - prev_src_column)
                )
                prev_gen_column = gen_column
                prev_src_line = src_line
                prev_src_column = src_column
            encoded_lines.append(",".join(encoded))
        return ";".join(encoded_lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": 3,
            "file": self.output_name,
            "sources": [self.source_name],
            "names": [],
            "mappings": self.mappings(),
        }
