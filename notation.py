# FILE: notation.py | version: 2026-10-18.v1
# Layout text grammar + JSON node export.
#
#   3|3=(3|4-4|5,3|6)
#
#   a|b          tile, connecting pip written first
#   x-y          y continues from the face x exposes (x not a double)
#   x=(y,z,...)  branches from x; a double always takes its children this
#                way, and a non-double root may hold its two arms this way

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Tuple

from engine import (
    DEFAULT_MAX_PIP, MAX_PIPS, IllegalMove, Layout, MalformedLayout, OpenEnd,
    norm_tile, tile_str,
)


# =============================================================================
# Parser
# =============================================================================

class _Reader:
    def __init__(self, text: str):
        self.text = text or ""
        self.pos = 0

    def skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def peek(self) -> str:
        self.skip_ws()
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def fragment(self, start: int, width: int = 6) -> str:
        return self.text[start:start + width]

    def fail(self, message: str, start: Optional[int] = None, width: int = 6) -> MalformedLayout:
        at = self.pos if start is None else start
        return MalformedLayout(message, at, self.fragment(at, width))

    def number(self) -> int:
        self.skip_ws()
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos].isdigit():
            self.pos += 1
        if start == self.pos:
            raise self.fail("Expected pip digits", start)
        return int(self.text[start:self.pos])

    def tile(self) -> Tuple[int, int, int]:
        self.skip_ws()
        start = self.pos
        a = self.number()
        if self.peek() != "|":
            raise self.fail("Expected '|' inside tile", start)
        self.pos += 1
        b = self.number()
        return a, b, start


def parse(text: str, variation: str = "traditional", max_pip: int = MAX_PIPS) -> Layout:
    """
    Build a Layout from its text form. Raises MalformedLayout with the
    character position and offending fragment on any grammar or rule violation.
    """
    rd = _Reader(text)
    lay = Layout(variation=variation, max_pip=int(max_pip))
    if rd.peek() == "":
        return lay

    _parse_chain(rd, lay, parent=None, required=None)

    if rd.peek() != "":
        raise rd.fail("Unexpected characters after layout")
    return lay


def _parse_chain(rd: _Reader, lay: Layout, parent: Optional[int], required: Optional[int]) -> None:
    a, b, start = rd.tile()
    width = rd.pos - start

    try:
        t = norm_tile(a, b, lay.max_pip)
    except ValueError:
        raise rd.fail(f"Pip out of range (max {lay.max_pip})", start, width) from None
    if t in lay.played_set:
        raise rd.fail(f"Repeated tile {tile_str(t)}", start, width)

    if parent is None:
        lay.play(t)
    else:
        if required is not None and a != required:
            raise rd.fail(f"Face mismatch: expected {required}, found {a}", start, width)
        try:
            lay.play(t, OpenEnd(parent, a))
        except IllegalMove as e:
            raise rd.fail(f"Cannot attach {a}|{b}: {e}", start, width) from None
    idx = len(lay.nodes) - 1
    double = a == b

    c = rd.peek()
    if c == "-" and double:
        raise rd.fail(f"{a}|{b} followed by '-'. Doubles must be followed by '='")
    if c == "=" and not double and parent is not None:
        raise rd.fail(f"{a}|{b} followed by '='. Only doubles can be followed by '='")
    if c == "-":
        rd.pos += 1
        _parse_chain(rd, lay, parent=idx, required=b)
        return

    if c == "=":
        rd.pos += 1
        if rd.peek() != "(":
            raise rd.fail("Expected '(' after '='")
        rd.pos += 1
        while True:
            _parse_chain(rd, lay, parent=idx, required=(b if lay.nodes[idx].parent is not None else None))
            c = rd.peek()
            if c == ",":
                rd.pos += 1
                continue
            if c == ")":
                rd.pos += 1
                return
            raise rd.fail("Expected ',' or ')'")


# =============================================================================
# Serializer
# =============================================================================

def serialize(layout: Layout) -> str:
    """Canonical text: siblings sorted by their written pip sequences."""
    if layout.is_empty():
        return ""
    return _write(layout, 0)


def _write(lay: Layout, i: int) -> str:
    a, b = lay.written(i)
    s = f"{a}|{b}"
    kids = lay.sorted_children(i)
    if len(kids) == 1 and a != b:
        return s + "-" + _write(lay, kids[0])
    if kids:
        return s + "=(" + ",".join(_write(lay, c) for c in kids) + ")"
    return s


# =============================================================================
# JSON
# =============================================================================

def layout_to_dict(layout: Layout) -> Dict[str, Any]:
    d = layout.snapshot()
    d["text"] = serialize(layout)
    return d


def to_json(layout: Layout, indent: Optional[int] = None) -> str:
    return json.dumps(layout_to_dict(layout), ensure_ascii=False, indent=indent)


def from_json(text: str) -> Layout:
    try:
        d = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedLayout(f"Invalid JSON: {e.msg}", e.pos, text[e.pos:e.pos + 6]) from None
    if not isinstance(d, dict):
        raise MalformedLayout("Layout JSON must be an object", 0, text[:6])
    d.setdefault("set_id", DEFAULT_MAX_PIP)
    try:
        return Layout.from_snapshot(d)
    except (KeyError, TypeError) as e:
        raise MalformedLayout(f"Invalid node entry: {e}", 0, text[:6]) from None
    except IllegalMove as e:
        raise MalformedLayout(f"Inconsistent nodes: {e}", 0, text[:6]) from None
