# FILE: tools/layout_tool.py | version: 2026-10-18.v1
# Layout command-line tools:
#   generate [size] [--set N] [--variation V] [--doubles] [--seed S] [--json]
#   visualize LAYOUT [--variation V] [--json]

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

# Ensure project root import
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from engine import DEFAULT_MAX_PIP, MAX_PIPS, VARIATIONS, Layout, MalformedLayout, tile_str  # noqa: E402
from generator import generate  # noqa: E402
from notation import parse, serialize, to_json  # noqa: E402


def render_tree(lay: Layout) -> str:
    """Indented view: one node per line, with the pips still open on it."""
    if lay.is_empty():
        return "(empty layout)"
    lines: List[str] = []

    def walk(i: int, depth: int) -> None:
        a, b = lay.written(i)
        free = lay.free_faces(i)
        tail = f"  open={free}" if free else ""
        spin = " *spinner*" if lay.is_spinner(i) else ""
        lines.append(f"{'  ' * depth}[{a}|{b}]{spin}{tail}")
        for c in lay.sorted_children(i):
            walk(c, depth + 1)

    walk(0, 0)
    lines.append(f"tiles={len(lay)} ends={lay.open_end_values()} ends_sum={lay.ends_sum()}")
    return "\n".join(lines)


def cmd_generate(args: argparse.Namespace) -> int:
    try:
        lay = generate(
            max_pip=int(args.set),
            max_tiles=args.size,
            variation=args.variation,
            seed=args.seed,
            prefer_doubles=bool(args.doubles),
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(to_json(lay) if args.json else serialize(lay))
    return 0


def cmd_visualize(args: argparse.Namespace) -> int:
    try:
        lay = parse(args.layout, variation=args.variation, max_pip=int(args.set))
    except MalformedLayout as e:
        print(f"Error: {e.message} at position {e.position}", file=sys.stderr)
        print(f"  {args.layout}", file=sys.stderr)
        print(f"  {' ' * e.position}^", file=sys.stderr)
        return 1
    if args.json:
        print(to_json(lay))
    else:
        print(serialize(lay))
        print(render_tree(lay))
        print("played: " + " ".join(tile_str(t) for t in lay.tiles()))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Dominoes layout tools")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_gen = sub.add_parser("generate", help="Randomly generate and print a layout")
    p_gen.add_argument("size", nargs="?", type=int, default=None, help="maximum number of tiles")
    p_gen.add_argument("-s", "--set", type=int, default=DEFAULT_MAX_PIP, choices=range(0, MAX_PIPS + 1),
                       metavar="N", help="highest pip of the set (6 = double-six)")
    p_gen.add_argument("-v", "--variation", choices=list(VARIATIONS), default="traditional")
    p_gen.add_argument("-d", "--doubles", action="store_true", help="prioritize laying doubles")
    p_gen.add_argument("--seed", type=int, default=None)
    p_gen.add_argument("-j", "--json", action="store_true", help="output JSON")
    p_gen.set_defaults(func=cmd_generate)

    p_vis = sub.add_parser("visualize", help="Parse a layout and print it as a tree or JSON")
    p_vis.add_argument("layout", help='layout text, e.g. "3|3=(3|4-4|5,3|6)"')
    p_vis.add_argument("-s", "--set", type=int, default=MAX_PIPS, choices=range(0, MAX_PIPS + 1), metavar="N")
    p_vis.add_argument("-v", "--variation", choices=list(VARIATIONS), default="traditional")
    p_vis.add_argument("-j", "--json", action="store_true", help="output JSON")
    p_vis.set_defaults(func=cmd_visualize)

    args = ap.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
