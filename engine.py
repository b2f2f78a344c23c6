# FILE: engine.py | version: 2026-10-18.v1
# (layout tree with spinner faces; per-variation rule table; N-player game state with phase machine)

from __future__ import annotations

import logging
import random
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Literal, NamedTuple, Optional, Sequence, Set, Tuple

logger = logging.getLogger(__name__)

Tile = Tuple[int, int]
Variation = Literal["traditional", "allfives", "allsevens", "bergen", "blind", "fiveup"]
Phase = Literal["dealing", "turn", "draw", "pass", "game_over"]
EventType = Literal["deal", "play", "draw", "pass", "game_over"]

MAX_PIPS = 21
DEFAULT_MAX_PIP = 6


# =============================================================================
# Errors
# =============================================================================

class DominoError(ValueError):
    """Base class for rule violations raised by the engine."""


class MalformedLayout(DominoError):
    def __init__(self, message: str, position: int, fragment: str = ""):
        self.message = message
        self.position = int(position)
        self.fragment = fragment
        super().__init__(f"{message} at position {self.position}: {fragment!r}")


class IllegalMove(DominoError):
    pass


class ExhaustedSet(DominoError):
    pass


class EvaluationDegraded(DominoError):
    pass


def now_ts() -> str:
    return datetime.now().isoformat(timespec="seconds")


def round_to_nearest(x: int, multiple: int = 5) -> int:
    m = int(multiple)
    if m <= 1:
        return int(x)
    return int(round(float(int(x)) / float(m)) * m)


# =============================================================================
# Tiles
# =============================================================================

def norm_tile(a: int, b: int, max_pip: int = MAX_PIPS) -> Tile:
    a, b = int(a), int(b)
    if a < b:
        a, b = b, a
    if not (0 <= b and a <= int(max_pip)):
        raise ValueError(f"Tile out of range: {a}|{b} (max pip {max_pip})")
    return (a, b)


def parse_tile(s: str, max_pip: int = MAX_PIPS) -> Tile:
    s = (s or "").strip().replace("[", "").replace("]", "").replace(" ", "")
    s = s.replace("-", "|").replace(",", "|")
    if "|" in s:
        a, b = s.split("|", 1)
        if not (a.isdigit() and b.isdigit()):
            raise ValueError(f"Cannot parse tile: {s}")
        return norm_tile(int(a), int(b), max_pip)
    if len(s) == 2 and s.isdigit():
        return norm_tile(int(s[0]), int(s[1]), max_pip)
    raise ValueError(f"Cannot parse tile: {s}")


def tile_str(t: Tile) -> str:
    return f"{t[0]}|{t[1]}"


def tile_is_double(t: Tile) -> bool:
    return t[0] == t[1]


def tile_has(t: Tile, v: int) -> bool:
    return t[0] == v or t[1] == v


def tile_pip_count(t: Tile) -> int:
    return t[0] + t[1]


def other_value(t: Tile, v: int) -> int:
    if t[0] == v:
        return t[1]
    if t[1] == v:
        return t[0]
    raise ValueError(f"{tile_str(t)} does not contain {v}")


def all_tiles(max_pip: int = DEFAULT_MAX_PIP) -> List[Tile]:
    if not (0 <= int(max_pip) <= MAX_PIPS):
        raise ValueError(f"max_pip must be within 0..{MAX_PIPS}")
    out: List[Tile] = []
    for hi in range(int(max_pip) + 1):
        for lo in range(hi + 1):
            out.append((hi, lo))
    return out


def set_size(max_pip: int = DEFAULT_MAX_PIP) -> int:
    n = int(max_pip)
    return (n + 1) * (n + 2) // 2


def best_opening_tile(hand: Iterable[Tile]) -> Optional[Tile]:
    """
    Opening rule:
      - highest double if any
      - else the highest tile by (pip_sum, hi, lo)
    """
    tiles = list(hand)
    if not tiles:
        return None
    doubles = [t for t in tiles if tile_is_double(t)]
    if doubles:
        return max(doubles, key=lambda t: t[0])
    return max(tiles, key=lambda t: (t[0] + t[1], t[0], t[1]))


# =============================================================================
# Variation rules
# =============================================================================

@dataclass(frozen=True)
class VariationRules:
    name: str
    branching: bool
    opening: Literal["highest_double", "any"]
    draw_allowed: bool
    score_multiple: Optional[int] = None
    headers: bool = False


RULES: Dict[str, VariationRules] = {
    "traditional": VariationRules("traditional", branching=True, opening="highest_double", draw_allowed=True),
    "allfives": VariationRules("allfives", branching=True, opening="any", draw_allowed=True, score_multiple=5),
    "allsevens": VariationRules("allsevens", branching=True, opening="any", draw_allowed=True, score_multiple=7),
    "bergen": VariationRules("bergen", branching=False, opening="any", draw_allowed=True, headers=True),
    "blind": VariationRules("blind", branching=False, opening="any", draw_allowed=False),
    "fiveup": VariationRules("fiveup", branching=True, opening="any", draw_allowed=True, score_multiple=5),
}
VARIATIONS: Tuple[str, ...] = tuple(RULES.keys())


def rules_for(variation: str) -> VariationRules:
    r = RULES.get(str(variation or "").strip().lower())
    if r is None:
        raise ValueError(f"Unknown variation '{variation}'. Valid options are: {', '.join(VARIATIONS)}")
    return r


def default_starting_hand_size(num_players: int, variation: str = "traditional") -> int:
    n = int(num_players)
    name = rules_for(variation).name
    if name == "bergen":
        return 6
    if name == "blind":
        return {2: 8, 3: 7, 4: 6}.get(n, 5)
    if n == 2:
        return 7
    if n in (3, 4):
        return 6
    return 5


# =============================================================================
# Layout
# =============================================================================

class OpenEnd(NamedTuple):
    node: int
    pip: int


class Move(NamedTuple):
    tile: Tile
    end: Optional[OpenEnd]  # None => first tile on an empty layout

    @property
    def exposed(self) -> Optional[int]:
        if self.end is None:
            return None
        return other_value(self.tile, self.end.pip)


def move_str(m: Move) -> str:
    if m.end is None:
        return tile_str(m.tile)
    return f"{tile_str(m.tile)}@{m.end.node}:{m.end.pip}"


@dataclass
class LayoutNode:
    tile: Tile
    parent: Optional[int] = None
    link: Optional[int] = None  # pip shared with the parent
    children: List[int] = field(default_factory=list)


@dataclass(eq=False)
class Layout:
    """
    Tree of placed tiles rooted at the first tile played.

    A double root in a branching variation is the spinner. In a branching
    variation any double exposes the faces of its main line, and its two
    perpendicular faces open once both main-line arms have started (the parent
    counts as an arm): the spinner shows 2 faces then 4, a double further out
    shows 1 then 3. In a linear variation a double is an ordinary link.
    Any other node exposes the pip not joined to its parent; a non-double root
    exposes both of its pips.
    """

    variation: str = "traditional"
    max_pip: int = DEFAULT_MAX_PIP
    nodes: List[LayoutNode] = field(default_factory=list)
    played_set: Set[Tile] = field(default_factory=set)

    _cache: Dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self.variation = rules_for(self.variation).name

    @property
    def rules(self) -> VariationRules:
        return RULES[self.variation]

    def __len__(self) -> int:
        return len(self.nodes)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Layout):
            return NotImplemented
        return self.signature() == other.signature()

    def __str__(self) -> str:
        from notation import serialize
        return serialize(self)

    def is_empty(self) -> bool:
        return not self.nodes

    def tiles(self) -> List[Tile]:
        return [n.tile for n in self.nodes]

    def is_spinner(self, i: int) -> bool:
        n = self.nodes[i]
        return n.parent is None and tile_is_double(n.tile) and self.rules.branching

    def arms(self, i: int) -> int:
        """Tiles joined to node i, its parent included."""
        n = self.nodes[i]
        return len(n.children) + (0 if n.parent is None else 1)

    # -------------------------
    # Faces / open ends
    # -------------------------
    def faces(self, i: int) -> List[int]:
        n = self.nodes[i]
        if tile_is_double(n.tile):
            width = 4 if (self.rules.branching and self.arms(i) >= 2) else 2
            # the parent holds one of them
            used = 0 if n.parent is None else 1
            return [n.tile[0]] * (width - used)
        if n.parent is None:
            return [n.tile[1], n.tile[0]]
        return [other_value(n.tile, int(n.link))]

    def free_faces(self, i: int) -> List[int]:
        free = self.faces(i)
        for c in self.nodes[i].children:
            free.remove(int(self.nodes[c].link))
        return free

    def open_ends(self) -> List[OpenEnd]:
        cached = self._cache.get("open_ends")
        if cached is None:
            cached = [OpenEnd(i, v) for i in self.canonical_order() for v in self.free_faces(i)]
            self._cache["open_ends"] = cached
        return list(cached)

    def open_end_values(self) -> List[int]:
        return [e.pip for e in self.open_ends()]

    def count_open(self, pip: int) -> int:
        return sum(1 for e in self.open_ends() if e.pip == pip)

    # -------------------------
    # Canonical form
    # -------------------------
    def written(self, i: int) -> Tuple[int, int]:
        """Tile as written in text: connecting pip first."""
        n = self.nodes[i]
        if n.parent is not None:
            return (int(n.link), other_value(n.tile, int(n.link)))
        if tile_is_double(n.tile):
            return n.tile
        if len(n.children) == 1:
            link = int(self.nodes[n.children[0]].link)
            return (other_value(n.tile, link), link)
        return (n.tile[1], n.tile[0])

    def _keys(self) -> Dict[int, Tuple[Any, ...]]:
        keys = self._cache.get("keys")
        if keys is None:
            keys = {}

            def key_of(i: int) -> Tuple[Any, ...]:
                kids = sorted(key_of(c) for c in self.nodes[i].children)
                k = (self.written(i), tuple(kids))
                keys[i] = k
                return k

            if self.nodes:
                key_of(0)
            self._cache["keys"] = keys
        return keys

    def sorted_children(self, i: int) -> List[int]:
        keys = self._keys()
        return sorted(self.nodes[i].children, key=lambda c: keys[c])

    def canonical_order(self) -> List[int]:
        order = self._cache.get("order")
        if order is None:
            order = []
            stack = [0] if self.nodes else []
            while stack:
                i = stack.pop()
                order.append(i)
                stack.extend(reversed(self.sorted_children(i)))
            self._cache["order"] = order
        return list(order)

    def signature(self) -> Tuple[Any, ...]:
        if not self.nodes:
            return ()
        return self._keys()[0]

    # -------------------------
    # Scoring
    # -------------------------
    def ends_sum(self) -> int:
        if not self.nodes:
            return 0
        root = self.nodes[0]
        if not root.children:
            return int(tile_pip_count(root.tile))

        total = 0
        for i in self.canonical_order():
            free = self.free_faces(i)
            if not free:
                continue
            t = self.nodes[i].tile
            if not tile_is_double(t):
                total += sum(free)
            elif self.arms(i) < 2:
                # a double ending its line counts both halves, once
                total += 2 * t[0]
        return int(total)

    def score_now(self) -> int:
        rules = self.rules
        if rules.headers:
            return self._header_points()
        if rules.score_multiple:
            s = int(self.ends_sum())
            return s if (s > 0 and s % int(rules.score_multiple) == 0) else 0
        return 0

    def _header_points(self) -> int:
        ends = self.open_ends()
        if len(ends) < 2 or len({e.pip for e in ends}) != 1:
            return 0
        on_double = any(e.node != 0 and tile_is_double(self.nodes[e.node].tile) for e in ends)
        return 3 if on_double else 2

    # -------------------------
    # Core play
    # -------------------------
    def play(self, tile: Tile, end: Optional[OpenEnd] = None) -> int:
        t = norm_tile(tile[0], tile[1], self.max_pip)
        if t in self.played_set:
            raise IllegalMove(f"Tile already played: {tile_str(t)}")

        if self.is_empty():
            if end is not None:
                raise IllegalMove("The first tile does not attach to an end")
            self._add_node(t, None, None)
            return int(self.score_now())

        if end is None:
            raise IllegalMove(f"An open end is required to play {tile_str(t)}")
        end = OpenEnd(int(end[0]), int(end[1]))
        if not (0 <= end.node < len(self.nodes)) or end.pip not in self.free_faces(end.node):
            raise IllegalMove(f"End not open: node {end.node} pip {end.pip}")
        if not tile_has(t, end.pip):
            raise IllegalMove(f"Illegal: {tile_str(t)} cannot go on {end.pip}")

        self._add_node(t, end.node, end.pip)
        return int(self.score_now())

    def apply(self, move: Move) -> int:
        return self.play(move.tile, move.end)

    def _add_node(self, t: Tile, parent: Optional[int], link: Optional[int]) -> int:
        idx = len(self.nodes)
        self.nodes.append(LayoutNode(tile=t, parent=parent, link=link))
        if parent is not None:
            self.nodes[parent].children.append(idx)
        self.played_set.add(t)
        self._cache.clear()
        return idx

    def check_invariants(self) -> None:
        seen: Set[Tile] = set()
        for i, n in enumerate(self.nodes):
            if n.tile in seen:
                raise ValueError(f"Duplicate tile in layout: {tile_str(n.tile)}")
            seen.add(n.tile)
            if max(n.tile) > self.max_pip:
                raise ValueError(f"Tile out of set: {tile_str(n.tile)}")
            if n.parent is None:
                if i != 0:
                    raise ValueError(f"Node {i} has no parent")
                continue
            p = self.nodes[n.parent]
            if n.link is None or not tile_has(n.tile, n.link) or not tile_has(p.tile, n.link):
                raise ValueError(f"Edge {n.parent}->{i} does not match on {n.link}")
        for i in range(len(self.nodes)):
            free = self.faces(i)
            for c in self.nodes[i].children:
                if self.nodes[c].link not in free:
                    raise ValueError(f"Node {i} has no free face for child {c}")
                free.remove(int(self.nodes[c].link))
        if seen != self.played_set:
            raise ValueError("played_set out of sync with nodes")

    # -------------------------
    # Snapshot / clone
    # -------------------------
    def snapshot(self) -> Dict[str, Any]:
        order = self.canonical_order()
        ids = {node: pos for pos, node in enumerate(order)}
        nodes = []
        for node in order:
            n = self.nodes[node]
            nodes.append({
                "id": ids[node],
                "tile": list(self.written(node)),
                "parent": ids[n.parent] if n.parent is not None else None,
                "link": n.link,
            })
        return {
            "set_id": int(self.max_pip),
            "variation": self.variation,
            "nodes": nodes,
            "open_ends": self.open_end_values(),
            "ends_sum": self.ends_sum(),
        }

    @classmethod
    def from_snapshot(cls, d: Dict[str, Any]) -> "Layout":
        lay = cls(variation=d.get("variation", "traditional"), max_pip=int(d.get("set_id", DEFAULT_MAX_PIP)))
        remap: Dict[int, int] = {}
        for raw in d.get("nodes", []) or []:
            a, b = raw["tile"]
            t = norm_tile(int(a), int(b), lay.max_pip)
            parent = raw.get("parent")
            if parent is None:
                lay.play(t)
            else:
                if int(parent) not in remap:
                    raise ValueError(f"Node {raw.get('id')} refers to unknown parent {parent}")
                lay.play(t, OpenEnd(remap[int(parent)], int(raw["link"])))
            remap[int(raw["id"])] = len(lay.nodes) - 1
        return lay

    def clone(self) -> "Layout":
        lay = Layout(variation=self.variation, max_pip=self.max_pip)
        lay.nodes = [LayoutNode(n.tile, n.parent, n.link, list(n.children)) for n in self.nodes]
        lay.played_set = set(self.played_set)
        return lay


# =============================================================================
# Hand / Boneyard
# =============================================================================

@dataclass
class Hand:
    tiles: List[Tile] = field(default_factory=list)

    def __contains__(self, t: object) -> bool:
        return t in self.tiles

    def __iter__(self):
        return iter(self.tiles)

    def __len__(self) -> int:
        return len(self.tiles)

    def add(self, t: Tile) -> None:
        if t in self.tiles:
            raise ValueError(f"Duplicate tile in hand: {tile_str(t)}")
        self.tiles.append(t)

    def remove(self, t: Tile) -> None:
        if t not in self.tiles:
            raise IllegalMove(f"Tile not in hand: {tile_str(t)}")
        self.tiles.remove(t)

    def pip_count(self) -> int:
        return int(sum(tile_pip_count(t) for t in self.tiles))

    def copy(self) -> "Hand":
        return Hand(list(self.tiles))


@dataclass
class Boneyard:
    _tiles: List[Tile] = field(default_factory=list)

    @classmethod
    def full(cls, max_pip: int = DEFAULT_MAX_PIP, rng: Optional[random.Random] = None) -> "Boneyard":
        tiles = all_tiles(max_pip)
        (rng or random.Random(secrets.randbits(31))).shuffle(tiles)
        return cls(tiles)

    @classmethod
    def remaining(cls, max_pip: int, layout: Layout, hands: Sequence[Iterable[Tile]] = ()) -> "Boneyard":
        used: Set[Tile] = set(layout.played_set)
        for h in hands:
            used.update(h)
        return cls([t for t in all_tiles(max_pip) if t not in used])

    @property
    def count(self) -> int:
        return len(self._tiles)

    def tiles(self) -> Tuple[Tile, ...]:
        return tuple(self._tiles)

    def draw(self) -> Optional[Tile]:
        if not self._tiles:
            return None
        return self._tiles.pop()

    def copy(self) -> "Boneyard":
        return Boneyard(list(self._tiles))


# =============================================================================
# Move validator
# =============================================================================

def legal_moves(layout: Layout, hand: Iterable[Tile]) -> List[Move]:
    """
    Ends in traversal order, tiles in hand order. A tile matching the same
    (node, pip) twice (faces of a double) is listed once.
    """
    tiles = list(hand)
    if layout.is_empty():
        if layout.rules.opening == "highest_double":
            best = best_opening_tile(tiles)
            return [Move(best, None)] if best is not None else []
        return [Move(t, None) for t in tiles]

    out: List[Move] = []
    seen: Set[Tuple[Tile, OpenEnd]] = set()
    for e in layout.open_ends():
        for t in tiles:
            if t in layout.played_set or not tile_has(t, e.pip):
                continue
            if (t, e) in seen:
                continue
            seen.add((t, e))
            out.append(Move(t, e))
    return out


# =============================================================================
# Game state
# =============================================================================

@dataclass
class GameEvent:
    type: EventType
    ts: str = field(default_factory=now_ts)
    ply: int = 0
    player: Optional[int] = None
    tile: Optional[str] = None
    end: Optional[List[int]] = None
    open_ends: List[int] = field(default_factory=list)
    score_gained: int = 0
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "ts": self.ts,
            "ply": self.ply,
            "player": self.player,
            "tile": self.tile,
            "end": list(self.end) if self.end is not None else None,
            "open_ends": list(self.open_ends),
            "score_gained": int(self.score_gained),
            "reason": self.reason,
        }


@dataclass
class GameState:
    variation: str = "traditional"
    max_pip: int = DEFAULT_MAX_PIP
    num_players: int = 2
    seed: int = 0

    layout: Layout = field(default_factory=Layout)
    hands: List[Hand] = field(default_factory=list)
    boneyard: Boneyard = field(default_factory=Boneyard)

    current: int = 0
    phase: Phase = "dealing"
    scores: List[int] = field(default_factory=list)
    passes_in_row: int = 0

    winner: Optional[int] = None
    end_reason: Optional[str] = None

    events: List[GameEvent] = field(default_factory=list)

    @classmethod
    def new(
        cls,
        num_players: int = 2,
        variation: str = "traditional",
        max_pip: int = DEFAULT_MAX_PIP,
        seed: Optional[int] = None,
        hand_size: Optional[int] = None,
    ) -> "GameState":
        if int(num_players) < 2:
            raise ValueError("Must have at least 2 players")
        st = cls(
            variation=rules_for(variation).name,
            max_pip=int(max_pip),
            num_players=int(num_players),
            seed=int(seed) if seed is not None else secrets.randbits(31),
        )
        st.layout = Layout(variation=st.variation, max_pip=st.max_pip)
        st.deal(hand_size)
        return st

    @classmethod
    def from_position(
        cls,
        layout: Layout,
        hands: Sequence[Iterable[Tile]],
        boneyard: Iterable[Tile] = (),
        current: int = 0,
        scores: Optional[Sequence[int]] = None,
        seed: int = 0,
    ) -> "GameState":
        """Midgame setup for analysis: explicit layout, hands and boneyard."""
        if len(hands) < 2:
            raise ValueError("Must have at least 2 players")
        st = cls(variation=layout.variation, max_pip=layout.max_pip, num_players=len(hands), seed=int(seed))
        st.layout = layout
        st.hands = [Hand([norm_tile(t[0], t[1], layout.max_pip) for t in h]) for h in hands]
        st.boneyard = Boneyard([norm_tile(t[0], t[1], layout.max_pip) for t in boneyard])

        seen: Set[Tile] = set(layout.played_set)
        for t in [t for h in st.hands for t in h] + list(st.boneyard.tiles()):
            if t in seen:
                raise ValueError(f"Tile appears twice in position: {tile_str(t)}")
            seen.add(t)

        st.scores = list(scores) if scores is not None else [0] * st.num_players
        st.current = int(current) % st.num_players
        st.events.append(GameEvent(type="deal", ply=0, player=st.current, reason="position"))
        st.phase = "turn"
        st._refresh_phase()
        return st

    @property
    def rules(self) -> VariationRules:
        return RULES[self.variation]

    def ply(self) -> int:
        return len(self.events)

    def _assert_active(self) -> None:
        if self.phase == "game_over":
            raise IllegalMove(f"Game is over ({self.end_reason})")

    # ---- dealing ----

    def deal(self, hand_size: Optional[int] = None) -> GameEvent:
        if self.phase != "dealing":
            raise IllegalMove("Tiles have already been dealt")

        size = int(hand_size) if hand_size else default_starting_hand_size(self.num_players, self.variation)
        need = size * self.num_players
        if need > set_size(self.max_pip):
            raise ExhaustedSet(f"Cannot deal {need} tiles from a set of {set_size(self.max_pip)}")

        rng = random.Random(self.seed)
        self.boneyard = Boneyard.full(self.max_pip, rng)
        self.hands = [Hand() for _ in range(self.num_players)]
        for _ in range(size):
            for h in self.hands:
                h.add(self.boneyard.draw())
        self.scores = [0] * self.num_players

        self.current = 0
        if self.rules.opening == "highest_double":
            best = best_opening_tile(t for h in self.hands for t in h)
            self.current = next(i for i, h in enumerate(self.hands) if best in h)

        ev = GameEvent(type="deal", ply=self.ply(), player=self.current)
        self.events.append(ev)
        self.phase = "turn"
        self._refresh_phase()
        return ev

    # ---- queries ----

    def hand(self, player: Optional[int] = None) -> Hand:
        return self.hands[self.current if player is None else int(player)]

    def legal_moves(self) -> List[Move]:
        if self.phase in ("dealing", "game_over"):
            return []
        return legal_moves(self.layout, self.hands[self.current])

    def hand_counts(self) -> List[int]:
        return [len(h) for h in self.hands]

    def tile_conservation_total(self) -> int:
        return int(len(self.layout) + sum(self.hand_counts()) + self.boneyard.count)

    def _next_player(self) -> int:
        return (self.current + 1) % self.num_players

    def _refresh_phase(self) -> None:
        if self.phase in ("dealing", "game_over"):
            return
        if self.legal_moves():
            self.phase = "turn"
        elif self.rules.draw_allowed and self.boneyard.count > 0:
            self.phase = "draw"
        else:
            self.phase = "pass"

    # ---- core actions ----

    def play(self, move: Move) -> GameEvent:
        self._assert_active()
        if self.phase != "turn":
            raise IllegalMove(f"Cannot play during phase '{self.phase}'")
        if move not in self.legal_moves():
            raise IllegalMove(f"Not a legal move: {move_str(move)}")

        player = self.current
        pts = int(self.layout.apply(move))
        self.hands[player].remove(move.tile)
        self.scores[player] += pts
        self.passes_in_row = 0

        ev = GameEvent(
            type="play",
            ply=self.ply(),
            player=player,
            tile=tile_str(move.tile),
            end=[move.end.node, move.end.pip] if move.end is not None else None,
            open_ends=self.layout.open_end_values(),
            score_gained=pts,
        )
        self.events.append(ev)

        if len(self.hands[player]) == 0:
            self._finish(player, "out")
            return ev

        self.current = self._next_player()
        self._refresh_phase()
        return ev

    def draw(self) -> GameEvent:
        self._assert_active()
        if self.phase != "draw":
            raise IllegalMove(f"Cannot draw during phase '{self.phase}'")
        t = self.boneyard.draw()
        if t is None:
            raise ExhaustedSet("Boneyard is empty")
        self.hands[self.current].add(t)

        ev = GameEvent(
            type="draw",
            ply=self.ply(),
            player=self.current,
            open_ends=self.layout.open_end_values(),
        )
        self.events.append(ev)
        self._refresh_phase()
        return ev

    def pass_turn(self) -> GameEvent:
        self._assert_active()
        if self.phase != "pass":
            raise IllegalMove(f"Pass not allowed during phase '{self.phase}'")

        ev = GameEvent(
            type="pass",
            ply=self.ply(),
            player=self.current,
            open_ends=self.layout.open_end_values(),
        )
        self.events.append(ev)
        self.passes_in_row += 1

        if self.passes_in_row >= self.num_players:
            self._finish_block()
            return ev

        self.current = self._next_player()
        self._refresh_phase()
        return ev

    # ---- game end ----

    def _award(self, pips: int) -> int:
        m = self.rules.score_multiple
        return round_to_nearest(pips, m) if m else int(pips)

    def _finish(self, winner: Optional[int], reason: str, award: Optional[int] = None) -> None:
        if winner is not None:
            if award is None:
                award = sum(h.pip_count() for i, h in enumerate(self.hands) if i != winner)
            award = self._award(int(award))
            self.scores[winner] += award
        self.winner = winner
        self.end_reason = reason
        self.phase = "game_over"
        self.events.append(GameEvent(
            type="game_over",
            ply=self.ply(),
            player=winner,
            open_ends=self.layout.open_end_values(),
            score_gained=int(award or 0),
            reason=reason,
        ))
        logger.info("game over: reason=%s winner=%s scores=%s", reason, winner, self.scores)

    def _finish_block(self) -> None:
        pips = [h.pip_count() for h in self.hands]
        low = min(pips)
        holders = [i for i, p in enumerate(pips) if p == low]
        if len(holders) != 1:
            self._finish(None, "block_tie")
            return
        self._finish(holders[0], "block")

    # ---- serialization ----

    def to_dict(self, viewer: Optional[int] = None) -> Dict[str, Any]:
        """viewer=None reveals every hand; otherwise only that player's."""
        hands: List[Optional[List[str]]] = []
        for i, h in enumerate(self.hands):
            hands.append([tile_str(t) for t in h] if viewer is None or viewer == i else None)
        return {
            "meta": {
                "variation": self.variation,
                "set_id": int(self.max_pip),
                "num_players": int(self.num_players),
                "seed": int(self.seed),
                "phase": self.phase,
                "current": int(self.current),
                "scores": list(self.scores),
                "hand_counts": self.hand_counts(),
                "boneyard_count": int(self.boneyard.count),
                "passes_in_row": int(self.passes_in_row),
                "winner": self.winner,
                "end_reason": self.end_reason,
                "tile_total": int(self.tile_conservation_total()),
            },
            "layout": self.layout.snapshot(),
            "hands": hands,
            "legal_moves": [move_str(m) for m in self.legal_moves()],
            "events": [e.to_dict() for e in self.events],
        }
