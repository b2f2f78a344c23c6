# FILE: ai.py | version: 2026-10-18.v1
# (19 weighted heuristics + difficulty matrix; endgame lookahead with node/time budget;
#  seeded determinized rollouts for SearchAI; closed player variant)

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, NamedTuple, Optional, Sequence, Tuple
import logging
import math
import os
import random
import time
from itertools import combinations

import numpy as np

from engine import (
    EvaluationDegraded, GameState, IllegalMove, Layout, Move, OpenEnd, Tile,
    all_tiles, legal_moves, move_str, tile_has, tile_is_double,
    tile_pip_count, tile_str,
)

logger = logging.getLogger(__name__)

# lookahead
LOOKAHEAD_TILES = int(os.environ.get("DOMINO_LOOKAHEAD_TILES", "6"))
LOOKAHEAD_NODES = int(os.environ.get("DOMINO_LOOKAHEAD_NODES", "20000"))
LOOKAHEAD_SCALE = 10.0
ENUM_MAX_WORLDS = 2000

# search player
THINK_MS = int(os.environ.get("DOMINO_THINK_MS", "2000"))
SEARCH_ROLLOUTS = 16
SEARCH_WEIGHT = 2.0
ROLLOUT_SCALE = 10.0

# knowledge params
DECAY_RATE = 0.85
MAX_CUT_PROBABILITY = 0.98
DRAW_CUT = 0.75
SHARED_PASS_CUT = 0.6

MOBILITY_SCALE = 3.0


# =============================================================================
# Heuristic table
# =============================================================================

HEURISTICS: Tuple[str, ...] = (
    "tile_tracking",         # 1
    "mobility",              # 2
    "pip_minimization",      # 3
    "opponent_restriction",  # 4
    "balanced_ends",         # 5
    "early_high_tiles",      # 6
    "double_timing",         # 7
    "end_closure",           # 8
    "force_single_end",      # 9
    "tempo_sacrifice",       # 10
    "create_forks",          # 11
    "pip_sum_steering",      # 12
    "immediate_points",      # 13
    "scoring_denial",        # 14
    "going_out",             # 15
    "spinner_exploitation",  # 16
    "draw_avoidance",        # 17
    "suit_diversity",        # 18
    "endgame_lookahead",     # 19
)
LOOKAHEAD_INDEX = HEURISTICS.index("endgame_lookahead")

# rows = difficulty 1..5, columns = HEURISTICS
DIFFICULTY_WEIGHTS = np.array([
    # 1    2    3    4    5    6    7    8    9    10   11   12   13   14   15   16   17   18   19
    [0.0, 1.0, 0.7, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
    [0.0, 1.0, 0.7, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.8, 0.0, 1.0, 0.0, 0.4, 0.0, 0.0],
    [0.6, 1.0, 0.7, 0.6, 0.4, 0.0, 0.4, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.6, 1.5, 0.0, 0.5, 0.0, 0.0],
    [0.9, 1.0, 0.7, 0.8, 0.5, 0.3, 0.5, 0.4, 0.4, 0.3, 0.4, 0.3, 1.2, 0.8, 2.0, 0.3, 0.6, 0.3, 0.0],
    [0.9, 1.0, 0.7, 0.8, 0.5, 0.3, 0.5, 0.4, 0.4, 0.3, 0.4, 0.3, 1.2, 0.8, 2.0, 0.3, 0.6, 0.3, 2.5],
], dtype=np.float64)
MAX_DIFFICULTY = int(DIFFICULTY_WEIGHTS.shape[0])


def weights_for(difficulty: int) -> np.ndarray:
    d = max(1, min(int(difficulty), MAX_DIFFICULTY))
    return DIFFICULTY_WEIGHTS[d - 1]


def _clip(x: float) -> float:
    return float(max(-1.0, min(1.0, x)))


def _mobility_value(count: int) -> float:
    # strictly increasing in count, -1 at zero
    return float(2.0 * math.tanh(float(count) / MOBILITY_SCALE) - 1.0)


# =============================================================================
# Knowledge (what the deciding player can infer)
# =============================================================================

@dataclass
class Knowledge:
    me: int
    max_pip: int
    unseen: Tuple[Tile, ...]
    opp_counts: Dict[int, int]
    boneyard_count: int
    draw_allowed: bool
    cut_prob: List[float] = field(default_factory=list)
    hard_cut: List[bool] = field(default_factory=list)
    scores: List[int] = field(default_factory=list)

    @classmethod
    def from_state(cls, st: GameState, me: Optional[int] = None) -> "Knowledge":
        me = st.current if me is None else int(me)
        mine = set(st.hands[me])
        unseen = tuple(t for t in all_tiles(st.max_pip) if t not in mine and t not in st.layout.played_set)
        kn = cls(
            me=me,
            max_pip=int(st.max_pip),
            unseen=unseen,
            opp_counts={i: len(h) for i, h in enumerate(st.hands) if i != me},
            boneyard_count=int(st.boneyard.count),
            draw_allowed=bool(st.rules.draw_allowed),
            cut_prob=[0.0] * (st.max_pip + 1),
            hard_cut=[False] * (st.max_pip + 1),
            scores=list(st.scores),
        )
        kn._replay(st)
        return kn

    def _replay(self, st: GameState) -> None:
        last_ply = [0] * (self.max_pip + 1)
        single_opp = len(self.opp_counts) == 1

        for ev in st.events:
            if ev.player is None or ev.player == self.me or ev.type not in ("pass", "draw"):
                continue
            for v in ev.open_ends:
                self._decay(v, ev.ply, last_ply)
                if ev.type == "pass":
                    # a pass means no playable tile and nothing left to draw
                    if single_opp:
                        self.cut_prob[v] = 1.0
                        self.hard_cut[v] = True
                    else:
                        self.cut_prob[v] = max(self.cut_prob[v], SHARED_PASS_CUT)
                else:
                    self.cut_prob[v] = min(MAX_CUT_PROBABILITY, max(self.cut_prob[v], DRAW_CUT))
                last_ply[v] = ev.ply

        ply = len(st.events)
        for v in range(self.max_pip + 1):
            self._decay(v, ply, last_ply)
            if self.unseen_with(v) == 0:
                self.cut_prob[v] = 1.0

    def _decay(self, v: int, ply: int, last_ply: List[int]) -> None:
        if self.hard_cut[v]:
            return
        diff = ply - last_ply[v]
        if diff > 0:
            self.cut_prob[v] *= DECAY_RATE ** diff
            last_ply[v] = ply

    def unseen_with(self, pip: int) -> int:
        return sum(1 for t in self.unseen if tile_has(t, pip))

    def tile_weight(self, t: Tile) -> float:
        cut = max(float(self.cut_prob[t[0]]), float(self.cut_prob[t[1]]))
        return max(0.01, 1.0 - 0.90 * cut)

    def tiles_in_play(self, my_count: int) -> int:
        return int(my_count + sum(self.opp_counts.values()) + self.boneyard_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "me": self.me,
            "unseen": len(self.unseen),
            "opp_counts": {str(k): v for k, v in self.opp_counts.items()},
            "boneyard_count": self.boneyard_count,
            "cut_prob": [round(float(x), 4) for x in self.cut_prob],
        }


# =============================================================================
# Evaluation context
# =============================================================================

@dataclass
class EvalContext:
    """Read-only snapshot shared by every candidate move of one decision."""
    layout: Layout
    hand: Tuple[Tile, ...]
    knowledge: Knowledge
    node_limit: int = LOOKAHEAD_NODES
    deadline: Optional[float] = None

    def held(self, pip: int, hand: Optional[Sequence[Tile]] = None) -> int:
        return sum(1 for t in (self.hand if hand is None else hand) if tile_has(t, pip))


class Outcome(NamedTuple):
    layout: Layout
    hand: Tuple[Tile, ...]
    points: int
    follow_ups: int
    playable: Tuple[Tile, ...]


def make_context(layout: Layout, hand: Sequence[Tile], knowledge: Knowledge, think_ms: Optional[int] = None) -> EvalContext:
    deadline = (time.perf_counter() + float(think_ms) / 1000.0) if think_ms else None
    return EvalContext(layout=layout, hand=tuple(hand), knowledge=knowledge, deadline=deadline)


def outcome(ctx: EvalContext, move: Move) -> Outcome:
    lay2 = ctx.layout.clone()
    pts = int(lay2.apply(move))
    hand2 = tuple(t for t in ctx.hand if t != move.tile)
    follow = legal_moves(lay2, hand2) if hand2 else []
    playable = tuple(dict.fromkeys(m.tile for m in follow))
    return Outcome(lay2, hand2, pts, len(follow), playable)


def _new_pips(move: Move) -> List[int]:
    if move.end is None:
        return sorted(set(move.tile))
    return [int(move.exposed)]


# =============================================================================
# Heuristics (each returns a float in [-1, 1])
# =============================================================================

def h_tile_tracking(ctx: EvalContext, move: Move, out: Outcome) -> float:
    kn = ctx.knowledge
    per_pip = float(kn.max_pip + 1)
    vals = [(kn.unseen_with(p) + ctx.held(p, out.hand)) / per_pip for p in _new_pips(move)]
    return _clip(2.0 * (sum(vals) / len(vals)) - 1.0)


def h_mobility(ctx: EvalContext, move: Move, out: Outcome) -> float:
    if not out.hand:
        return 1.0
    return _mobility_value(out.follow_ups)


def h_pip_minimization(ctx: EvalContext, move: Move, out: Outcome) -> float:
    top = float(2 * max(1, ctx.knowledge.max_pip))
    score = 2.0 * (tile_pip_count(move.tile) / top) - 1.0
    if out.hand and out.follow_ups == 0:
        score = min(score, 0.0)
    return _clip(score)


def h_opponent_restriction(ctx: EvalContext, move: Move, out: Outcome) -> float:
    ends = out.layout.open_end_values()
    if not ends:
        return 1.0
    cut = ctx.knowledge.cut_prob
    return _clip(2.0 * (sum(cut[v] for v in ends) / len(ends)) - 1.0)


def h_balanced_ends(ctx: EvalContext, move: Move, out: Outcome) -> float:
    if not out.hand:
        return 1.0
    pips = set(out.layout.open_end_values())
    if not pips:
        return -1.0
    covered = sum(1 for p in pips if ctx.held(p, out.hand) > 0)
    return _clip(2.0 * covered / len(pips) - 1.0)


def h_early_high_tiles(ctx: EvalContext, move: Move, out: Outcome) -> float:
    stage = len(ctx.hand) / float(max(1, len(ctx.hand) + len(ctx.layout)))
    frac = tile_pip_count(move.tile) / float(2 * max(1, ctx.knowledge.max_pip))
    return _clip(stage * (2.0 * frac - 1.0))


def h_double_timing(ctx: EvalContext, move: Move, out: Outcome) -> float:
    kn = ctx.knowledge
    score = 0.0
    if tile_is_double(move.tile):
        companions = kn.unseen_with(move.tile[0])
        score += 0.5 + 0.5 * (1.0 - companions / float(max(1, kn.max_pip)))
    stranded = [t for t in out.hand if tile_is_double(t) and kn.unseen_with(t[0]) <= 1]
    score -= 0.3 * len(stranded)
    return _clip(score)


def h_end_closure(ctx: EvalContext, move: Move, out: Outcome) -> float:
    kn = ctx.knowledge
    fracs = []
    for p in _new_pips(move):
        mine = ctx.held(p, out.hand)
        denom = mine + kn.unseen_with(p)
        fracs.append(1.0 if denom == 0 else mine / float(denom))
    return _clip(2.0 * (sum(fracs) / len(fracs)) - 1.0)


def h_force_single_end(ctx: EvalContext, move: Move, out: Outcome) -> float:
    opp = ctx.knowledge.opp_counts
    if not opp or len(out.hand) >= min(opp.values()):
        return 0.0
    ends = out.layout.open_end_values()
    if len(ends) <= 1:
        return 1.0
    distinct = len(set(ends))
    return _clip(1.0 - 2.0 * (distinct - 1) / float(len(ends) - 1))


def h_tempo_sacrifice(ctx: EvalContext, move: Move, out: Outcome) -> float:
    if move.end is None:
        return 0.0
    p = int(move.exposed)
    reply = 1.0 if ctx.held(p, out.hand) > 0 else -1.0
    return _clip(0.5 * reply + 0.5 * (2.0 * ctx.knowledge.cut_prob[p] - 1.0))


def h_create_forks(ctx: EvalContext, move: Move, out: Outcome) -> float:
    pips = set(out.layout.open_end_values())
    forks = sum(1 for t in out.hand if sum(1 for p in pips if tile_has(t, p)) >= 2)
    return _clip(2.0 * math.tanh(float(forks)) - 1.0)


def h_pip_sum_steering(ctx: EvalContext, move: Move, out: Outcome) -> float:
    m = out.layout.rules.score_multiple
    if not m:
        return 0.0
    s = out.layout.ends_sum()
    d = min(s % m, m - (s % m))
    return _clip(2.0 * d / float(m // 2) - 1.0)


def h_immediate_points(ctx: EvalContext, move: Move, out: Outcome) -> float:
    return _clip(math.tanh(out.points / 10.0))


def h_scoring_denial(ctx: EvalContext, move: Move, out: Outcome) -> float:
    rules = out.layout.rules
    if not (rules.score_multiple or rules.headers):
        return 0.0
    kn = ctx.knowledge
    threat = 0.0
    for t in kn.unseen:
        w = kn.tile_weight(t)
        for m in legal_moves(out.layout, (t,)):
            pts = out.layout.clone().apply(m)
            threat = max(threat, float(pts) * w)
    return _clip(-math.tanh(threat / 10.0))


def h_going_out(ctx: EvalContext, move: Move, out: Outcome) -> float:
    if not out.hand:
        return 1.0
    if len(out.hand) == 1 and out.follow_ups > 0:
        return 0.5
    return 0.0


def h_spinner_exploitation(ctx: EvalContext, move: Move, out: Outcome) -> float:
    lay = ctx.layout
    if not lay.rules.branching:
        return 0.0
    if move.end is None:
        if tile_is_double(move.tile):
            return 0.3 if ctx.held(move.tile[0], out.hand) > 0 else 0.0
        return 0.0
    node = lay.nodes[move.end.node]
    # playing through a double with one arm opens its perpendicular faces
    if tile_is_double(node.tile) and lay.arms(move.end.node) == 1:
        v = node.tile[0]
        return 0.6 if ctx.held(v, out.hand) > 0 else -0.3
    return 0.0


def h_draw_avoidance(ctx: EvalContext, move: Move, out: Outcome) -> float:
    if not out.hand:
        return 1.0
    if not out.playable:
        return -1.0
    return _clip(1.0 - 1.0 / float(len(out.playable)))


def h_suit_diversity(ctx: EvalContext, move: Move, out: Outcome) -> float:
    if not out.hand:
        return 1.0
    pips = {p for t in out.hand for p in t}
    cap = min(2 * len(out.hand), ctx.knowledge.max_pip + 1)
    return _clip(2.0 * len(pips) / float(max(1, cap)) - 1.0)


def h_endgame_lookahead(ctx: EvalContext, move: Move, out: Outcome) -> float:
    kn = ctx.knowledge
    if kn.tiles_in_play(len(ctx.hand)) > LOOKAHEAD_TILES:
        return 0.0
    value = endgame_value(ctx, out)
    return _clip(math.tanh(value / LOOKAHEAD_SCALE))


HEURISTIC_FUNCS: Tuple[Callable[[EvalContext, Move, Outcome], float], ...] = (
    h_tile_tracking,
    h_mobility,
    h_pip_minimization,
    h_opponent_restriction,
    h_balanced_ends,
    h_early_high_tiles,
    h_double_timing,
    h_end_closure,
    h_force_single_end,
    h_tempo_sacrifice,
    h_create_forks,
    h_pip_sum_steering,
    h_immediate_points,
    h_scoring_denial,
    h_going_out,
    h_spinner_exploitation,
    h_draw_avoidance,
    h_suit_diversity,
    h_endgame_lookahead,
)


# =============================================================================
# Endgame lookahead (paranoid minimax, expectimax over draws)
# =============================================================================

class _Lookahead:
    def __init__(self, me: int, n_players: int, draw_allowed: bool, node_limit: int, deadline: Optional[float]):
        self.me = me
        self.n = n_players
        self.draw_allowed = draw_allowed
        self.node_limit = int(node_limit)
        self.deadline = deadline
        self.nodes = 0
        self.memo: Dict[Tuple[Any, ...], float] = {}

    def _tick(self) -> None:
        self.nodes += 1
        if self.nodes > self.node_limit:
            raise EvaluationDegraded(f"lookahead node budget exceeded ({self.node_limit})")
        if self.deadline is not None and (self.nodes & 63) == 0 and time.perf_counter() > self.deadline:
            raise EvaluationDegraded("lookahead time budget exceeded")

    def terminal(self, hands: Tuple[Tuple[Tile, ...], ...]) -> float:
        return pip_differential(hands, self.me)

    def value(self, lay: Layout, hands: Tuple[Tuple[Tile, ...], ...], bone: Tuple[Tile, ...], turn: int, passes: int) -> float:
        self._tick()
        key = (_position_key(lay), hands, bone, turn, passes)
        hit = self.memo.get(key)
        if hit is not None:
            return hit

        hand = hands[turn]
        moves = _distinct_moves(lay, legal_moves(lay, hand))
        if moves:
            vals = []
            for m in moves:
                lay2 = lay.clone()
                lay2.apply(m)
                h2 = tuple(t for t in hand if t != m.tile)
                hands2 = hands[:turn] + (h2,) + hands[turn + 1:]
                if not h2:
                    vals.append(self.terminal(hands2))
                else:
                    vals.append(self.value(lay2, hands2, bone, (turn + 1) % self.n, 0))
            v = max(vals) if turn == self.me else min(vals)
        elif self.draw_allowed and bone:
            acc = 0.0
            for t in bone:
                h2 = tuple(sorted(hand + (t,)))
                hands2 = hands[:turn] + (h2,) + hands[turn + 1:]
                rest = tuple(x for x in bone if x != t)
                acc += self.value(lay, hands2, rest, turn, passes)
            v = acc / float(len(bone))
        elif passes + 1 >= self.n:
            v = self.terminal(hands)
        else:
            v = self.value(lay, hands, bone, (turn + 1) % self.n, passes + 1)

        self.memo[key] = v
        return v


def _position_key(lay: Layout) -> Tuple[Any, ...]:
    doubles = tuple(sorted(
        (e.pip, min(2, lay.arms(e.node)), e.node == 0)
        for e in lay.open_ends() if tile_is_double(lay.nodes[e.node].tile)
    ))
    return (tuple(sorted(lay.open_end_values())), doubles)


def _end_kind(lay: Layout, end: Optional[OpenEnd]) -> Tuple[Any, ...]:
    if end is None:
        return ()
    double = tile_is_double(lay.nodes[end.node].tile)
    return (end.node == 0, double, min(2, lay.arms(end.node)) if double else 0)


def _distinct_moves(lay: Layout, moves: List[Move]) -> List[Move]:
    out: List[Move] = []
    seen = set()
    for m in moves:
        key = (m.tile, m.end.pip if m.end else None, _end_kind(lay, m.end))
        if key in seen:
            continue
        seen.add(key)
        out.append(m)
    return out


def _enumerate_worlds(kn: Knowledge) -> Tuple[List[Tuple[Dict[int, Tuple[Tile, ...]], Tuple[Tile, ...]]], List[float]]:
    others = sorted(kn.opp_counts)
    worlds: List[Tuple[Dict[int, Tuple[Tile, ...]], Tuple[Tile, ...]]] = []
    weights: List[float] = []

    def rec(pool: Tuple[Tile, ...], idx: int, acc: Dict[int, Tuple[Tile, ...]], w: float) -> None:
        if idx == len(others):
            worlds.append((dict(acc), pool))
            weights.append(w)
            return
        p = others[idx]
        for combo in combinations(pool, kn.opp_counts[p]):
            if len(worlds) >= ENUM_MAX_WORLDS:
                raise EvaluationDegraded(f"more than {ENUM_MAX_WORLDS} hidden worlds")
            rest = tuple(t for t in pool if t not in combo)
            cw = w
            for t in combo:
                cw *= kn.tile_weight(t)
            acc[p] = combo
            rec(rest, idx + 1, acc, cw)
        acc.pop(p, None)

    rec(tuple(sorted(kn.unseen)), 0, {}, 1.0)
    return worlds, weights


def endgame_value(ctx: EvalContext, out: Outcome) -> float:
    """Expected final pip differential for the deciding player after `out`."""
    kn = ctx.knowledge
    n = len(kn.opp_counts) + 1
    worlds, weights = _enumerate_worlds(kn)
    total_w = float(sum(weights))
    if not worlds or total_w <= 0.0:
        return 0.0

    search = _Lookahead(kn.me, n, kn.draw_allowed, ctx.node_limit, ctx.deadline)
    acc = 0.0
    for (opp_hands, bone), w in zip(worlds, weights):
        hands = tuple(
            tuple(sorted(out.hand)) if i == kn.me else tuple(sorted(opp_hands[i]))
            for i in range(n)
        )
        if not out.hand:
            v = search.terminal(hands)
        else:
            v = search.value(out.layout, hands, tuple(sorted(bone)), (kn.me + 1) % n, 0)
        acc += w * v
    return acc / total_w


# =============================================================================
# Move scoring / ranking
# =============================================================================

def heuristic_vector(ctx: EvalContext, move: Move, weights: np.ndarray) -> np.ndarray:
    """
    Scores for every heuristic with a non-zero weight (others stay 0).
    A heuristic that cannot finish is logged and scored neutrally.
    """
    out = outcome(ctx, move)
    vec = np.zeros(len(HEURISTICS), dtype=np.float64)
    for i, fn in enumerate(HEURISTIC_FUNCS):
        if weights[i] == 0.0:
            continue
        try:
            vec[i] = fn(ctx, move, out)
        except EvaluationDegraded as e:
            logger.warning("heuristic %s degraded for %s: %s", HEURISTICS[i], move_str(move), e)
            vec[i] = 0.0
    return vec


def _tiebreak_key(layout: Layout, move: Move, score: float) -> Tuple[Any, ...]:
    ends = layout.open_ends()
    end_idx = ends.index(move.end) if move.end is not None else -1
    return (-round(float(score), 9), -tile_pip_count(move.tile), end_idx, move.tile)


class Ranked(NamedTuple):
    move: Move
    score: float
    vector: np.ndarray


def rank_moves(
    state: GameState,
    difficulty: int = 3,
    weights: Optional[Sequence[float]] = None,
    think_ms: Optional[int] = None,
) -> List[Ranked]:
    moves = state.legal_moves()
    if not moves:
        return []
    w = np.asarray(weights, dtype=np.float64) if weights is not None else weights_for(difficulty)
    if w.shape != (len(HEURISTICS),):
        raise ValueError(f"weights must have {len(HEURISTICS)} entries")

    kn = Knowledge.from_state(state)
    ctx = make_context(state.layout, state.hand().tiles, kn, think_ms)

    ranked = []
    for m in moves:
        vec = heuristic_vector(ctx, m, w)
        ranked.append(Ranked(m, float(np.dot(w, vec)), vec))
    ranked.sort(key=lambda r: _tiebreak_key(state.layout, r.move, r.score))
    return ranked


def choose_move(state: GameState, difficulty: int = 3, weights: Optional[Sequence[float]] = None,
                think_ms: Optional[int] = None) -> Move:
    ranked = rank_moves(state, difficulty, weights, think_ms)
    if not ranked:
        raise IllegalMove("No legal move: draw or pass")
    return ranked[0].move


# =============================================================================
# Search player: heuristic score + seeded determinized rollouts
# =============================================================================

def _move_seed(base_seed: int, move: Move, salt: int = 0) -> int:
    node = (move.end.node + 1) if move.end is not None else 0
    pip = move.end.pip if move.end is not None else 0
    a = ((move.tile[0] * 32 + move.tile[1]) * 1024 + node) * 32 + pip
    x = (int(base_seed) ^ (a * 2654435761) ^ (int(salt) * 97531)) & 0xFFFFFFFF
    return int(x if x != 0 else 1)


def weighted_sample_without_replacement(items: List[Tile], weights: List[float], sample_size: int, rng: random.Random) -> List[Tile]:
    if sample_size <= 0 or not items:
        return []
    if sample_size >= len(items):
        result = list(items)
        rng.shuffle(result)
        return result

    remaining_items = list(items)
    remaining_weights = list(weights)
    selected: List[Tile] = []

    for _ in range(sample_size):
        total_weight = float(sum(remaining_weights))
        r = rng.random() * total_weight
        acc = 0.0
        pick = len(remaining_items) - 1
        for idx, w in enumerate(remaining_weights):
            acc += float(w)
            if acc >= r:
                pick = idx
                break
        selected.append(remaining_items.pop(pick))
        remaining_weights.pop(pick)

    return selected


def determinize(kn: Knowledge, rng: random.Random) -> Tuple[Dict[int, List[Tile]], List[Tile]]:
    pool = list(kn.unseen)
    hands: Dict[int, List[Tile]] = {}
    for p in sorted(kn.opp_counts):
        weights = [kn.tile_weight(t) for t in pool]
        hands[p] = weighted_sample_without_replacement(pool, weights, kn.opp_counts[p], rng)
        taken = set(hands[p])
        pool = [t for t in pool if t not in taken]
    rng.shuffle(pool)
    return hands, pool


def _greedy_pick(lay: Layout, moves: List[Move]) -> Move:
    rules = lay.rules
    scoring = bool(rules.score_multiple or rules.headers)
    best = moves[0]
    best_key = (-1, -1)
    for m in moves:
        pts = lay.clone().apply(m) if scoring else 0
        key = (int(pts), tile_pip_count(m.tile))
        if key > best_key:
            best, best_key = m, key
    return best


def rollout(lay: Layout, hands: List[List[Tile]], bone: List[Tile], turn: int, me: int, draw_allowed: bool) -> float:
    n = len(hands)
    passes = 0
    while True:
        hand = hands[turn]
        moves = legal_moves(lay, hand)
        if moves:
            m = _greedy_pick(lay, moves)
            lay.apply(m)
            hand.remove(m.tile)
            passes = 0
            if not hand:
                break
        elif draw_allowed and bone:
            hand.append(bone.pop())
            continue
        else:
            passes += 1
            if passes >= n:
                break
        turn = (turn + 1) % n
    return pip_differential(hands, me)


def pip_differential(hands: Sequence[Sequence[Tile]], me: int) -> float:
    pips = [sum(tile_pip_count(t) for t in h) for h in hands]
    others = [p for i, p in enumerate(pips) if i != me]
    return float(sum(others)) / float(max(1, len(others))) - float(pips[me])


def search_move(
    state: GameState,
    difficulty: int = 5,
    think_ms: Optional[int] = None,
    rollouts: int = SEARCH_ROLLOUTS,
    seed: Optional[int] = None,
    weights: Optional[Sequence[float]] = None,
) -> Tuple[Move, Dict[str, Any]]:
    """
    Rank by heuristics, then refine with rollouts in complete rounds (one per
    move per round) until `rollouts` rounds are done or time runs out; the
    best move over the completed rounds is returned. Without think_ms the
    budget is THINK_MS.
    """
    if think_ms is None:
        think_ms = THINK_MS
    t0 = time.perf_counter()
    deadline = t0 + float(think_ms) / 1000.0
    ranked = rank_moves(state, difficulty, weights, think_ms)
    if not ranked:
        raise IllegalMove("No legal move: draw or pass")

    base_seed = int(seed) if seed is not None else (int(state.seed) ^ (state.ply() * 7919))
    kn = Knowledge.from_state(state)
    me = kn.me

    totals = [0.0] * len(ranked)
    rounds_done = 0
    timed_out = False
    if len(ranked) > 1:
        for r in range(int(rollouts)):
            round_vals: List[float] = []
            for r_item in ranked:
                if time.perf_counter() > deadline:
                    timed_out = True
                    break
                rng = random.Random(_move_seed(base_seed, r_item.move, r))
                opp_hands, bone = determinize(kn, rng)
                lay = state.layout.clone()
                lay.apply(r_item.move)
                hands: List[List[Tile]] = []
                for i in range(state.num_players):
                    if i == me:
                        hands.append([t for t in state.hand(me) if t != r_item.move.tile])
                    else:
                        hands.append(list(opp_hands[i]))
                if not hands[me]:
                    round_vals.append(pip_differential(hands, me))
                else:
                    round_vals.append(rollout(lay, hands, bone, (me + 1) % state.num_players, me, kn.draw_allowed))
            if timed_out:
                break
            for i, v in enumerate(round_vals):
                totals[i] += v
            rounds_done += 1

    final = []
    for i, r_item in enumerate(ranked):
        bonus = 0.0
        if rounds_done:
            bonus = SEARCH_WEIGHT * math.tanh((totals[i] / rounds_done) / ROLLOUT_SCALE)
        final.append((r_item.move, r_item.score + bonus))
    final.sort(key=lambda x: _tiebreak_key(state.layout, x[0], x[1]))

    meta = {
        "rounds": rounds_done,
        "timed_out": timed_out,
        "elapsed_ms": int((time.perf_counter() - t0) * 1000),
        "scores": [[move_str(m), round(s, 4)] for m, s in final],
    }
    if timed_out:
        logger.info("search stopped after %d rounds (think_ms=%d)", rounds_done, think_ms)
    return final[0][0], meta


# =============================================================================
# Players
# =============================================================================

PlayerKind = Literal["human", "heuristic", "search"]
AskFn = Callable[[Dict[str, Any], List[Move]], Move]


@dataclass(frozen=True)
class PlayerSpec:
    kind: PlayerKind = "heuristic"
    name: str = ""
    difficulty: int = 3
    # None: heuristic lookahead bounded by nodes only, search uses THINK_MS
    think_ms: Optional[int] = None
    rollouts: int = SEARCH_ROLLOUTS
    weights: Optional[Tuple[float, ...]] = None
    ask: Optional[AskFn] = None

    def __post_init__(self) -> None:
        if self.kind not in ("human", "heuristic", "search"):
            raise ValueError(f"Unknown player kind: {self.kind}")
        if self.kind == "human" and self.ask is None:
            raise ValueError("A human player needs an ask callback")
        if not (1 <= int(self.difficulty) <= MAX_DIFFICULTY):
            raise ValueError(f"difficulty must be within 1..{MAX_DIFFICULTY}")

    def label(self) -> str:
        return self.name or f"{self.kind}-{self.difficulty}"

    def decide(self, state: GameState, seed: Optional[int] = None) -> Move:
        moves = state.legal_moves()
        if not moves:
            raise IllegalMove("No legal move: draw or pass")

        if self.kind == "human":
            mv = self.ask(state.to_dict(viewer=state.current), moves)
            if mv not in moves:
                raise IllegalMove(f"Not a legal move: {mv!r}")
            return mv

        if self.kind == "heuristic":
            return choose_move(state, self.difficulty, self.weights, self.think_ms)

        mv, _meta = search_move(
            state,
            difficulty=self.difficulty,
            think_ms=self.think_ms,
            rollouts=self.rollouts,
            seed=seed,
            weights=self.weights,
        )
        return mv


# =============================================================================
# Suggestions (API)
# =============================================================================

def suggest_moves(
    state: GameState,
    top_n: int = 5,
    difficulty: int = 3,
    think_ms: Optional[int] = None,
) -> Dict[str, Any]:
    if state.phase != "turn":
        return {
            "meta": {"mode": f"phase_{state.phase}", "difficulty": int(difficulty)},
            "suggestions": [],
        }

    t0 = time.perf_counter()
    ranked = rank_moves(state, difficulty, None, think_ms)
    w = weights_for(difficulty)
    suggestions = []
    for r in ranked[:int(top_n)]:
        suggestions.append({
            "move": move_str(r.move),
            "tile": tile_str(r.move.tile),
            "end": [r.move.end.node, r.move.end.pip] if r.move.end is not None else None,
            "score": round(r.score, 4),
            "heuristics": {
                HEURISTICS[i]: round(float(r.vector[i]), 4)
                for i in range(len(HEURISTICS)) if w[i] != 0.0
            },
        })

    meta = {
        "mode": "heuristic",
        "difficulty": int(difficulty),
        "candidates": len(ranked),
        "elapsed_ms": int((time.perf_counter() - t0) * 1000),
    }
    return {
        "meta": meta,
        "knowledge": Knowledge.from_state(state).to_dict(),
        "suggestions": suggestions,
    }
