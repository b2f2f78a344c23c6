# FILE: evaluate.py | version: 2026-10-18.v1
# Headless game runner + self-play evaluation (player A vs player B, seats alternate).

from __future__ import annotations

import argparse
import json
import logging
import multiprocessing as mp
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Sequence

from engine import VARIATIONS, GameState, set_size
from ai import MAX_DIFFICULTY, SEARCH_ROLLOUTS, PlayerSpec

logger = logging.getLogger(__name__)


def check_state(st: GameState) -> None:
    st.layout.check_invariants()
    total = st.tile_conservation_total()
    if total != set_size(st.max_pip):
        raise AssertionError(f"tile conservation broken: {total} != {set_size(st.max_pip)}")
    seen = set(st.layout.played_set) | set(st.boneyard.tiles())
    for h in st.hands:
        for t in h:
            if t in seen:
                raise AssertionError(f"tile {t} appears twice")
            seen.add(t)


def play_game(
    players: Sequence[PlayerSpec],
    variation: str = "traditional",
    max_pip: int = 6,
    seed: Optional[int] = None,
    strict_asserts: bool = False,
    assert_every: int = 1,
    max_plies: int = 2000,
) -> GameState:
    """Run one game to GameOver; draws and passes are taken automatically."""
    st = GameState.new(num_players=len(players), variation=variation, max_pip=max_pip, seed=seed)
    plies = 0
    while st.phase != "game_over":
        plies += 1
        if plies > max_plies:
            raise RuntimeError(f"game did not finish within {max_plies} plies")

        if st.phase == "turn":
            mv = players[st.current].decide(st, seed=(st.seed * 1000003 + plies) & 0x7FFFFFFF)
            st.play(mv)
        elif st.phase == "draw":
            st.draw()
        else:
            st.pass_turn()

        if strict_asserts and (plies % max(1, int(assert_every)) == 0):
            check_state(st)
    return st


@dataclass
class EvalConfig:
    games: int = 200
    base_seed: int = 12345
    variation: str = "traditional"
    max_pip: int = 6

    a_kind: Literal["heuristic", "search"] = "heuristic"
    a_difficulty: int = 5
    b_kind: Literal["heuristic", "search"] = "heuristic"
    b_difficulty: int = 1

    think_ms: int = 200
    rollouts: int = SEARCH_ROLLOUTS

    strict_asserts: bool = True
    assert_every: int = 1

    def player_a(self) -> PlayerSpec:
        return self._player(self.a_kind, "A", self.a_difficulty)

    def player_b(self) -> PlayerSpec:
        return self._player(self.b_kind, "B", self.b_difficulty)

    def _player(self, kind: str, name: str, difficulty: int) -> PlayerSpec:
        # heuristic seats: node budget only
        think_ms = self.think_ms if kind == "search" else None
        return PlayerSpec(kind=kind, name=name, difficulty=difficulty,
                          think_ms=think_ms, rollouts=self.rollouts)


def run_eval(cfg: EvalConfig) -> Dict[str, Any]:
    t0 = time.perf_counter()
    a, b = cfg.player_a(), cfg.player_b()

    wins_a = wins_b = ties = 0
    score_a = score_b = 0
    plies_sum = 0
    reasons: Dict[str, int] = {}

    for g in range(int(cfg.games)):
        a_first = (g % 2 == 0)
        seats = [a, b] if a_first else [b, a]
        st = play_game(
            seats,
            variation=cfg.variation,
            max_pip=cfg.max_pip,
            seed=int(cfg.base_seed) + g,
            strict_asserts=cfg.strict_asserts,
            assert_every=cfg.assert_every,
        )
        ia, ib = (0, 1) if a_first else (1, 0)
        score_a += st.scores[ia]
        score_b += st.scores[ib]
        plies_sum += st.ply()
        reasons[str(st.end_reason)] = reasons.get(str(st.end_reason), 0) + 1

        if st.winner == ia:
            wins_a += 1
        elif st.winner == ib:
            wins_b += 1
        else:
            ties += 1

    n = max(1, int(cfg.games))
    return {
        "ok": True,
        "config": dict(cfg.__dict__),
        "results": {
            "games": int(cfg.games),
            "wins_a": wins_a,
            "wins_b": wins_b,
            "ties": ties,
            "win_rate_a": round(wins_a / float(n), 4),
            "avg_score_a": round(score_a / float(n), 3),
            "avg_score_b": round(score_b / float(n), 3),
            "avg_plies": round(plies_sum / float(n), 2),
            "end_reasons": reasons,
            "elapsed_sec": round(float(time.perf_counter() - t0), 3),
        },
    }


def _merge_reports(reps: List[Dict[str, Any]]) -> Dict[str, Any]:
    games = wins_a = wins_b = ties = 0
    score_a = score_b = plies = 0.0
    reasons: Dict[str, int] = {}
    base_cfg: Optional[Dict[str, Any]] = None

    for r in reps:
        if not r.get("ok", False):
            continue
        if base_cfg is None:
            base_cfg = dict(r.get("config", {}))
        res = r.get("results", {})
        n = int(res.get("games", 0))
        games += n
        wins_a += int(res.get("wins_a", 0))
        wins_b += int(res.get("wins_b", 0))
        ties += int(res.get("ties", 0))
        score_a += float(res.get("avg_score_a", 0.0)) * n
        score_b += float(res.get("avg_score_b", 0.0)) * n
        plies += float(res.get("avg_plies", 0.0)) * n
        for k, v in (res.get("end_reasons") or {}).items():
            reasons[k] = reasons.get(k, 0) + int(v)

    d = float(max(1, games))
    return {
        "ok": True,
        "config": base_cfg or {},
        "results": {
            "games": games,
            "wins_a": wins_a,
            "wins_b": wins_b,
            "ties": ties,
            "win_rate_a": round(wins_a / d, 4),
            "avg_score_a": round(score_a / d, 3),
            "avg_score_b": round(score_b / d, 3),
            "avg_plies": round(plies / d, 2),
            "end_reasons": reasons,
        },
    }


def run_eval_parallel(cfg: EvalConfig, jobs: int, progress_every: int) -> Dict[str, Any]:
    jobs = max(1, int(jobs))
    games = int(cfg.games)
    if jobs == 1 or games < 20:
        return run_eval(cfg)

    jobs = min(jobs, games)
    per = games // jobs
    rem = games % jobs

    chunks: List[EvalConfig] = []
    start = 0
    for j in range(jobs):
        n = per + (1 if j < rem else 0)
        c = EvalConfig(**{**cfg.__dict__})
        c.games = n
        c.base_seed = int(cfg.base_seed) + start
        chunks.append(c)
        start += n

    t0 = time.perf_counter()
    reps: List[Dict[str, Any]] = []
    with mp.get_context("spawn").Pool(processes=jobs) as pool:
        done = 0
        for rep in pool.imap_unordered(run_eval, chunks, chunksize=1):
            reps.append(rep)
            done += int((rep.get("results") or {}).get("games", 0))
            if progress_every > 0:
                dt = time.perf_counter() - t0
                print(f"[eval] progress games_done={done}/{games} gps={done / max(1e-9, dt):.2f}", flush=True)

    merged = _merge_reports(reps)
    merged["config"]["games"] = games
    merged["config"]["base_seed"] = int(cfg.base_seed)
    merged["results"]["elapsed_sec"] = round(float(time.perf_counter() - t0), 3)
    return merged


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Self-play evaluation: player A vs player B.")
    ap.add_argument("--games", type=int, default=200)
    ap.add_argument("--seed", type=int, default=12345)
    ap.add_argument("--variation", choices=list(VARIATIONS), default="traditional")
    ap.add_argument("--set", dest="max_pip", type=int, default=6, help="highest pip of the set (6 = double-six)")
    ap.add_argument("--a", dest="a_kind", choices=["heuristic", "search"], default="heuristic")
    ap.add_argument("--a_level", type=int, choices=range(1, MAX_DIFFICULTY + 1), default=5)
    ap.add_argument("--b", dest="b_kind", choices=["heuristic", "search"], default="heuristic")
    ap.add_argument("--b_level", type=int, choices=range(1, MAX_DIFFICULTY + 1), default=1)
    ap.add_argument("--think_ms", type=int, default=200)
    ap.add_argument("--rollouts", type=int, default=SEARCH_ROLLOUTS)
    ap.add_argument("--no_asserts", action="store_true")
    ap.add_argument("--assert_every", type=int, default=10)
    ap.add_argument("--jobs", type=int, default=1, help="parallel workers (spawn).")
    ap.add_argument("--progress_every", type=int, default=1, help="print progress per finished chunk (0=off).")
    ap.add_argument("--log_level", default="WARNING")
    return ap


def main(argv: Optional[List[str]] = None) -> None:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = EvalConfig(
        games=int(args.games),
        base_seed=int(args.seed),
        variation=str(args.variation),
        max_pip=int(args.max_pip),
        a_kind=args.a_kind,
        a_difficulty=int(args.a_level),
        b_kind=args.b_kind,
        b_difficulty=int(args.b_level),
        think_ms=int(args.think_ms),
        rollouts=int(args.rollouts),
        strict_asserts=(not bool(args.no_asserts)),
        assert_every=int(args.assert_every),
    )

    rep = run_eval_parallel(cfg, jobs=int(args.jobs), progress_every=int(args.progress_every))
    print(json.dumps(rep, ensure_ascii=False), flush=True)
    print(json.dumps(rep, ensure_ascii=False, indent=2), flush=True)


if __name__ == "__main__":
    main()
