# FILE: app.py | version: 2026-10-18.v1
# JSON API: layout parse/generate, legal moves, suggestions, in-memory game sessions.

from __future__ import annotations

from flask import Flask, request, jsonify
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging
import os
import threading
import time
from collections import OrderedDict

from engine import (
    DEFAULT_MAX_PIP, RULES, GameState, MalformedLayout, Move, OpenEnd,
    legal_moves, move_str, parse_tile, rules_for, tile_str,
)
from notation import layout_to_dict, parse, serialize
from generator import generate
import ai

logger = logging.getLogger(__name__)

app = Flask(__name__)

MAX_SESSIONS = int(os.environ.get("DOMINO_MAX_SESSIONS", "200"))
SESSION_TTL = int(os.environ.get("DOMINO_SESSION_TTL", str(6 * 3600)))


# =============================================================================
# Sessions (LRU + TTL) + per-session locks
# =============================================================================

@dataclass
class Session:
    state: GameState
    # None => seat is driven through /api/play, /api/draw, /api/pass
    players: List[Optional[ai.PlayerSpec]] = field(default_factory=list)


class SessionStore:
    """Thread-safe session store with TTL+LRU and per-session locks."""

    def __init__(self, max_size: int = 200, ttl_seconds: int = 6 * 3600):
        self.max_size = int(max_size)
        self.ttl_seconds = int(ttl_seconds)
        self._lock = threading.Lock()
        self._data: "OrderedDict[str, Session]" = OrderedDict()
        self._ts: Dict[str, float] = {}
        self._locks: Dict[str, threading.Lock] = {}

    def _get_or_create_session_lock(self, key: str) -> threading.Lock:
        lk = self._locks.get(key)
        if lk is None:
            lk = threading.Lock()
            self._locks[key] = lk
        return lk

    def _drop(self, key: str) -> None:
        self._data.pop(key, None)
        self._ts.pop(key, None)
        self._locks.pop(key, None)

    def lock_for(self, key: str) -> threading.Lock:
        with self._lock:
            return self._get_or_create_session_lock(key)

    def get(self, key: str) -> Optional[Session]:
        now = time.time()
        with self._lock:
            s = self._data.get(key)
            if s is None:
                return None
            if now - self._ts.get(key, 0.0) > self.ttl_seconds:
                self._drop(key)
                return None
            self._data.move_to_end(key)
            self._ts[key] = now
            return s

    def set(self, key: str, value: Session) -> None:
        now = time.time()
        with self._lock:
            if key not in self._data:
                while len(self._data) >= self.max_size:
                    oldest_key, _ = self._data.popitem(last=False)
                    self._ts.pop(oldest_key, None)
                    self._locks.pop(oldest_key, None)
            self._data[key] = value
            self._data.move_to_end(key)
            self._ts[key] = now
            self._get_or_create_session_lock(key)

    def cleanup(self) -> int:
        now = time.time()
        removed = 0
        with self._lock:
            for k in list(self._data.keys()):
                if now - self._ts.get(k, 0.0) > self.ttl_seconds:
                    self._drop(k)
                    removed += 1
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


SESSIONS = SessionStore(max_size=MAX_SESSIONS, ttl_seconds=SESSION_TTL)
SESSION_CLEANUP_INTERVAL = 900
_LAST_SESSION_CLEANUP = time.time()


def cleanup_old_sessions() -> None:
    global _LAST_SESSION_CLEANUP
    now = time.time()
    if now - _LAST_SESSION_CLEANUP < SESSION_CLEANUP_INTERVAL:
        return
    removed = SESSIONS.cleanup()
    if removed:
        logger.info("expired %d sessions", removed)
    _LAST_SESSION_CLEANUP = now


# =============================================================================
# Helpers
# =============================================================================

def ok(payload: Dict[str, Any] | None = None):
    return jsonify({"ok": True, **(payload or {})})


def err(msg: str, code: int = 400, **extra: Any):
    return jsonify({"ok": False, "error": msg, **extra}), code


def body() -> Dict[str, Any]:
    return (request.get_json(silent=True) or {}) if request.is_json else {}


def sid() -> str:
    return body().get("session_id") or request.args.get("session_id") or "default"


def _set_id(data: Dict[str, Any]) -> int:
    return int(data.get("set_id", DEFAULT_MAX_PIP))


def _parse_hand(x: Any, max_pip: int) -> List[tuple]:
    if not isinstance(x, list):
        raise ValueError("hand must be a list of tiles, e.g. ['3|4', '6|6']")
    tiles = [parse_tile(str(s), max_pip) for s in x]
    if len(set(tiles)) != len(tiles):
        raise ValueError("hand contains duplicate tiles")
    return tiles


def _parse_move(data: Dict[str, Any], max_pip: int) -> Move:
    tile = parse_tile(str(data.get("tile", "")), max_pip)
    end = data.get("end")
    if end is None:
        return Move(tile, None)
    if not (isinstance(end, list) and len(end) == 2):
        raise ValueError("end must be [node, pip] or null")
    return Move(tile, OpenEnd(int(end[0]), int(end[1])))


def _malformed(e: MalformedLayout):
    return err(str(e), position=e.position, fragment=e.fragment)


def _player_from_json(d: Any) -> Optional[ai.PlayerSpec]:
    if not isinstance(d, dict):
        raise ValueError("each player must be an object with 'kind'")
    kind = d.get("kind", "heuristic")
    if kind == "human":
        return None
    return ai.PlayerSpec(
        kind=kind,
        name=str(d.get("name", "")),
        difficulty=int(d.get("difficulty", 3)),
        think_ms=int(d["think_ms"]) if d.get("think_ms") is not None else None,
    )


def _session_payload(key: str, s: Session) -> Dict[str, Any]:
    return {
        "session_id": key,
        "players": [p.label() if p is not None else "human" for p in s.players],
        "state": s.state.to_dict(),
        "text": serialize(s.state.layout),
    }


# =============================================================================
# Routes: layouts
# =============================================================================

@app.get("/api/variations")
def api_variations():
    return ok({"variations": {k: r.__dict__ for k, r in RULES.items()}})


@app.post("/api/layout/parse")
def api_layout_parse():
    data = body()
    try:
        lay = parse(str(data.get("text", "")), variation=data.get("variation", "traditional"),
                    max_pip=_set_id(data))
    except MalformedLayout as e:
        return _malformed(e)
    except ValueError as e:
        return err(str(e))
    return ok({"text": serialize(lay), "layout": layout_to_dict(lay)})


@app.post("/api/layout/generate")
def api_layout_generate():
    data = body()
    try:
        max_tiles = data.get("max_tiles")
        seed = data.get("seed")
        lay = generate(
            max_pip=_set_id(data),
            max_tiles=int(max_tiles) if max_tiles is not None else None,
            variation=data.get("variation", "traditional"),
            seed=int(seed) if seed is not None else None,
            prefer_doubles=bool(data.get("prefer_doubles", False)),
        )
    except ValueError as e:
        return err(str(e))
    return ok({"text": serialize(lay), "layout": layout_to_dict(lay)})


@app.post("/api/legal_moves")
def api_legal_moves():
    data = body()
    try:
        max_pip = _set_id(data)
        lay = parse(str(data.get("text", "")), variation=data.get("variation", "traditional"), max_pip=max_pip)
        hand = _parse_hand(data.get("hand", []), max_pip)
    except MalformedLayout as e:
        return _malformed(e)
    except ValueError as e:
        return err(str(e))

    moves = legal_moves(lay, hand)
    return ok({
        "moves": [
            {"move": move_str(m), "tile": tile_str(m.tile),
             "end": [m.end.node, m.end.pip] if m.end is not None else None,
             "exposed": m.exposed}
            for m in moves
        ],
        "open_ends": [[e.node, e.pip] for e in lay.open_ends()],
    })


# =============================================================================
# Routes: game sessions
# =============================================================================

@app.post("/api/new_game")
def api_new_game():
    data = body()
    session_id = sid()
    try:
        raw_players = data.get("players") or [{"kind": "human"}, {"kind": "heuristic", "difficulty": 3}]
        if not isinstance(raw_players, list):
            return err("players must be a list")
        players = [_player_from_json(p) for p in raw_players]
        variation = rules_for(data.get("variation", "traditional")).name
        seed = data.get("seed")
        st = GameState.new(
            num_players=len(players),
            variation=variation,
            max_pip=_set_id(data),
            seed=int(seed) if seed is not None else None,
        )
    except ValueError as e:
        return err(str(e))

    s = Session(state=st, players=players)
    SESSIONS.set(session_id, s)
    return ok(_session_payload(session_id, s))


@app.get("/api/state")
def api_state():
    session_id = request.args.get("session_id", "default")
    s = SESSIONS.get(session_id)
    if s is None:
        return err("no active session", 404)
    with SESSIONS.lock_for(session_id):
        return ok(_session_payload(session_id, s))


@app.post("/api/play")
def api_play():
    data = body()
    session_id = sid()
    s = SESSIONS.get(session_id)
    if s is None:
        return err("no active session", 404)

    with SESSIONS.lock_for(session_id):
        try:
            ev = s.state.play(_parse_move(data, s.state.max_pip))
        except ValueError as e:
            return err(str(e))
        return ok({"event": ev.to_dict(), **_session_payload(session_id, s)})


@app.post("/api/draw")
def api_draw():
    session_id = sid()
    s = SESSIONS.get(session_id)
    if s is None:
        return err("no active session", 404)

    with SESSIONS.lock_for(session_id):
        try:
            ev = s.state.draw()
        except ValueError as e:
            return err(str(e))
        return ok({"event": ev.to_dict(), **_session_payload(session_id, s)})


@app.post("/api/pass")
def api_pass():
    session_id = sid()
    s = SESSIONS.get(session_id)
    if s is None:
        return err("no active session", 404)

    with SESSIONS.lock_for(session_id):
        try:
            ev = s.state.pass_turn()
        except ValueError as e:
            return err(str(e))
        return ok({"event": ev.to_dict(), **_session_payload(session_id, s)})


@app.post("/api/ai_step")
def api_ai_step():
    """Advance one action for the current seat if it is AI-controlled."""
    session_id = sid()
    s = SESSIONS.get(session_id)
    if s is None:
        return err("no active session", 404)

    with SESSIONS.lock_for(session_id):
        st = s.state
        if st.phase == "game_over":
            return err("game is over")
        player = s.players[st.current]
        if player is None:
            return err(f"seat {st.current} is human-controlled")
        try:
            if st.phase == "turn":
                ev = st.play(player.decide(st))
            elif st.phase == "draw":
                ev = st.draw()
            else:
                ev = st.pass_turn()
        except ValueError as e:
            return err(str(e))
        return ok({"event": ev.to_dict(), **_session_payload(session_id, s)})


@app.post("/api/suggest")
def api_suggest():
    data = body()
    session_id = sid()
    s = SESSIONS.get(session_id)
    if s is None:
        return err("no active session", 404)

    try:
        top_n = max(1, min(int(data.get("top_n", 5)), 50))
        difficulty = max(1, min(int(data.get("difficulty", 3)), ai.MAX_DIFFICULTY))
        think_ms = data.get("think_ms")
        if think_ms is not None:
            think_ms = max(50, min(int(think_ms), 15000))
    except (TypeError, ValueError) as e:
        return err(str(e))

    with SESSIONS.lock_for(session_id):
        res = ai.suggest_moves(s.state, top_n=top_n, difficulty=difficulty, think_ms=think_ms)
    return ok({"session_id": session_id, **res})


@app.before_request
def before_request():
    cleanup_old_sessions()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.run(host=os.environ.get("DOMINO_HOST", "127.0.0.1"), port=int(os.environ.get("DOMINO_PORT", "5000")), debug=False)
