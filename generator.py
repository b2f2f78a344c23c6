# FILE: generator.py | version: 2026-10-18.v1
# Random rule-valid layouts (seeded).

from __future__ import annotations

import logging
import random
import secrets
from typing import List, Optional

from engine import (
    DEFAULT_MAX_PIP, ExhaustedSet, Layout, OpenEnd, Tile,
    all_tiles, rules_for, set_size, tile_has, tile_is_double,
)

logger = logging.getLogger(__name__)


def generate(
    max_pip: int = DEFAULT_MAX_PIP,
    max_tiles: Optional[int] = None,
    variation: str = "traditional",
    seed: Optional[int] = None,
    prefer_doubles: bool = False,
) -> Layout:
    """
    Grow a layout one tile at a time: pick a random open end that some unused
    tile can extend, then a random unused tile matching it.

    Traditional starts from the highest double of the set, other variations
    from a random tile. Stops at max_tiles, or earlier when no open end can be
    extended; in that case the shorter layout is returned as-is.
    """
    rules = rules_for(variation)
    total = set_size(max_pip)
    if max_tiles is None:
        max_tiles = total
    max_tiles = int(max_tiles)
    if max_tiles < 0:
        raise ValueError("max_tiles must be >= 0")
    if max_tiles > total:
        raise ExhaustedSet(
            f"The maximum size of the layout ({max_tiles}) cannot be greater "
            f"than the number of tiles in the set ({total})"
        )

    rng = random.Random(int(seed) if seed is not None else secrets.randbits(31))
    lay = Layout(variation=rules.name, max_pip=int(max_pip))
    if max_tiles == 0:
        return lay

    remaining: List[Tile] = all_tiles(max_pip)
    if rules.opening == "highest_double":
        first: Tile = (int(max_pip), int(max_pip))
    else:
        first = rng.choice(remaining)
    lay.play(first)
    remaining.remove(first)

    while len(lay) < max_tiles:
        live = [e for e in lay.open_ends() if any(tile_has(t, e.pip) for t in remaining)]
        if not live:
            logger.info(
                "generation stuck at %d/%d tiles (variation=%s seed=%s)",
                len(lay), max_tiles, rules.name, seed,
            )
            break

        end, tile = _pick(live, remaining, rng, prefer_doubles)
        lay.play(tile, end)
        remaining.remove(tile)

    return lay


def _pick(live: List[OpenEnd], remaining: List[Tile], rng: random.Random, prefer_doubles: bool):
    if prefer_doubles:
        dbl_ends = [e for e in live if any(tile_is_double(t) and tile_has(t, e.pip) for t in remaining)]
        if dbl_ends:
            end = rng.choice(dbl_ends)
            return end, (end.pip, end.pip)

    end = rng.choice(live)
    matching = [t for t in remaining if tile_has(t, end.pip)]
    return end, rng.choice(matching)
