import itertools
import random

import pytest

from engine import (
    Boneyard, ExhaustedSet, GameState, Hand, IllegalMove, Layout, Move, OpenEnd,
    all_tiles, best_opening_tile, default_starting_hand_size, legal_moves, move_str,
    norm_tile, parse_tile, round_to_nearest, rules_for, set_size, tile_has,
)
from generator import generate
from notation import parse


# ---------------------------------------------------------------------------
# Tiles and sets
# ---------------------------------------------------------------------------

def test_set_sizes():
    assert len(all_tiles(6)) == 28
    assert len(all_tiles(9)) == 55
    assert set_size(6) == 28
    assert set_size(9) == 55
    assert set_size(12) == 91
    assert len(set(all_tiles(9))) == 55


def test_all_tiles_range_checked():
    with pytest.raises(ValueError):
        all_tiles(-1)
    with pytest.raises(ValueError):
        all_tiles(22)


def test_norm_and_parse_tile():
    assert norm_tile(3, 4) == (4, 3)
    assert norm_tile(4, 3) == (4, 3)
    assert parse_tile("3|4") == (4, 3)
    assert parse_tile("3-4") == (4, 3)
    assert parse_tile("43") == (4, 3)
    with pytest.raises(ValueError):
        norm_tile(7, 1, max_pip=6)
    with pytest.raises(ValueError):
        parse_tile("x|1")


def test_best_opening_tile_prefers_highest_double():
    assert best_opening_tile([(6, 5), (2, 2), (4, 4)]) == (4, 4)
    assert best_opening_tile([(6, 5), (6, 4), (3, 1)]) == (6, 5)
    assert best_opening_tile([]) is None


def test_round_to_nearest():
    assert round_to_nearest(9, 5) == 10
    assert round_to_nearest(12, 5) == 10
    assert round_to_nearest(11, 1) == 11


def test_rules_and_hand_sizes():
    assert rules_for("Traditional").name == "traditional"
    assert not rules_for("blind").draw_allowed
    assert not rules_for("bergen").branching
    assert rules_for("allsevens").score_multiple == 7
    with pytest.raises(ValueError):
        rules_for("mexican_train")
    assert default_starting_hand_size(2) == 7
    assert default_starting_hand_size(4) == 6
    assert default_starting_hand_size(2, "blind") == 8
    assert default_starting_hand_size(3, "bergen") == 6


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

def test_spinner_opens_perpendicular_faces_after_two_arms():
    lay = Layout("traditional", 6)
    lay.play((6, 6))
    assert lay.open_end_values() == [6, 6]
    lay.play((6, 3), OpenEnd(0, 6))
    assert lay.open_end_values() == [6, 3]
    lay.play((6, 1), OpenEnd(0, 6))
    assert sorted(lay.open_end_values()) == [1, 3, 6, 6]
    assert lay.count_open(6) == 2
    lay.check_invariants()


def test_linear_variation_caps_double_root_at_two_arms():
    lay = Layout("blind", 6)
    lay.play((4, 4))
    lay.play((4, 1), OpenEnd(0, 4))
    lay.play((4, 2), OpenEnd(0, 4))
    assert sorted(lay.open_end_values()) == [1, 2]
    with pytest.raises(IllegalMove):
        lay.play((4, 3), OpenEnd(0, 4))


def test_non_double_root_exposes_both_pips():
    lay = Layout("traditional", 6)
    lay.play((6, 3))
    assert sorted(lay.open_end_values()) == [3, 6]
    assert lay.ends_sum() == 9


def test_illegal_plays_rejected():
    lay = Layout("traditional", 6)
    with pytest.raises(IllegalMove):
        lay.play((6, 6), OpenEnd(0, 6))
    lay.play((6, 6))
    with pytest.raises(IllegalMove):
        lay.play((5, 4), OpenEnd(0, 6))
    with pytest.raises(IllegalMove):
        lay.play((6, 6), OpenEnd(0, 6))
    with pytest.raises(IllegalMove):
        lay.play((6, 1), OpenEnd(0, 1))
    with pytest.raises(IllegalMove):
        lay.play((6, 1))
    assert len(lay) == 1


def test_allfives_scoring_sequence():
    lay = Layout("allfives", 6)
    assert lay.play((5, 5)) == 10
    assert lay.play((5, 0), OpenEnd(0, 5)) == 10
    assert lay.play((5, 1), OpenEnd(0, 5)) == 0
    assert lay.ends_sum() == 1
    assert lay.play((5, 4), OpenEnd(0, 5)) == 5


def test_double_on_chain_end_counts_twice():
    lay = Layout("traditional", 6)
    lay.play((3, 1))
    assert lay.ends_sum() == 4
    lay.play((3, 3), OpenEnd(0, 3))
    assert lay.ends_sum() == 7
    lay.play((3, 4), OpenEnd(1, 3))
    assert lay.ends_sum() == 5


def test_chain_double_opens_perpendicular_faces():
    lay = Layout("traditional", 6)
    lay.play((3, 1))
    lay.play((3, 3), OpenEnd(0, 3))
    assert lay.open_end_values() == [1, 3]
    lay.play((3, 4), OpenEnd(1, 3))
    assert lay.open_end_values() == [1, 3, 3, 4]
    assert legal_moves(lay, [(3, 2)]) == [Move((3, 2), OpenEnd(1, 3))]
    lay.play((3, 2), OpenEnd(1, 3))
    lay.play((3, 0), OpenEnd(1, 3))
    assert lay.count_open(3) == 0
    with pytest.raises(IllegalMove):
        lay.play((3, 5), OpenEnd(1, 3))
    lay.check_invariants()


def test_linear_chain_double_holds_one_child():
    lay = Layout("bergen", 6)
    lay.play((3, 1))
    lay.play((3, 3), OpenEnd(0, 3))
    lay.play((3, 4), OpenEnd(1, 3))
    assert lay.open_end_values() == [1, 4]
    with pytest.raises(IllegalMove):
        lay.play((3, 2), OpenEnd(1, 3))


def test_bergen_header_points():
    lay = Layout("bergen", 6)
    lay.play((4, 2))
    assert lay.play((2, 1), OpenEnd(0, 2)) == 0
    assert lay.play((4, 1), OpenEnd(0, 4)) == 2
    assert lay.play((1, 1), OpenEnd(2, 1)) == 3


def test_clone_is_independent():
    lay = parse("3|3=(3|4-4|5,3|6)", max_pip=6)
    copy = lay.clone()
    copy.play((5, 5), OpenEnd(2, 5))
    assert len(lay) == 4
    assert len(copy) == 5
    assert lay != copy


# ---------------------------------------------------------------------------
# Hand / Boneyard
# ---------------------------------------------------------------------------

def test_hand_add_remove():
    h = Hand([(6, 5)])
    h.add((3, 3))
    assert (3, 3) in h
    assert h.pip_count() == 17
    with pytest.raises(ValueError):
        h.add((3, 3))
    with pytest.raises(IllegalMove):
        h.remove((1, 0))
    h.remove((6, 5))
    assert list(h) == [(3, 3)]


def test_boneyard_remaining_and_draw():
    lay = parse("6|6=(6|5)", max_pip=6)
    bone = Boneyard.remaining(6, lay, [[(0, 0), (1, 0)]])
    assert bone.count == 24
    assert (6, 6) not in bone.tiles()
    drawn = [bone.draw() for _ in range(24)]
    assert len(set(drawn)) == 24
    assert bone.draw() is None


def test_full_boneyard_is_seeded():
    a = Boneyard.full(6, random.Random(3)).tiles()
    b = Boneyard.full(6, random.Random(3)).tiles()
    assert a == b
    assert sorted(a) == sorted(all_tiles(6))


# ---------------------------------------------------------------------------
# Legal moves
# ---------------------------------------------------------------------------

def test_opening_moves_depend_on_variation():
    hand = [(5, 4), (3, 3), (2, 2)]
    assert legal_moves(Layout("traditional", 6), hand) == [Move((3, 3), None)]
    assert len(legal_moves(Layout("allfives", 6), hand)) == 3
    assert legal_moves(Layout("traditional", 6), []) == []


def test_legal_moves_match_brute_force():
    rng = random.Random(11)
    for seed, variation in itertools.product(range(8), ("traditional", "bergen", "allfives")):
        lay = generate(max_pip=6, max_tiles=rng.randint(1, 12), variation=variation, seed=seed)
        pool = [t for t in all_tiles(6) if t not in lay.played_set]
        hand = rng.sample(pool, min(7, len(pool)))

        moves = legal_moves(lay, hand)
        expected = {(t, e) for e in lay.open_ends() for t in hand if tile_has(t, e.pip)}
        assert {(m.tile, m.end) for m in moves} == expected
        assert len(moves) == len(set(moves))

        ends = lay.open_ends()
        idx = [ends.index(m.end) for m in moves]
        assert idx == sorted(idx)

        for m in moves:
            trial = lay.clone()
            trial.apply(m)
            trial.check_invariants()


def test_spinner_faces_do_not_duplicate_moves():
    lay = parse("6|6", max_pip=6)
    moves = legal_moves(lay, [(6, 2)])
    assert [move_str(m) for m in moves] == ["6|2@0:6"]


def test_second_tile_on_a_chain_double():
    lay = parse("6|6=(6|4-4|4=(4|1))", max_pip=6)
    moves = legal_moves(lay, [(4, 2)])
    assert [move_str(m) for m in moves] == ["4|2@2:4"]
    lay.apply(moves[0])
    assert lay.open_end_values() == [6, 4, 1, 2]
    assert lay.ends_sum() == 15


# ---------------------------------------------------------------------------
# Game loop
# ---------------------------------------------------------------------------

def test_new_game_deal():
    st = GameState.new(num_players=2, variation="traditional", max_pip=6, seed=5)
    assert st.hand_counts() == [7, 7]
    assert st.boneyard.count == 14
    assert st.tile_conservation_total() == 28
    assert st.phase == "turn"
    best = best_opening_tile(t for h in st.hands for t in h)
    assert best in st.hand()
    assert st.legal_moves() == [Move(best, None)]
    assert st.events[0].type == "deal"


def test_deal_is_deterministic_for_seed():
    a = GameState.new(num_players=3, variation="allfives", seed=77)
    b = GameState.new(num_players=3, variation="allfives", seed=77)
    assert [h.tiles for h in a.hands] == [h.tiles for h in b.hands]
    assert a.boneyard.tiles() == b.boneyard.tiles()


def test_exhausted_set_on_deal():
    with pytest.raises(ExhaustedSet):
        GameState.new(num_players=4, max_pip=2, seed=1)
    with pytest.raises(ValueError):
        GameState.new(num_players=1)


def test_actions_out_of_phase():
    st = GameState.new(seed=5)
    with pytest.raises(IllegalMove):
        st.draw()
    with pytest.raises(IllegalMove):
        st.pass_turn()
    with pytest.raises(IllegalMove):
        st.play(Move((0, 0), OpenEnd(0, 0)))


def test_draw_until_playable():
    lay = parse("0|0", max_pip=6)
    st = GameState.from_position(lay, [[(6, 5)], [(4, 3)]], boneyard=[(2, 1), (1, 0)])
    assert st.phase == "draw"
    ev = st.draw()
    assert ev.type == "draw"
    assert (1, 0) in st.hand(0)
    assert st.phase == "turn"
    assert st.legal_moves() == [Move((1, 0), OpenEnd(0, 0))]


def test_blind_passes_instead_of_drawing():
    lay = parse("0|0", variation="blind", max_pip=6)
    st = GameState.from_position(lay, [[(6, 5)], [(4, 0)]], boneyard=[(2, 1)])
    assert st.phase == "pass"
    st.pass_turn()
    assert st.current == 1
    assert st.phase == "turn"


def test_block_lowest_pips_wins():
    lay = parse("0|0", max_pip=6)
    st = GameState.from_position(lay, [[(6, 5)], [(4, 3)]])
    assert st.phase == "pass"
    st.pass_turn()
    assert st.phase == "pass"
    st.pass_turn()
    assert st.phase == "game_over"
    assert st.end_reason == "block"
    assert st.winner == 1
    assert st.scores == [0, 11]
    assert st.events[-1].type == "game_over"
    with pytest.raises(IllegalMove):
        st.pass_turn()


def test_block_tie_has_no_winner():
    lay = parse("0|0", max_pip=6)
    st = GameState.from_position(lay, [[(6, 1)], [(4, 3)]])
    st.pass_turn()
    st.pass_turn()
    assert st.end_reason == "block_tie"
    assert st.winner is None
    assert st.scores == [0, 0]


def test_going_out_awards_rounded_pips():
    lay = parse("6|6", variation="allfives", max_pip=6)
    st = GameState.from_position(lay, [[(6, 1)], [(4, 3), (2, 0)]])
    st.play(Move((6, 1), OpenEnd(0, 6)))
    assert st.phase == "game_over"
    assert st.end_reason == "out"
    assert st.winner == 0
    assert st.scores == [10, 0]


def test_from_position_rejects_duplicate_tiles():
    lay = parse("6|6", max_pip=6)
    with pytest.raises(ValueError):
        GameState.from_position(lay, [[(6, 6)], [(1, 0)]])


def test_state_to_dict_hides_other_hands():
    st = GameState.new(seed=9)
    d = st.to_dict(viewer=0)
    assert d["hands"][0] is not None
    assert d["hands"][1] is None
    assert d["meta"]["tile_total"] == 28
    assert d["legal_moves"] == [move_str(m) for m in st.legal_moves()]
