import json

import pytest

from engine import MalformedLayout, VARIATIONS
from generator import generate
from notation import from_json, layout_to_dict, parse, serialize, to_json


EXAMPLE = "3|3=(3|4-4|5,3|6)"


def test_parse_example_layout():
    lay = parse(EXAMPLE)
    assert len(lay) == 4
    assert lay.open_end_values() == [3, 3, 5, 6]
    assert lay.ends_sum() == 11
    assert lay.is_spinner(0)
    lay.check_invariants()


def test_example_under_linear_variation():
    lay = parse(EXAMPLE, variation="bergen")
    assert lay.open_end_values() == [5, 6]
    assert not lay.is_spinner(0)


def test_serialize_is_canonical():
    assert serialize(parse(EXAMPLE)) == EXAMPLE
    swapped = parse("3|3=(3|6,3|4-4|5)")
    assert swapped == parse(EXAMPLE)
    assert serialize(swapped) == EXAMPLE
    spaced = parse(" 3|3 = ( 3|6 , 3|4 - 4|5 ) ")
    assert serialize(spaced) == EXAMPLE


def test_non_double_roots():
    assert serialize(parse("6|3")) == "3|6"
    assert serialize(parse("6|3-3|1")) == "6|3-3|1"
    assert serialize(parse("3|6=(6|2,3|1)")) == "3|6=(3|1,6|2)"


def test_empty_text_is_empty_layout():
    lay = parse("")
    assert lay.is_empty()
    assert serialize(lay) == ""
    assert lay.open_ends() == []


@pytest.mark.parametrize("text,position,phrase", [
    ("3|3=(3|4-5|5)", 9, "Face mismatch"),
    ("3|4-4|3", 4, "Repeated tile"),
    ("3|3-3|4", 3, "Doubles must be followed by '='"),
    ("1|2-2|3=(3|4)", 7, "Only doubles can be followed by '='"),
    ("3|x", 2, "Expected pip digits"),
    ("3|3=(3|4", 8, "Expected ',' or ')'"),
    ("3|3=3|4", 4, "Expected '(' after '='"),
    ("3|3 3|4", 4, "Unexpected characters"),
    ("3-3", 0, "Expected '|'"),
])
def test_malformed_layouts(text, position, phrase):
    with pytest.raises(MalformedLayout) as exc:
        parse(text)
    assert exc.value.position == position
    assert phrase in exc.value.message


def test_pip_out_of_range_for_set():
    with pytest.raises(MalformedLayout) as exc:
        parse("3|9", max_pip=6)
    assert exc.value.position == 0
    assert exc.value.fragment == "3|9"
    assert len(parse("3|9", max_pip=9)) == 1


def test_attachment_capacity_enforced():
    with pytest.raises(MalformedLayout) as exc:
        parse("3|3=(3|1,3|2,3|4)", variation="blind")
    assert exc.value.position == 13
    assert "Cannot attach" in exc.value.message

    lay = parse("3|3=(3|1,3|2,3|4,3|5)")
    assert len(lay) == 5
    with pytest.raises(MalformedLayout):
        parse("3|3=(3|0,3|1,3|2,3|4,3|5)")


def test_chain_doubles_branch():
    lay = parse("1|2-2|2=(2|3-3|4,2|5)", max_pip=6)
    assert len(lay) == 5
    assert serialize(lay) == "1|2-2|2=(2|3-3|4,2|5)"
    assert lay.open_end_values() == [1, 2, 4, 5]
    lay.check_invariants()

    full = parse("1|2-2|2=(2|6,2|3,2|5)", max_pip=6)
    assert serialize(full) == "1|2-2|2=(2|3,2|5,2|6)"
    assert full.open_end_values() == [1, 3, 5, 6]
    with pytest.raises(MalformedLayout) as exc:
        parse("1|2-2|2=(2|6,2|3,2|5,2|0)", max_pip=6)
    assert exc.value.position == 21
    assert "Cannot attach" in exc.value.message

    nested = parse("6|6=(6|4-4|4=(4|1,4|2))", max_pip=6)
    assert serialize(nested) == "6|6=(6|4-4|4=(4|1,4|2))"
    assert nested.open_end_values() == [6, 4, 1, 2]


def test_linear_chain_double_takes_one_branch():
    with pytest.raises(MalformedLayout) as exc:
        parse("1|2-2|2=(2|3,2|5)", variation="bergen", max_pip=6)
    assert exc.value.position == 13


def test_doubles_always_write_a_group():
    assert serialize(parse("4|4=(4|5-5|6)")) == "4|4=(4|5-5|6)"
    assert serialize(parse("1|2-2|2=(2|3)")) == "1|2-2|2=(2|3)"
    assert serialize(parse("3|3=(3|4)", variation="blind")) == "3|3=(3|4)"


def test_round_trip_generated_layouts():
    for variation in VARIATIONS:
        for seed in range(5):
            lay = generate(max_pip=6, variation=variation, seed=seed)
            text = serialize(lay)
            again = parse(text, variation=variation, max_pip=6)
            assert again == lay
            assert serialize(again) == text


def test_json_export_nodes():
    d = layout_to_dict(parse(EXAMPLE, max_pip=6))
    assert d["text"] == EXAMPLE
    assert d["set_id"] == 6
    assert d["open_ends"] == [3, 3, 5, 6]
    assert d["nodes"] == [
        {"id": 0, "tile": [3, 3], "parent": None, "link": None},
        {"id": 1, "tile": [3, 4], "parent": 0, "link": 3},
        {"id": 2, "tile": [4, 5], "parent": 1, "link": 4},
        {"id": 3, "tile": [3, 6], "parent": 0, "link": 3},
    ]


def test_json_round_trip():
    lay = generate(max_pip=9, max_tiles=20, variation="allfives", seed=4)
    back = from_json(to_json(lay, indent=2))
    assert back == lay
    assert back.variation == "allfives"
    assert back.max_pip == 9


def test_from_json_errors():
    with pytest.raises(MalformedLayout):
        from_json("{not json")
    with pytest.raises(MalformedLayout):
        from_json("[1, 2]")
    with pytest.raises(MalformedLayout):
        from_json(json.dumps({"nodes": [{"id": 0}]}))
    bad = {"nodes": [
        {"id": 0, "tile": [3, 3], "parent": None, "link": None},
        {"id": 1, "tile": [4, 5], "parent": 0, "link": 3},
    ]}
    with pytest.raises(MalformedLayout):
        from_json(json.dumps(bad))
