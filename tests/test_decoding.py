"""Tests for tolerant decoding and name matching."""

from tapedeck.lib.decoding import as_float, as_int, decode_first, decode_list, dig, first_str
from tapedeck.lib.matching import contains_either, names_equal, names_match

SHAPES = (
    ("data.songs", ("data", "songs")),
    ("songs", ("songs",)),
)


class TestDig:
    def test_nested(self):
        assert dig({"a": {"b": 1}}, ("a", "b")) == 1

    def test_missing_returns_default(self):
        assert dig({"a": {}}, ("a", "b"), "x") == "x"
        assert dig({"a": 5}, ("a", "b"), "x") == "x"

    def test_null_is_absent(self):
        assert dig({"a": None}, ("a",), "x") == "x"


class TestDecodeList:
    """First recognised shape wins; malformed elements are skipped."""

    def test_first_shape(self):
        result = decode_list({"data": {"songs": [{"id": 1}]}}, SHAPES)
        assert result.ok
        assert result.shape == "data.songs"
        assert result.value == [{"id": 1}]

    def test_fallback_shape(self):
        result = decode_list({"songs": [{"id": 2}]}, SHAPES)
        assert result.ok
        assert result.shape == "songs"

    def test_not_recognised(self):
        result = decode_list({"data": {"albums": []}}, SHAPES)
        assert not result.ok

    def test_single_dict_is_wrapped(self):
        result = decode_list({"songs": {"id": 3}}, SHAPES, lambda e: e["id"])
        assert result.value == [3]

    def test_malformed_elements_skipped(self):
        payload = {"songs": [{"id": 1}, "junk", {"no_id": True}, {"id": 4}]}
        result = decode_list(payload, SHAPES, lambda e: e["id"])
        assert result.ok
        assert result.value == [1, 4]

    def test_empty_list_is_ok(self):
        result = decode_list({"songs": []}, SHAPES)
        assert result.ok
        assert result.value == []

    def test_scalar_is_not_a_list(self):
        assert not decode_list({"songs": 7}, SHAPES).ok

    def test_decode_first(self):
        assert decode_first({"songs": "x"}, SHAPES).value == "x"
        assert not decode_first(None, SHAPES).ok


class TestScalars:
    def test_first_str(self):
        assert first_str({"a": "", "b": "  Band "}, "a", "b") == "Band"
        assert first_str({"a": 3}, "a") is None

    def test_as_int(self):
        assert as_int("3/12") == 3
        assert as_int(4.9) == 4
        assert as_int("x") is None
        assert as_int(True) is None

    def test_as_float(self):
        assert as_float("12.5") == 12.5
        assert as_float(None) == 0.0
        assert as_float("n/a") == 0.0


class TestMatching:
    """Case-insensitive equality and substring containment."""

    def test_equal_ignores_case(self):
        assert names_equal("Night Visions", "night  visions")

    def test_empty_never_matches(self):
        assert not names_equal("", "")
        assert not contains_either("", "anything")
        assert not names_match(None, "x")

    def test_containment_either_direction(self):
        assert contains_either("Night Visions", "Night Visions (Deluxe)")
        assert contains_either("Night Visions (Deluxe)", "night visions")

    def test_unrelated(self):
        assert not names_match("Evolve", "Origins")
