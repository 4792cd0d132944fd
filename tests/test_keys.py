"""
Unit tests for assertion keys and result comparison.
"""
import hashlib

from pagestate_engine.keys import canonical_json, generate_key, results_equal
from pagestate_engine.models import ASSERT_STORAGE, ASSERT_XPATH, Observation


class TestCanonicalJson:
    def test_sorted_compact(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_unicode_kept(self):
        assert canonical_json("café") == '"café"'


class TestGenerateKey:
    def test_is_sha256_of_canonical_pair(self):
        expected = hashlib.sha256(
            '["xpath",["count(/HTML)"]]'.encode("utf-8")
        ).hexdigest()
        assert generate_key(ASSERT_XPATH, ["count(/HTML)"]) == expected

    def test_deterministic(self):
        args = [{"type": "cookie", "origin": "http://a", "key": "k"}]
        assert generate_key(ASSERT_STORAGE, args) == generate_key(ASSERT_STORAGE, args)

    def test_no_concatenation_collision(self):
        assert generate_key(ASSERT_XPATH, ["a", "bc"]) != generate_key(ASSERT_XPATH, ["ab", "c"])

    def test_type_participates(self):
        assert generate_key(ASSERT_XPATH, ["x"]) != generate_key(ASSERT_STORAGE, ["x"])

    def test_dict_field_order_irrelevant(self):
        a = [{"type": "cookie", "origin": "o", "key": "k"}]
        b = [{"key": "k", "origin": "o", "type": "cookie"}]
        assert generate_key(ASSERT_STORAGE, a) == generate_key(ASSERT_STORAGE, b)

    def test_result_excluded(self):
        one = Observation(ASSERT_XPATH, ["count(//LI)"], 1)
        two = Observation(ASSERT_XPATH, ["count(//LI)"], 2)
        assert one.key == two.key


class TestResultsEqual:
    def test_identical(self):
        assert results_equal({"a": [1, "x"]}, {"a": [1, "x"]})

    def test_int_float_bool_differ(self):
        assert not results_equal(1, 1.0)
        assert not results_equal(1, True)
        assert not results_equal(0, False)

    def test_none_vs_missing_string(self):
        assert not results_equal(None, "")

    def test_dict_order_irrelevant(self):
        assert results_equal({"a": 1, "b": 2}, {"b": 2, "a": 1})
