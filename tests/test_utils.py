"""
Tests for the setting compilers, ETags, query parsing, freshness and proxy trust.
"""

import pytest

from vireo import SettingError
from vireo.proxy import all_addresses, compile_trust, forwarded_addresses, proxy_address
from vireo.utils import (
    compile_etag,
    compile_query_parser,
    etag,
    flatten,
    is_fresh,
    parse_extended_query,
    parse_simple_query,
    wetag,
)


class TestETag:
    def test_empty_body(self):
        assert etag(b"") == '"0-2jmj7l5rSw0yVb/vlWAYkK/YBwk"'

    def test_strong_and_weak(self):
        assert etag("hello") == '"5-qvTGHdzF6KLavt4PO0gs2a6pQ00"'
        assert wetag("hello") == 'W/"5-qvTGHdzF6KLavt4PO0gs2a6pQ00"'
        assert etag("hello") == etag(b"hello")

    def test_compile(self):
        assert compile_etag(True) is wetag
        assert compile_etag("weak") is wetag
        assert compile_etag("strong") is etag
        assert compile_etag(False) is None

        custom = lambda body, encoding="utf-8": '"custom"'  # noqa: E731
        assert compile_etag(custom) is custom

    def test_compile_rejects_unknown_values(self):
        with pytest.raises(SettingError, match="unknown value for etag function"):
            compile_etag("medium")
        with pytest.raises(TypeError):
            compile_etag(42)


class TestQueryParsers:
    def test_simple(self):
        assert parse_simple_query("a=1&b=2&a=3&empty=") == {"a": ["1", "3"], "b": "2", "empty": ""}

    def test_extended_nesting(self):
        result = parse_extended_query("user[name]=tobi&user[age]=3&tags[]=a&tags[]=b&a[b][c]=1")
        assert result == {
            "user": {"name": "tobi", "age": "3"},
            "tags": ["a", "b"],
            "a": {"b": {"c": "1"}},
        }

    def test_extended_plain_keys(self):
        assert parse_extended_query("q=search+term&q=other") == {"q": ["search term", "other"]}

    def test_extended_keeps_scalar_next_to_nested_value(self):
        assert parse_extended_query("a=1&a[b]=2") == {"a": ["1", {"b": "2"}]}
        assert parse_extended_query("a[b]=2&a=1") == {"a": [{"b": "2"}, "1"]}

    def test_extended_repeated_nested_key(self):
        assert parse_extended_query("a[b]=1&a[b]=2") == {"a": {"b": ["1", "2"]}}

    def test_extended_indices_build_lists(self):
        assert parse_extended_query("a[1]=y&a[0]=x") == {"a": ["x", "y"]}
        assert parse_extended_query("users[0][name]=tobi&users[1][name]=loki") == {
            "users": [{"name": "tobi"}, {"name": "loki"}]
        }

    def test_extended_large_or_mixed_indices_stay_keys(self):
        assert parse_extended_query("a[21]=x") == {"a": {"21": "x"}}
        assert parse_extended_query("a[0]=x&a[b]=y") == {"a": {"0": "x", "b": "y"}}
        assert parse_extended_query("0=a&1=b") == {"0": "a", "1": "b"}

    def test_extended_list_of_objects(self):
        assert parse_extended_query("a[][b]=1&a[][b]=2") == {"a": [{"b": "1"}, {"b": "2"}]}

    def test_compile(self):
        assert compile_query_parser("simple") is parse_simple_query
        assert compile_query_parser(True) is parse_simple_query
        assert compile_query_parser("extended") is parse_extended_query
        assert compile_query_parser(False) is None

        with pytest.raises(SettingError, match="unknown value for query parser function"):
            compile_query_parser("fancy")


class TestFreshness:
    def test_unconditional_request(self):
        assert not is_fresh({}, {"etag": '"a"'})

    def test_etag_match(self):
        assert is_fresh({"if-none-match": '"a"'}, {"etag": '"a"'})
        assert is_fresh({"if-none-match": '"b", "a"'}, {"etag": '"a"'})
        assert is_fresh({"if-none-match": 'W/"a"'}, {"etag": '"a"'})
        assert is_fresh({"if-none-match": '"a"'}, {"etag": 'W/"a"'})
        assert not is_fresh({"if-none-match": '"a"'}, {"etag": '"b"'})
        assert not is_fresh({"if-none-match": '"a"'}, {"etag": None})

    def test_star_matches_anything(self):
        assert is_fresh({"if-none-match": "*"}, {"etag": '"a"'})

    def test_no_cache_forces_stale(self):
        headers = {"if-none-match": '"a"', "cache-control": "max-age=0, no-cache"}
        assert not is_fresh(headers, {"etag": '"a"'})

    def test_modified_since(self):
        modified = {"last-modified": "Sat, 01 Jan 2000 00:00:00 GMT"}
        assert is_fresh({"if-modified-since": "Sun, 02 Jan 2000 00:00:00 GMT"}, modified)
        assert not is_fresh({"if-modified-since": "Fri, 31 Dec 1999 00:00:00 GMT"}, modified)
        assert not is_fresh({"if-modified-since": "not a date"}, modified)


class TestProxyTrust:
    def test_boolean_values(self):
        assert compile_trust(True)("1.2.3.4", 5)
        assert not compile_trust(False)("127.0.0.1", 0)
        assert not compile_trust(None)("127.0.0.1", 0)

    def test_hop_count(self):
        trust = compile_trust(2)
        assert trust("anything", 0)
        assert trust("anything", 1)
        assert not trust("anything", 2)

    def test_presets_and_subnets(self):
        trust = compile_trust("loopback, 10.0.0.0/8")
        assert trust("127.0.0.1", 0)
        assert trust("::1", 0)
        assert trust("10.1.2.3", 0)
        assert not trust("192.168.0.1", 0)
        assert not trust("not-an-address", 0)

        trust = compile_trust(["uniquelocal"])
        assert trust("192.168.0.1", 0)

    def test_ipv4_mapped_addresses(self):
        assert compile_trust("10.0.0.0/8")("::ffff:10.0.0.1", 0)

    def test_invalid_values(self):
        with pytest.raises(SettingError, match="invalid IP address"):
            compile_trust("not-an-ip")
        with pytest.raises(SettingError):
            compile_trust(1.5)

    def test_address_walk(self):
        assert forwarded_addresses("10.0.0.1", "1.1.1.1, 2.2.2.2") == ["10.0.0.1", "2.2.2.2", "1.1.1.1"]
        assert forwarded_addresses("10.0.0.1", None) == ["10.0.0.1"]

        trust = compile_trust("10.0.0.0/8")
        assert all_addresses("10.0.0.1", "1.1.1.1, 10.0.0.2", trust) == ["10.0.0.1", "10.0.0.2", "1.1.1.1"]
        assert proxy_address("10.0.0.1", "1.1.1.1, 2.2.2.2", trust) == "2.2.2.2"
        assert proxy_address("8.8.8.8", "1.1.1.1", trust) == "8.8.8.8"


def test_flatten():
    assert flatten([1, [2, (3, [4])], 5]) == [1, 2, 3, 4, 5]
