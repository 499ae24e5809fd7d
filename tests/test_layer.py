"""
Test suite for path compilation and the Layer class.
"""

import re

import pytest

from vireo.exceptions import ParamDecodeError
from vireo.handlers import error_handler, run
from vireo.routing import Layer, PathKey, compile_path


def noop(req, res, next):
    pass


class TestCompilePath:
    """Test path pattern compilation."""

    def test_named_segment(self):
        regexp, keys = compile_path("/user/:id")
        assert keys == [PathKey("id", False)]
        assert regexp.match("/user/12").groups() == ("12",)
        assert regexp.match("/user/12/") is not None
        assert regexp.match("/user") is None
        assert regexp.match("/user/12/edit") is None

    def test_optional_segment(self):
        regexp, keys = compile_path("/user/:id?")
        assert keys == [PathKey("id", True)]
        assert regexp.match("/user").groups() == (None,)
        assert regexp.match("/user/5").groups() == ("5",)

    def test_custom_capture(self):
        regexp, _ = compile_path(r"/user/:id(\d+)")
        assert regexp.match("/user/42") is not None
        assert regexp.match("/user/abc") is None

    def test_format_segment(self):
        regexp, keys = compile_path("/:file.:ext")
        assert [key.name for key in keys] == ["file", "ext"]
        assert regexp.match("/report.pdf").groups() == ("report", "pdf")

    def test_wildcard_gets_numeric_key(self):
        regexp, keys = compile_path("/files/*")
        assert keys == [PathKey(0)]
        assert regexp.match("/files/a/b.txt").group(1) == "a/b.txt"

    def test_unnamed_group_gets_numeric_key(self):
        regexp, keys = compile_path("/page/(\\d+)")
        assert keys == [PathKey(0)]
        assert regexp.match("/page/3").groups() == ("3",)

    def test_regex_characters_pass_through(self):
        regexp, _ = compile_path("/ab?cd")
        assert regexp.match("/acd") is not None
        assert regexp.match("/abcd") is not None
        assert regexp.match("/abbcd") is None

    def test_case_insensitive_by_default(self):
        regexp, _ = compile_path("/Foo")
        assert regexp.match("/foo") is not None

        regexp, _ = compile_path("/Foo", sensitive=True)
        assert regexp.match("/foo") is None
        assert regexp.match("/Foo") is not None

    def test_strict_trailing_slash(self):
        regexp, _ = compile_path("/foo", strict=True)
        assert regexp.match("/foo") is not None
        assert regexp.match("/foo/") is None

        regexp, _ = compile_path("/foo")
        assert regexp.match("/foo/") is not None

    def test_prefix_matching_stops_at_boundaries(self):
        regexp, _ = compile_path("/foo", end=False)
        assert regexp.match("/foo/bar").group(0) == "/foo"
        assert regexp.match("/foo").group(0) == "/foo"
        assert regexp.match("/foobar") is None

    def test_compiled_regex_keeps_group_names(self):
        pattern = re.compile(r"^/item/(?P<slug>\w+)/(\d+)$")
        regexp, keys = compile_path(pattern)
        assert regexp is pattern
        assert keys == [PathKey("slug"), PathKey(0)]

    def test_list_of_paths(self):
        regexp, keys = compile_path(["/a/:id", "/b/:name"])
        assert [key.name for key in keys] == ["id", "name"]
        assert regexp.match("/a/1").groups() == ("1", None)
        assert regexp.match("/b/x").groups() == (None, "x")

    def test_invalid_path_type(self):
        with pytest.raises(TypeError):
            compile_path(42)


class TestLayerMatch:
    """Test Layer.match and its fast paths."""

    def test_fast_slash_matches_everything(self):
        layer = Layer("/", noop, end=False)
        assert layer.match("/anything/at/all") is True
        assert layer.params == {}
        assert layer.path == ""

    def test_fast_star_captures_decoded_path(self):
        layer = Layer("*", noop)
        assert layer.match("/a%20b/c") is True
        assert layer.params == {0: "/a b/c"}
        assert layer.path == "/a%20b/c"

    def test_params_are_decoded(self):
        layer = Layer("/user/:name", noop)
        assert layer.match("/user/tobi%20ferret") is True
        assert layer.params == {"name": "tobi ferret"}
        assert layer.path == "/user/tobi%20ferret"

    def test_no_match_resets_fields(self):
        layer = Layer("/user/:name", noop)
        layer.match("/user/tobi")
        assert layer.match("/other") is False
        assert layer.params is None
        assert layer.path is None

    def test_none_path_never_matches(self):
        layer = Layer("/", noop, end=False)
        assert layer.match(None) is False

    def test_repeated_key_is_not_overwritten_by_none(self):
        layer = Layer(["/a/:id", "/b/:id"], noop)
        assert layer.match("/a/5") is True
        assert layer.params == {"id": "5"}
        assert layer.match("/b/7") is True
        assert layer.params == {"id": "7"}

    def test_malformed_escape_raises(self):
        layer = Layer("/user/:name", noop)
        with pytest.raises(ParamDecodeError) as excinfo:
            layer.match("/user/%E0%A4%A")
        assert excinfo.value.status_code == 400
        assert str(excinfo.value) == "Failed to decode param '%E0%A4%A'"

    def test_invalid_utf8_raises(self):
        layer = Layer("/user/:name", noop)
        with pytest.raises(ParamDecodeError):
            layer.match("/user/%FF")

    def test_layer_name_and_role(self):
        layer = Layer("/", noop)
        assert layer.name == "noop"
        assert not layer.is_error_handler

        tagged = Layer("/", error_handler(lambda err, req, res, next: None))
        assert tagged.is_error_handler


class TestLayerHandle:
    """Test how a Layer runs its handler."""

    @pytest.mark.asyncio
    async def test_request_layer_skips_errors(self):
        calls = []

        async def next(err=None):
            calls.append(err)

        layer = Layer("/", lambda req, res, nxt: calls.append("ran"))
        error = ValueError("boom")
        await run(layer.handle_error(error, "req", "res", next))
        assert calls == [error]

    @pytest.mark.asyncio
    async def test_error_layer_skips_requests(self):
        calls = []

        async def next(err=None):
            calls.append(("next", err))

        layer = Layer("/", error_handler(lambda err, req, res, nxt: calls.append("ran")))
        await run(layer.handle_request("req", "res", next))
        assert calls == [("next", None)]

    @pytest.mark.asyncio
    async def test_sync_raise_becomes_next_error(self):
        received = []

        async def next(err=None):
            received.append(err)

        def broken(req, res, nxt):
            raise RuntimeError("sync failure")

        await run(Layer("/", broken).handle_request("req", "res", next))
        assert len(received) == 1
        assert isinstance(received[0], RuntimeError)

    @pytest.mark.asyncio
    async def test_unawaited_next_is_driven(self):
        received = []

        async def next(err=None):
            received.append(err)

        def sync_handler(req, res, nxt):
            nxt()

        await run(Layer("/", sync_handler).handle_request("req", "res", next))
        assert received == [None]
