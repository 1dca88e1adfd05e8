"""Tests for ParamSet, HeaderSet and the Param model.

Tests cover:
- Replace-by-name, lookup of absent names, removal
- Insertion-ordered, restartable iteration
- all_strings() detection of blob parameters
- Case-insensitive, last-write-wins header storage
"""

import pytest
from pydantic import ValidationError

from rest_proxy.models import Param, ParamKind
from rest_proxy.params import HeaderSet, ParamSet


class TestParam:
    """Param constructors and derived properties."""

    def test_string_param(self) -> None:
        param = Param.string("q", "héllo")
        assert param.kind is ParamKind.STRING
        assert param.content == "héllo".encode("utf-8")
        assert param.length == len("héllo".encode("utf-8"))
        assert param.content_type == "text/plain"
        assert param.value == "héllo"
        assert param.is_string

    def test_blob_param(self) -> None:
        param = Param.blob("photo", b"\x89PNG", "image/png", "a.png")
        assert param.kind is ParamKind.BLOB
        assert param.length == 4
        assert param.file_name == "a.png"
        assert not param.is_string

    def test_blob_defaults_to_octet_stream(self) -> None:
        param = Param.blob("data", b"\x00")
        assert param.content_type == "application/octet-stream"
        assert param.file_name is None

    def test_string_param_rejects_non_utf8(self) -> None:
        with pytest.raises(ValidationError, match="not valid UTF-8"):
            Param(name="q", kind=ParamKind.STRING, content=b"\xff\xfe")

    def test_blob_param_accepts_any_bytes(self) -> None:
        param = Param(name="q", kind=ParamKind.BLOB, content=b"\xff\xfe")
        assert param.length == 2

    def test_param_is_immutable(self) -> None:
        param = Param.string("q", "a")
        with pytest.raises(ValidationError):
            param.content = b"b"


class TestParamSet:
    """ParamSet mapping behaviour."""

    def test_lookup_absent_returns_none(self) -> None:
        assert ParamSet().get("missing") is None

    def test_add_replaces_same_name(self) -> None:
        params = ParamSet()
        params.add(Param.string("a", "1"))
        params.add(Param.string("a", "2"))
        assert len(params) == 1
        assert params.get("a").value == "2"

    def test_remove(self) -> None:
        params = ParamSet()
        params.add(Param.string("a", "1"))
        params.remove("a")
        params.remove("never-added")
        assert "a" not in params
        assert len(params) == 0

    def test_iteration_in_insertion_order(self) -> None:
        params = ParamSet()
        for name in ("z", "a", "m"):
            params.add(Param.string(name, name.upper()))
        assert [name for name, _ in params.items()] == ["z", "a", "m"]

    def test_iteration_is_restartable(self) -> None:
        params = ParamSet()
        params.add(Param.string("a", "1"))
        params.add(Param.string("b", "2"))
        first = list(params)
        second = list(params)
        assert first == second
        assert len(first) == 2

    def test_all_strings(self) -> None:
        params = ParamSet()
        assert params.all_strings()
        params.add(Param.string("a", "1"))
        assert params.all_strings()
        params.add(Param.blob("f", b"data"))
        assert not params.all_strings()

    def test_as_string_dict_skips_blobs(self) -> None:
        params = ParamSet()
        params.add(Param.string("a", "1"))
        params.add(Param.blob("f", b"data"))
        assert params.as_string_dict() == {"a": "1"}


class TestHeaderSet:
    """HeaderSet mapping behaviour."""

    def test_round_trip(self) -> None:
        headers = HeaderSet()
        headers.add("X-Token", "abc")
        assert headers.get("X-Token") == "abc"

    def test_last_write_wins(self) -> None:
        headers = HeaderSet()
        headers.add("X-Token", "first")
        headers.add("X-Token", "second")
        assert headers.get("X-Token") == "second"
        assert len(headers) == 1

    def test_lookup_is_case_insensitive(self) -> None:
        headers = HeaderSet()
        headers.add("Content-Type", "text/plain")
        assert headers.get("content-type") == "text/plain"
        assert "CONTENT-TYPE" in headers

    def test_latest_casing_is_kept(self) -> None:
        headers = HeaderSet()
        headers.add("x-token", "1")
        headers.add("X-Token", "2")
        assert headers.as_dict() == {"X-Token": "2"}

    def test_remove_and_clear(self) -> None:
        headers = HeaderSet({"A": "1", "B": "2"})
        headers.remove("a")
        assert headers.get("A") is None
        headers.clear()
        assert len(headers) == 0

    def test_init_from_pairs(self) -> None:
        headers = HeaderSet([("A", "1"), ("A", "2"), ("B", "3")])
        assert headers.as_dict() == {"A": "2", "B": "3"}
