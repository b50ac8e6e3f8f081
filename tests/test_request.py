"""Tests for structured requests and body classification."""

from __future__ import annotations

import httpx
import pytest

from fetchcache.exceptions import UnsupportedBodyType
from fetchcache.request import (
    Bytes,
    FetchRequest,
    FileRef,
    FormParams,
    MultipartForm,
    NoBody,
    Text,
    classify_body,
)


async def _collect(content) -> bytes:
    return b"".join([chunk async for chunk in content])


class TestClassifyBody:
    def test_none(self) -> None:
        assert classify_body(None) == NoBody()

    def test_str(self) -> None:
        assert classify_body("abc") == Text("abc")

    @pytest.mark.parametrize("value", [b"abc", bytearray(b"abc"), memoryview(b"abc")])
    def test_bytes_like(self, value: object) -> None:
        assert classify_body(value) == Bytes(b"abc")

    def test_mapping(self) -> None:
        assert classify_body({"q": "a b", "n": ["1", "2"]}) == FormParams("q=a+b&n=1&n=2")

    def test_pair_sequence(self) -> None:
        assert classify_body([("a", "1"), ("a", "2")]) == FormParams("a=1&a=2")

    def test_query_params(self) -> None:
        assert classify_body(httpx.QueryParams("x=1&y=2")) == FormParams("x=1&y=2")

    def test_file(self, tmp_path) -> None:
        path = tmp_path / "body.txt"
        path.write_text("data")
        with open(path, "rb") as handle:
            body = classify_body(handle)
        assert isinstance(body, FileRef)
        assert body.path == str(path)

    def test_variant_passes_through(self) -> None:
        form = MultipartForm(data={"a": "1"})
        assert classify_body(form) is form

    @pytest.mark.parametrize("value", [1.5, object(), [1, 2, 3], {1, 2}])
    def test_unsupported(self, value: object) -> None:
        with pytest.raises(UnsupportedBodyType) as exc_info:
            classify_body(value)
        assert exc_info.value.body_type is type(value)


class TestEncode:
    def test_text_content_type(self) -> None:
        content, content_type = Text("hi").encode()
        assert content == "hi"
        assert content_type.startswith("text/plain")

    def test_form_content_type(self) -> None:
        _, content_type = FormParams("a=1").encode()
        assert content_type.startswith("application/x-www-form-urlencoded")

    async def test_file_streams_contents(self, tmp_path) -> None:
        path = tmp_path / "big.bin"
        path.write_bytes(b"x" * 100_000)
        content, _ = FileRef(path=str(path)).encode()
        assert await _collect(content) == b"x" * 100_000

    async def test_open_file_streams_from_handle(self, tmp_path) -> None:
        path = tmp_path / "f.txt"
        path.write_bytes(b"payload")
        with open(path, "rb") as handle:
            content, _ = classify_body(handle).encode()
            assert await _collect(content) == b"payload"


class TestMultipartForm:
    def test_encoding_layout(self) -> None:
        form = MultipartForm(data={"name": "x"}, files={"f": ("a.txt", b"hi", "text/plain")}, boundary="B")
        content = form.content
        assert content.startswith(b'--B\r\nContent-Disposition: form-data; name="name"\r\n\r\nx\r\n')
        assert b'filename="a.txt"' in content
        assert b"Content-Type: text/plain\r\n\r\nhi\r\n" in content
        assert content.endswith(b"--B--\r\n")

    def test_data_only_form_is_multipart(self) -> None:
        form = MultipartForm(data=[("a", "1"), ("a", 2)], boundary="B")
        assert form.content == (
            b'--B\r\nContent-Disposition: form-data; name="a"\r\n\r\n1\r\n'
            b'--B\r\nContent-Disposition: form-data; name="a"\r\n\r\n2\r\n'
            b"--B--\r\n"
        )

    def test_quotes_in_names_are_escaped(self) -> None:
        form = MultipartForm(
            data={'a"; filename="x': "1"},
            files={"f": ('evil".txt', b"hi", "text/plain")},
            boundary="B",
        )
        assert b'name="a%22; filename=%22x"' in form.content
        assert b'filename="evil%22.txt"' in form.content
        assert b'name="a"; filename="x"' not in form.content

    def test_matches_httpx_encoding(self) -> None:
        form = MultipartForm(data={"name": "x"}, files={"f": ("a.txt", b"hi", "text/plain")}, boundary="B")
        native = httpx.Request(
            "POST",
            "https://example.com/a",
            data={"name": "x"},
            files={"f": ("a.txt", b"hi", "text/plain")},
            headers={"content-type": "multipart/form-data; boundary=B"},
        )
        assert form.content == native.read()

    def test_empty_form(self) -> None:
        assert MultipartForm(boundary="B").content == b"--B--\r\n"

    def test_content_type_carries_boundary(self) -> None:
        form = MultipartForm(boundary="XYZ")
        assert form.content_type == "multipart/form-data; boundary=XYZ"

    def test_boundaries_are_random(self) -> None:
        assert MultipartForm().boundary != MultipartForm().boundary

    def test_key_material_has_no_boundary(self) -> None:
        form = MultipartForm(data={"a": "1"})
        assert form.boundary not in form.key_material()

    def test_file_object_value(self, tmp_path) -> None:
        path = tmp_path / "report.csv"
        path.write_bytes(b"a,b")
        with open(path, "rb") as handle:
            form = MultipartForm(files={"upload": handle}, boundary="B")
        assert b'filename="report.csv"' in form.content
        assert b"a,b" in form.content

    def test_from_encoded(self) -> None:
        form = MultipartForm.from_encoded(b"--q\r\nbody\r\n--q--\r\n", "q")
        assert form.content == b"--q\r\nbody\r\n--q--\r\n"
        assert form.key_material() == "--\r\nbody\r\n----\r\n"


class TestFetchRequest:
    def test_defaults(self) -> None:
        request = FetchRequest("https://example.com/a")
        assert request.method == "GET"
        assert request.redirect == "follow"
        assert request.body == NoBody()
        assert isinstance(request.headers, httpx.Headers)

    def test_multipart_sets_content_type(self) -> None:
        form = MultipartForm(boundary="B")
        request = FetchRequest("https://example.com/a", method="POST", body=form)
        assert request.headers["content-type"] == "multipart/form-data; boundary=B"

    def test_from_httpx_form(self) -> None:
        native = httpx.Request("POST", "https://example.com/a", data={"a": "1"})
        request = FetchRequest.from_httpx(native)
        assert request.method == "POST"
        assert request.body == FormParams("a=1")

    def test_from_httpx_multipart(self) -> None:
        native = httpx.Request("POST", "https://example.com/a", files={"f": ("a.txt", b"x")})
        request = FetchRequest.from_httpx(native)
        assert isinstance(request.body, MultipartForm)
        assert request.body.boundary in native.headers["content-type"]

    def test_from_httpx_without_body(self) -> None:
        native = httpx.Request("GET", "https://example.com/a")
        assert FetchRequest.from_httpx(native).body == NoBody()

    def test_from_httpx_raw_bytes(self) -> None:
        native = httpx.Request("POST", "https://example.com/a", content=b"\x00\x01")
        assert FetchRequest.from_httpx(native).body == Bytes(b"\x00\x01")
