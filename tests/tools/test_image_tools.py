"""Tests for analyze_image and download_image."""

from __future__ import annotations

import base64
import io
import json
from typing import TYPE_CHECKING

import httpx
import pytest
from PIL import Image

from filebridge.protocol.errors import ProcessingError, ToolValidationError
from filebridge.protocol.models import ImageContent
from filebridge.runtime.models import SecurityContext
from filebridge.tools.image_tools import ImageTools

if TYPE_CHECKING:
    from pathlib import Path

_CTX = SecurityContext(user_id="tester", permissions=frozenset({"read", "write"}))


def _png_bytes(size: tuple[int, int] = (64, 32), mode: str = "RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color=0).save(buffer, format="PNG")
    return buffer.getvalue()


class _CountingStream(httpx.AsyncByteStream):
    """Body stream that counts how many chunks the client pulled."""

    def __init__(self, *, chunks: int, size: int) -> None:
        self._chunks = chunks
        self._size = size
        self.pulled = 0

    async def __aiter__(self):  # type: ignore[override]
        for _ in range(self._chunks):
            self.pulled += 1
            yield b"x" * self._size


@pytest.fixture
def png(tmp_path: Path) -> Path:
    path = tmp_path / "pic.png"
    path.write_bytes(_png_bytes())
    return path


class TestAnalyzeImage:
    async def test_metadata(self, png: Path) -> None:
        result = await ImageTools().analyze_image({"path": str(png)}, _CTX)

        report = json.loads(result.content[0].text)
        assert report["file"]["format"] == "PNG"
        assert report["file"]["mime_type"] == "image/png"
        assert report["properties"]["width"] == 64
        assert report["properties"]["height"] == 32
        assert report["properties"]["mode"] == "RGB"
        assert report["exif"] == {}
        assert len(result.content) == 1

    async def test_base64_thumbnail(self, tmp_path: Path) -> None:
        path = tmp_path / "large.png"
        path.write_bytes(_png_bytes((1000, 500), mode="RGBA"))

        result = await ImageTools().analyze_image(
            {"path": str(path), "return_base64": True, "max_dimension": 256}, _CTX
        )

        image_part = result.content[1]
        assert isinstance(image_part, ImageContent)
        assert image_part.mime_type == "image/jpeg"
        with Image.open(io.BytesIO(base64.b64decode(image_part.data))) as thumb:
            assert thumb.format == "JPEG"
            assert thumb.size == (256, 128)

    async def test_unsupported_extension(self, tmp_path: Path) -> None:
        path = tmp_path / "doc.pdf"
        path.write_bytes(b"%PDF-1.4")
        with pytest.raises(ToolValidationError, match="Unsupported image format"):
            await ImageTools().analyze_image({"path": str(path)}, _CTX)

    async def test_corrupt_image(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.png"
        path.write_bytes(b"not really a png")
        with pytest.raises(ToolValidationError, match="Not a readable image"):
            await ImageTools().analyze_image({"path": str(path)}, _CTX)

    async def test_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ProcessingError):
            await ImageTools().analyze_image({"path": str(tmp_path / "none.png")}, _CTX)

    async def test_size_limit(self, png: Path) -> None:
        with pytest.raises(ToolValidationError, match="too large"):
            await ImageTools(max_bytes=10).analyze_image({"path": str(png)}, _CTX)

    async def test_quality_bounds(self, png: Path) -> None:
        with pytest.raises(ToolValidationError):
            await ImageTools().analyze_image({"path": str(png), "quality": 0}, _CTX)


class TestDownloadImage:
    async def test_saves_image(self, tmp_path: Path) -> None:
        payload = _png_bytes()
        seen: list[httpx.Request] = []

        def respond(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=payload, headers={"content-type": "image/png"})

        tools = ImageTools(transport=httpx.MockTransport(respond))
        target = tmp_path / "saved" / "img.png"

        result = await tools.download_image(
            {"url": "https://example.test/img.png", "save_path": str(target)}, _CTX
        )

        assert target.read_bytes() == payload
        assert "Image downloaded successfully" in result.content[0].text
        assert seen[0].headers["user-agent"].startswith("filebridge/")

    async def test_rejects_non_image(self, tmp_path: Path) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, text="<html>", headers={"content-type": "text/html"})
        )
        with pytest.raises(ToolValidationError, match="did not return an image"):
            await ImageTools(transport=transport).download_image(
                {"url": "https://example.test/page", "save_path": str(tmp_path / "x")}, _CTX
            )

    async def test_http_error(self, tmp_path: Path) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        with pytest.raises(ProcessingError, match="HTTP 404") as exc_info:
            await ImageTools(transport=transport).download_image(
                {"url": "https://example.test/missing.png"}, _CTX
            )
        assert exc_info.value.data["status"] == 404

    async def test_too_large(self, tmp_path: Path) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(
                200, content=b"x" * 100, headers={"content-type": "image/png"}
            )
        )
        with pytest.raises(ToolValidationError, match="too large"):
            await ImageTools(max_bytes=10, transport=transport).download_image(
                {"url": "https://example.test/a.png", "save_path": str(tmp_path / "a.png")}, _CTX
            )

    async def test_declared_length_rejected_before_body(self, tmp_path: Path) -> None:
        stream = _CountingStream(chunks=4, size=1024)
        transport = httpx.MockTransport(
            lambda request: httpx.Response(
                200,
                headers={"content-type": "image/png", "content-length": "5242880"},
                stream=stream,
            )
        )
        with pytest.raises(ToolValidationError, match="5242880 bytes") as exc_info:
            await ImageTools(max_bytes=1024, transport=transport).download_image(
                {"url": "https://example.test/big.png", "save_path": str(tmp_path / "big.png")},
                _CTX,
            )
        assert exc_info.value.data["size"] == 5242880
        assert stream.pulled == 0
        assert not (tmp_path / "big.png").exists()

    async def test_undeclared_length_aborts_mid_transfer(self, tmp_path: Path) -> None:
        stream = _CountingStream(chunks=10, size=8)
        transport = httpx.MockTransport(
            lambda request: httpx.Response(
                200, headers={"content-type": "image/png"}, stream=stream
            )
        )
        with pytest.raises(ToolValidationError, match="too large"):
            await ImageTools(max_bytes=20, transport=transport).download_image(
                {"url": "https://example.test/big.png", "save_path": str(tmp_path / "big.png")},
                _CTX,
            )
        assert stream.pulled == 3

    def test_policy(self) -> None:
        download = {d.name: d for d in ImageTools().definitions()}["download_image"]
        assert download.policy.max_retries == 1
        assert download.policy.required_permissions == frozenset({"write"})
