"""Image tools: technical metadata extraction and HTTP download.

Analysis reports what Pillow can measure (format, size, mode, EXIF) and can
attach a downscaled JPEG for a vision-capable model.  It never guesses at
image content.
"""

from __future__ import annotations

import asyncio
import base64
import io
import json
import logging
import mimetypes
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
from PIL import ExifTags, Image, UnidentifiedImageError
from pydantic import BaseModel, Field

from filebridge import __version__
from filebridge.protocol.errors import ProcessingError, ToolValidationError
from filebridge.protocol.models import ImageContent, TextContent, ToolCallResult
from filebridge.runtime.models import ExecutionPolicy
from filebridge.tools.base import BuiltinTool, describe, parse_arguments

if TYPE_CHECKING:
    from filebridge.runtime.models import SecurityContext

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 50 * 1024 * 1024
SUPPORTED_EXTENSIONS = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif", ".webp"}
)
_USER_AGENT = f"filebridge/{__version__} (image downloader)"


class AnalyzeImageArgs(BaseModel):
    path: str = Field(..., min_length=1, description="Path to the image file to analyze")
    include_exif: bool = Field(default=True, description="Include EXIF metadata from the image")
    return_base64: bool = Field(
        default=False, description="Return a base64 JPEG for vision analysis"
    )
    max_dimension: int = Field(
        default=2048, ge=256, le=4096, description="Maximum width/height of the base64 output"
    )
    quality: int = Field(default=85, ge=1, le=100, description="JPEG quality of the base64 output")


class DownloadImageArgs(BaseModel):
    url: str = Field(..., min_length=1, description="Image URL to download")
    save_path: str | None = Field(
        default=None, description="Local path to save to (generated when omitted)"
    )
    timeout: float = Field(default=30.0, ge=5.0, le=120.0, description="Download timeout in seconds")


class ImageTools:
    """``analyze_image`` and ``download_image``.

    ``transport`` is handed to :class:`httpx.AsyncClient`; tests pass an
    :class:`httpx.MockTransport`.
    """

    def __init__(
        self,
        *,
        max_bytes: int = MAX_IMAGE_BYTES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._max_bytes = max_bytes
        self._transport = transport

    def definitions(self) -> list[BuiltinTool]:
        return [
            BuiltinTool(
                describe(
                    "analyze_image",
                    "Analyze an image file and extract technical metadata without content assumptions",
                    AnalyzeImageArgs,
                ),
                self.analyze_image,
                ExecutionPolicy(required_permissions=frozenset({"read"}), timeout=60.0),
            ),
            BuiltinTool(
                describe("download_image", "Download an image from a URL for analysis", DownloadImageArgs),
                self.download_image,
                ExecutionPolicy(
                    required_permissions=frozenset({"write"}), timeout=60.0, max_retries=1
                ),
            ),
        ]

    async def analyze_image(
        self, arguments: dict[str, Any], context: SecurityContext
    ) -> ToolCallResult:
        args = parse_arguments(AnalyzeImageArgs, arguments, "analyze_image")
        path = Path(args.path).expanduser().resolve()
        report, thumbnail = await asyncio.to_thread(self._analyze, path, args)

        content: list[TextContent | ImageContent] = [TextContent(text=json.dumps(report, indent=2))]
        if thumbnail is not None:
            content.append(ImageContent(data=thumbnail, mime_type="image/jpeg"))
        return ToolCallResult(content=content)

    async def download_image(
        self, arguments: dict[str, Any], context: SecurityContext
    ) -> ToolCallResult:
        args = parse_arguments(DownloadImageArgs, arguments, "download_image")
        logger.info("Downloading image %s for %s", args.url, context.caller_id)

        async with httpx.AsyncClient(
            timeout=args.timeout,
            follow_redirects=True,
            headers={"User-Agent": _USER_AGENT},
            transport=self._transport,
        ) as client, client.stream("GET", args.url) as response:
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise ProcessingError(
                    f"Download failed: HTTP {exc.response.status_code}",
                    data={"url": args.url, "status": exc.response.status_code},
                ) from exc

            content_type = response.headers.get("content-type", "application/octet-stream")
            mime_type = content_type.split(";", 1)[0].strip().lower()
            if not mime_type.startswith("image/"):
                raise ToolValidationError(
                    f"URL did not return an image: {mime_type}",
                    data={"url": args.url, "content_type": mime_type},
                )

            declared = response.headers.get("content-length")
            if declared is not None and declared.isdigit() and int(declared) > self._max_bytes:
                raise self._too_large(args.url, int(declared))

            buffer = bytearray()
            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) > self._max_bytes:
                    raise self._too_large(args.url, len(buffer))
            payload = bytes(buffer)

        extension = mimetypes.guess_extension(mime_type) or ".bin"
        target = Path(args.save_path or f"downloaded_image_{int(time.time() * 1000)}{extension}")
        target = target.expanduser().resolve()
        await asyncio.to_thread(_save, target, payload)
        logger.info("Image saved to %s (%d bytes)", target, len(payload))

        details = {
            "url": args.url,
            "saved_to": str(target),
            "size": len(payload),
            "content_type": mime_type,
            "extension": extension,
        }
        return ToolCallResult.from_text(
            "Image downloaded successfully\n"
            f"{json.dumps(details, indent=2)}\n"
            "Use analyze_image on the saved path to inspect it."
        )

    def _too_large(self, url: str, size: int) -> ToolValidationError:
        return ToolValidationError(
            f"Image too large: {size} bytes (max: {self._max_bytes})",
            data={"url": url, "size": size},
        )

    def _analyze(self, path: Path, args: AnalyzeImageArgs) -> tuple[dict[str, Any], str | None]:
        if not path.is_file():
            raise ProcessingError(f"Image not found: {path}", data={"path": str(path)})
        if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            raise ToolValidationError(
                f"Unsupported image format: {path.suffix or '(none)'}",
                data={"path": str(path), "supported": sorted(SUPPORTED_EXTENSIONS)},
            )
        st = path.stat()
        if st.st_size > self._max_bytes:
            raise ToolValidationError(
                f"File too large: {st.st_size} bytes (max: {self._max_bytes})",
                data={"path": str(path), "size": st.st_size},
            )

        try:
            with Image.open(path) as image:
                report = {
                    "file": {
                        "path": str(path),
                        "filename": path.name,
                        "size_bytes": st.st_size,
                        "format": image.format or "UNKNOWN",
                        "mime_type": mimetypes.guess_type(path.name)[0] or "application/octet-stream",
                        "modified": datetime.fromtimestamp(st.st_mtime, UTC).isoformat(),
                    },
                    "properties": {
                        "width": image.width,
                        "height": image.height,
                        "mode": image.mode,
                        "bands": len(image.getbands()),
                        "has_alpha": "A" in image.getbands() or "transparency" in image.info,
                        "frames": getattr(image, "n_frames", 1),
                        "dpi": _dpi(image),
                    },
                    "analyzed_at": datetime.now(UTC).isoformat(),
                }
                if args.include_exif:
                    report["exif"] = _exif(image)
                thumbnail = _thumbnail(image, args.max_dimension, args.quality) if args.return_base64 else None
        except UnidentifiedImageError as exc:
            raise ToolValidationError(
                f"Not a readable image: {path}", data={"path": str(path)}
            ) from exc

        if thumbnail is not None:
            report["base64"] = {"mime_type": "image/jpeg", "size_bytes": len(thumbnail) * 3 // 4}
        return report, thumbnail


def _dpi(image: Image.Image) -> list[float] | None:
    dpi = image.info.get("dpi")
    return [float(v) for v in dpi] if dpi else None


def _exif(image: Image.Image) -> dict[str, Any]:
    exif = image.getexif()
    if not exif:
        return {}
    tags: dict[str, Any] = {}
    for tag_id, value in exif.items():
        name = ExifTags.TAGS.get(tag_id, str(tag_id))
        if isinstance(value, bytes):
            continue
        tags[name] = value if isinstance(value, (int, float, str)) else str(value)
    return tags


def _thumbnail(image: Image.Image, max_dimension: int, quality: int) -> str:
    frame = image.convert("RGB")
    frame.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
    buffer = io.BytesIO()
    frame.save(buffer, format="JPEG", quality=quality)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def _save(target: Path, payload: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(payload)
