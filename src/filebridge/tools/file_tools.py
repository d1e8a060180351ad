"""File operation tools: read, write, list, inspect and search.

Blocking filesystem work runs in a worker thread so a slow disk never stalls
the event loop.
"""

from __future__ import annotations

import asyncio
import base64
import codecs
import fnmatch
import json
import logging
import shutil
import stat
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

from filebridge.protocol.errors import ProcessingError, ToolValidationError
from filebridge.protocol.models import TextContent, ToolCallResult
from filebridge.runtime.models import ExecutionPolicy
from filebridge.tools.base import BuiltinTool, describe, parse_arguments

if TYPE_CHECKING:
    from filebridge.runtime.models import SecurityContext

logger = logging.getLogger(__name__)

MAX_READ_BYTES = 50 * 1024 * 1024
_PREVIEW_CHARS = 500
_SEARCH_MAX_FILE_BYTES = 1024 * 1024


class ReadFileArgs(BaseModel):
    path: str = Field(..., min_length=1, description="Path to the file to read (absolute or relative)")
    encoding: Literal["utf8", "base64", "binary", "auto"] = Field(
        default="auto", description="File encoding (auto-detects by default)"
    )
    max_size: int = Field(
        default=1024 * 1024,
        ge=1024,
        le=MAX_READ_BYTES,
        description="Maximum file size to read in bytes",
    )


class WriteFileArgs(BaseModel):
    path: str = Field(..., min_length=1, description="Path where to write the file")
    content: str = Field(..., description="Content to write to the file")
    encoding: Literal["utf8", "base64"] = Field(default="utf8", description="Content encoding")
    create_dirs: bool = Field(default=True, description="Create parent directories if missing")
    backup: bool = Field(default=False, description="Keep a .bak copy of an existing file")


class ListDirectoryArgs(BaseModel):
    path: str = Field(..., min_length=1, description="Directory path to list")
    recursive: bool = Field(default=False, description="List files in subdirectories too")
    include_hidden: bool = Field(default=False, description="Include dotfiles and dot-directories")
    filter_extension: str | None = Field(
        default=None, description='Only files with this extension (e.g. ".txt")'
    )
    sort_by: Literal["name", "size", "modified", "type"] = Field(
        default="name", description="Sort order"
    )


class GetFileInfoArgs(BaseModel):
    path: str = Field(..., min_length=1, description="Path to the file or directory")
    include_content_preview: bool = Field(
        default=False, description="Include the first 500 characters of a text file"
    )


class SearchFilesArgs(BaseModel):
    directory: str = Field(..., min_length=1, description="Directory to search in")
    pattern: str = Field(default="*", description="File name glob (e.g. *.py)")
    content_search: str | None = Field(default=None, description="Text to look for inside files")
    case_sensitive: bool = Field(default=False, description="Case sensitive matching")
    max_results: int = Field(default=50, ge=1, le=500, description="Maximum number of results")


class FileTools:
    """The built-in file tools.  ``definitions()`` returns them with their policies."""

    def __init__(self, *, default_timeout: float = 30.0) -> None:
        self._default_timeout = default_timeout

    def definitions(self) -> list[BuiltinTool]:
        read = ExecutionPolicy(required_permissions=frozenset({"read"}), timeout=self._default_timeout)
        write = ExecutionPolicy(
            required_permissions=frozenset({"write"}), timeout=self._default_timeout
        )
        return [
            BuiltinTool(
                describe(
                    "read_file",
                    "Read a text or binary file from the filesystem with encoding detection",
                    ReadFileArgs,
                ),
                self.read_file,
                read,
            ),
            BuiltinTool(
                describe(
                    "write_file",
                    "Write content to a file, creating parent directories as needed",
                    WriteFileArgs,
                ),
                self.write_file,
                write,
            ),
            BuiltinTool(
                describe(
                    "list_directory",
                    "List directory contents with size, type and modification time",
                    ListDirectoryArgs,
                ),
                self.list_directory,
                read,
            ),
            BuiltinTool(
                describe(
                    "get_file_info",
                    "Get detailed information about a file or directory",
                    GetFileInfoArgs,
                ),
                self.get_file_info,
                read,
            ),
            BuiltinTool(
                describe(
                    "search_files",
                    "Search for files by name pattern and optionally by content",
                    SearchFilesArgs,
                ),
                self.search_files,
                read,
            ),
        ]

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def read_file(self, arguments: dict[str, Any], context: SecurityContext) -> ToolCallResult:
        args = parse_arguments(ReadFileArgs, arguments, "read_file")
        path = _resolve(args.path)
        raw = await asyncio.to_thread(_read_bytes, path, args.max_size)

        encoding = args.encoding
        if encoding == "auto":
            encoding = "utf8" if _is_text(raw) else "base64"

        if encoding == "utf8":
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ToolValidationError(
                    f"File is not valid UTF-8: {path}", data={"path": str(path)}
                ) from exc
        else:
            text = base64.b64encode(raw).decode("ascii")
            encoding = "base64"

        logger.debug("read_file %s (%d bytes, %s)", path, len(raw), encoding)
        return ToolCallResult(
            content=[
                TextContent(text=text),
                TextContent(text=json.dumps({"path": str(path), "size": len(raw), "encoding": encoding})),
            ]
        )

    async def write_file(self, arguments: dict[str, Any], context: SecurityContext) -> ToolCallResult:
        args = parse_arguments(WriteFileArgs, arguments, "write_file")
        path = _resolve(args.path)
        if args.encoding == "base64":
            try:
                data = base64.b64decode(args.content, validate=True)
            except ValueError as exc:
                raise ToolValidationError("Content is not valid base64", data={"path": str(path)}) from exc
        else:
            data = args.content.encode("utf-8")

        backup = await asyncio.to_thread(_write_bytes, path, data, args.create_dirs, args.backup)
        logger.info("write_file %s (%d bytes) by %s", path, len(data), context.caller_id)

        details: dict[str, Any] = {"path": str(path), "size": len(data), "encoding": args.encoding}
        if backup is not None:
            details["backup"] = str(backup)
        return ToolCallResult.from_text(f"File written successfully\n{json.dumps(details, indent=2)}")

    async def list_directory(
        self, arguments: dict[str, Any], context: SecurityContext
    ) -> ToolCallResult:
        args = parse_arguments(ListDirectoryArgs, arguments, "list_directory")
        root = _resolve(args.path)
        entries = await asyncio.to_thread(_list_entries, root, args)
        listing = {"path": str(root), "count": len(entries), "entries": entries}
        return ToolCallResult.from_text(json.dumps(listing, indent=2))

    async def get_file_info(
        self, arguments: dict[str, Any], context: SecurityContext
    ) -> ToolCallResult:
        args = parse_arguments(GetFileInfoArgs, arguments, "get_file_info")
        path = _resolve(args.path)
        info = await asyncio.to_thread(_file_info, path, args.include_content_preview)
        return ToolCallResult.from_text(json.dumps(info, indent=2))

    async def search_files(
        self, arguments: dict[str, Any], context: SecurityContext
    ) -> ToolCallResult:
        args = parse_arguments(SearchFilesArgs, arguments, "search_files")
        root = _resolve(args.directory)
        matches = await asyncio.to_thread(_search, root, args)
        result = {
            "directory": str(root),
            "pattern": args.pattern,
            "content_search": args.content_search,
            "count": len(matches),
            "truncated": len(matches) >= args.max_results,
            "matches": matches,
        }
        return ToolCallResult.from_text(json.dumps(result, indent=2))


# ---------------------------------------------------------------------------
# Blocking helpers (run via asyncio.to_thread)
# ---------------------------------------------------------------------------


def _resolve(raw: str) -> Path:
    return Path(raw).expanduser().resolve()


def _require_exists(path: Path) -> None:
    if not path.exists():
        raise ProcessingError(f"Path not found: {path}", data={"path": str(path)})


def _read_bytes(path: Path, max_size: int) -> bytes:
    _require_exists(path)
    if not path.is_file():
        raise ProcessingError(f"Not a regular file: {path}", data={"path": str(path)})
    size = path.stat().st_size
    if size > max_size:
        raise ToolValidationError(
            f"File too large: {size} bytes (max: {max_size})",
            data={"path": str(path), "size": size, "max_size": max_size},
        )
    return path.read_bytes()


def _write_bytes(path: Path, data: bytes, create_dirs: bool, backup: bool) -> Path | None:
    if not path.parent.exists():
        if not create_dirs:
            raise ProcessingError(
                f"Parent directory does not exist: {path.parent}", data={"path": str(path)}
            )
        path.parent.mkdir(parents=True, exist_ok=True)

    backup_path: Path | None = None
    if backup and path.exists():
        backup_path = path.with_name(path.name + ".bak")
        shutil.copy2(path, backup_path)

    path.write_bytes(data)
    return backup_path


def _is_text(data: bytes) -> bool:
    if b"\x00" in data[:8192]:
        return False
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return True


def _decode_head(data: bytes) -> str | None:
    """Decode a prefix cut at an arbitrary byte, or ``None`` if it is not text."""
    if b"\x00" in data:
        return None
    try:
        # A multi-byte character split by the cut is held back, not rejected.
        return codecs.getincrementaldecoder("utf-8")().decode(data, final=False)
    except UnicodeDecodeError:
        return None


def _is_hidden(path: Path, root: Path) -> bool:
    return any(part.startswith(".") for part in path.relative_to(root).parts)


def _describe_entry(path: Path, root: Path) -> dict[str, Any]:
    st = path.stat()
    return {
        "name": path.name,
        "path": str(path.relative_to(root)),
        "type": "directory" if path.is_dir() else "file",
        "size": st.st_size if path.is_file() else None,
        "modified": datetime.fromtimestamp(st.st_mtime, UTC).isoformat(),
    }


def _list_entries(root: Path, args: ListDirectoryArgs) -> list[dict[str, Any]]:
    _require_exists(root)
    if not root.is_dir():
        raise ProcessingError(f"Not a directory: {root}", data={"path": str(root)})

    candidates = root.rglob("*") if args.recursive else root.iterdir()
    entries: list[dict[str, Any]] = []
    for path in candidates:
        if not args.include_hidden and _is_hidden(path, root):
            continue
        if args.filter_extension and (
            path.is_dir() or path.suffix.lower() != _normalize_ext(args.filter_extension)
        ):
            continue
        entries.append(_describe_entry(path, root))

    sort_keys = {
        "name": lambda e: e["path"].lower(),
        "size": lambda e: e["size"] or 0,
        "modified": lambda e: e["modified"],
        "type": lambda e: (e["type"], e["path"].lower()),
    }
    entries.sort(key=sort_keys[args.sort_by])
    return entries


def _normalize_ext(ext: str) -> str:
    ext = ext.lower()
    return ext if ext.startswith(".") else f".{ext}"


def _file_info(path: Path, include_preview: bool) -> dict[str, Any]:
    _require_exists(path)
    st = path.stat()
    info: dict[str, Any] = {
        "path": str(path),
        "name": path.name,
        "type": "directory" if path.is_dir() else "file",
        "size": st.st_size,
        "extension": path.suffix or None,
        "permissions": stat.filemode(st.st_mode),
        "modified": datetime.fromtimestamp(st.st_mtime, UTC).isoformat(),
        "accessed": datetime.fromtimestamp(st.st_atime, UTC).isoformat(),
        "readable": bool(st.st_mode & stat.S_IRUSR),
        "writable": bool(st.st_mode & stat.S_IWUSR),
    }
    if include_preview and path.is_file():
        with path.open("rb") as fh:
            head = fh.read(_PREVIEW_CHARS * 4)
        text = _decode_head(head)
        info["preview"] = text[:_PREVIEW_CHARS] if text is not None else None
    return info


def _search(root: Path, args: SearchFilesArgs) -> list[dict[str, Any]]:
    _require_exists(root)
    if not root.is_dir():
        raise ProcessingError(f"Not a directory: {root}", data={"path": str(root)})

    needle = args.content_search
    if needle is not None and not args.case_sensitive:
        needle = needle.lower()

    matches: list[dict[str, Any]] = []
    for path in root.rglob("*"):
        if len(matches) >= args.max_results:
            break
        if not path.is_file():
            continue
        name = path.name if args.case_sensitive else path.name.lower()
        pattern = args.pattern if args.case_sensitive else args.pattern.lower()
        if not fnmatch.fnmatchcase(name, pattern):
            continue

        match: dict[str, Any] = {"path": str(path.relative_to(root)), "size": path.stat().st_size}
        if needle is not None:
            line = _find_line(path, needle, args.case_sensitive)
            if line is None:
                continue
            match["line"] = line
        matches.append(match)
    return matches


def _find_line(path: Path, needle: str, case_sensitive: bool) -> int | None:
    if path.stat().st_size > _SEARCH_MAX_FILE_BYTES:
        return None
    data = path.read_bytes()
    if not _is_text(data):
        return None
    for number, line in enumerate(data.decode("utf-8").splitlines(), start=1):
        haystack = line if case_sensitive else line.lower()
        if needle in haystack:
            return number
    return None
