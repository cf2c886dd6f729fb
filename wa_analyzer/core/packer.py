"""Turn multi-file and archive uploads into a single packed text document.

The packed document is what the analyzer reads in place of the raw bundle:
a short header, the list of packed paths, then every file behind a
``File: <path>`` delimiter so file boundaries stay visible.
"""
from __future__ import annotations

import io
import logging
import math
import posixpath
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from wa_analyzer.domain.errors import PackingError

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_BYTES = 100 * 1024 * 1024
CHARS_PER_TOKEN = 4

SUPPORTED_EXTENSIONS = frozenset(
    {
        ".yaml",
        ".yml",
        ".json",
        ".tf",
        ".tfvars",
        ".hcl",
        ".ts",
        ".js",
        ".py",
        ".go",
        ".java",
        ".cs",
        ".txt",
        ".md",
        ".template",
        ".toml",
        ".ini",
        ".cfg",
        ".sh",
        ".properties",
    }
)
IGNORED_DIRECTORIES = frozenset({"__MACOSX", ".git", "node_modules", ".terraform", "cdk.out", "__pycache__"})
IGNORED_FILES = frozenset({".DS_Store", "Thumbs.db"})

SEPARATOR = "=" * 64


@dataclass(slots=True)
class UploadedFile:
    """A single file as received from the client."""

    filename: str
    content: bytes
    content_type: str | None = None


@dataclass(slots=True)
class PackedProject:
    packed_content: str
    token_count: int
    exceeds_token_limit: bool
    file_paths: list[str] = field(default_factory=list)


def estimate_tokens(text: str) -> int:
    """Approximate the number of model tokens ``text`` will use.

    Roughly four characters per token, so the estimate never decreases as
    the text grows.
    """

    return math.ceil(len(text) / CHARS_PER_TOKEN)


def normalise_path(name: str) -> str:
    cleaned = name.replace("\\", "/").strip()
    cleaned = posixpath.normpath(cleaned) if cleaned else ""
    cleaned = cleaned.lstrip("/")
    if cleaned in {"", "."}:
        raise PackingError("File name must not be empty")
    if cleaned == ".." or cleaned.startswith("../"):
        raise PackingError(f"File path escapes the upload root: {name}")
    return cleaned


def is_ignored(path: str) -> bool:
    parts = path.split("/")
    if any(part in IGNORED_DIRECTORIES for part in parts[:-1]):
        return True
    basename = parts[-1]
    return basename in IGNORED_FILES or basename.startswith(".")


def is_supported(path: str) -> bool:
    return posixpath.splitext(path)[1].lower() in SUPPORTED_EXTENSIONS


class ContentPacker:
    """Packs uploads into text; performs no I/O against any store."""

    def __init__(self, token_limit: int, *, max_file_bytes: int = DEFAULT_MAX_FILE_BYTES) -> None:
        if token_limit < 0:
            raise ValueError("token_limit must not be negative")
        self.token_limit = token_limit
        self.max_file_bytes = max_file_bytes

    def exceeds_token_limit(self, token_count: int) -> bool:
        return token_count > self.token_limit

    # ------------------------------------------------------------------
    # public entry points
    # ------------------------------------------------------------------
    def process_multiple_files(self, files: Sequence[UploadedFile]) -> PackedProject:
        if not files:
            raise PackingError("No files were provided")

        entries: list[tuple[str, str]] = []
        seen: set[str] = set()
        for upload in files:
            path = normalise_path(upload.filename)
            if path in seen:
                raise PackingError(f"Duplicate file name in upload: {path}")
            seen.add(path)
            if is_ignored(path) or not is_supported(path):
                logger.info("Skipping unsupported file %s", path)
                continue
            self._check_size(path, len(upload.content))
            entries.append((path, self._decode(path, upload.content)))

        return self._pack(entries, source="uploaded files")

    def process_zip_file(self, data: bytes, archive_name: str) -> PackedProject:
        if not data:
            raise PackingError("Archive is empty")

        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
        except (zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
            raise PackingError(f"{archive_name} is not a readable zip archive") from exc

        entries: list[tuple[str, str]] = []
        seen: set[str] = set()
        with archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                path = normalise_path(info.filename)
                if is_ignored(path) or not is_supported(path):
                    logger.debug("Skipping archive entry %s", path)
                    continue
                if path in seen:
                    raise PackingError(f"Duplicate file name in upload: {path}")
                seen.add(path)
                self._check_size(path, info.file_size)
                entries.append((path, self._decode(path, self._read_entry(archive, info, path))))

        return self._pack(entries, source=archive_name)

    def create_zip_from_files(self, files: Iterable[UploadedFile]) -> bytes:
        """Bundle the raw uploads into one deflated archive."""

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            written: set[str] = set()
            for upload in files:
                path = normalise_path(upload.filename)
                if path in written:
                    raise PackingError(f"Duplicate file name in upload: {path}")
                written.add(path)
                archive.writestr(path, upload.content)
        if not written:
            raise PackingError("No files were provided")
        return buffer.getvalue()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _check_size(self, path: str, size: int) -> None:
        if size > self.max_file_bytes:
            raise PackingError(f"{path} exceeds the maximum file size of {self.max_file_bytes} bytes")

    def _read_entry(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo, path: str) -> bytes:
        try:
            with archive.open(info) as handle:
                # declared sizes can lie, so never read past the cap
                data = handle.read(self.max_file_bytes + 1)
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError) as exc:
            raise PackingError(f"Could not read {path} from the archive") from exc
        self._check_size(path, len(data))
        return data

    @staticmethod
    def _decode(path: str, data: bytes) -> str:
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise PackingError(f"{path} is not valid UTF-8 text") from exc

    def _pack(self, entries: list[tuple[str, str]], *, source: str) -> PackedProject:
        if not entries:
            raise PackingError("No supported files found in the upload")

        paths = [path for path, _ in entries]
        lines = [
            f"This file is a merged representation of {len(entries)} file(s) from {source}.",
            'Each file is introduced by a "File:" header followed by its full contents.',
            "",
            SEPARATOR,
            "Directory Structure",
            SEPARATOR,
            *paths,
            "",
        ]
        for path, body in entries:
            lines.extend([SEPARATOR, f"File: {path}", SEPARATOR, body, ""])

        packed = "\n".join(lines)
        token_count = estimate_tokens(packed)
        logger.info("Packed %d file(s) from %s into ~%d tokens", len(entries), source, token_count)
        return PackedProject(
            packed_content=packed,
            token_count=token_count,
            exceeds_token_limit=self.exceeds_token_limit(token_count),
            file_paths=paths,
        )
