from __future__ import annotations

import io
import sys
import zipfile
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from wa_analyzer.core.packer import ContentPacker, UploadedFile, estimate_tokens
from wa_analyzer.domain.errors import PackingError


def _zip(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture()
def packer() -> ContentPacker:
    return ContentPacker(token_limit=1000)


def test_multiple_files_keep_upload_order(packer):
    files = [
        UploadedFile("b.tf", b"resource b"),
        UploadedFile("a.tf", b"resource a"),
    ]

    packed = packer.process_multiple_files(files)

    assert packed.file_paths == ["b.tf", "a.tf"]
    text = packed.packed_content
    assert "File: a.tf" in text and "File: b.tf" in text
    assert "resource a" in text and "resource b" in text
    assert text.index("File: b.tf") < text.index("File: a.tf")
    assert packer.process_multiple_files(files).packed_content == text


def test_token_count_matches_estimate(packer):
    packed = packer.process_multiple_files([UploadedFile("main.tf", b'resource "x" "y" {}')])

    assert packed.token_count == estimate_tokens(packed.packed_content)
    assert packed.exceeds_token_limit is False


def test_estimate_tokens_is_monotonic():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    sizes = [estimate_tokens("x" * n) for n in range(0, 50)]
    assert sizes == sorted(sizes)


def test_limit_is_exclusive():
    packer = ContentPacker(token_limit=10)

    assert packer.exceeds_token_limit(10) is False
    assert packer.exceeds_token_limit(11) is True


def test_small_limit_flags_packed_content():
    packed = ContentPacker(token_limit=1).process_multiple_files([UploadedFile("main.tf", b"resource a")])

    assert packed.exceeds_token_limit is True


def test_zip_entries_are_packed_in_archive_order(packer):
    archive = _zip(
        {
            "project/main.tf": b"resource main",
            "project/modules/vpc.tf": b"resource vpc",
            "project/diagram.png": b"\x89PNG\r\n",
            "__MACOSX/project/._main.tf": b"\x00\x01",
            "project/.env": b"SECRET=1",
        }
    )

    packed = packer.process_zip_file(archive, "project.zip")

    assert packed.file_paths == ["project/main.tf", "project/modules/vpc.tf"]
    assert "project.zip" in packed.packed_content
    assert "resource vpc" in packed.packed_content


def test_corrupt_archive_fails(packer):
    with pytest.raises(PackingError):
        packer.process_zip_file(b"definitely not a zip", "broken.zip")


def test_archive_without_supported_files_fails(packer):
    with pytest.raises(PackingError):
        packer.process_zip_file(_zip({"diagram.png": b"\x89PNG"}), "images.zip")


def test_empty_inputs_fail(packer):
    with pytest.raises(PackingError):
        packer.process_multiple_files([])
    with pytest.raises(PackingError):
        packer.process_zip_file(b"", "empty.zip")


def test_oversized_entries_fail():
    packer = ContentPacker(token_limit=1000, max_file_bytes=8)

    with pytest.raises(PackingError):
        packer.process_multiple_files([UploadedFile("main.tf", b"resource too large")])
    with pytest.raises(PackingError):
        packer.process_zip_file(_zip({"main.tf": b"resource too large"}), "big.zip")


def test_undecodable_entry_fails_whole_pack(packer):
    files = [UploadedFile("ok.tf", b"resource ok"), UploadedFile("bad.tf", b"\xff\xfe\xfa")]

    with pytest.raises(PackingError):
        packer.process_multiple_files(files)


def test_duplicate_and_escaping_names_fail(packer):
    with pytest.raises(PackingError):
        packer.process_multiple_files([UploadedFile("a.tf", b"a"), UploadedFile("./a.tf", b"b")])
    with pytest.raises(PackingError):
        packer.process_multiple_files([UploadedFile("../a.tf", b"a")])

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("x/a.tf", b"resource a")
        archive.writestr("x/./a.tf", b"resource b")
    with pytest.raises(PackingError):
        packer.process_zip_file(buffer.getvalue(), "dupes.zip")
    with pytest.raises(PackingError):
        packer.process_zip_file(_zip({"../escape.tf": b"resource a"}), "escape.zip")


def test_create_zip_from_files_preserves_raw_bytes(packer):
    files = [UploadedFile("a.tf", b"resource a"), UploadedFile("nested/b.yaml", b"Resources: {}")]

    archive = zipfile.ZipFile(io.BytesIO(packer.create_zip_from_files(files)))

    assert archive.namelist() == ["a.tf", "nested/b.yaml"]
    assert archive.read("nested/b.yaml") == b"Resources: {}"
