from __future__ import annotations

import itertools
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from wa_analyzer.core import hashing
from wa_analyzer.core.keys import (
    extension_for_template_type,
    iac_document_key,
    storage_locations,
    supporting_document_key,
    supporting_document_metadata_key,
)


def _all_keys(user_id: str, file_id: str) -> set[str]:
    locations = storage_locations(user_id, file_id)
    return {
        locations.metadata,
        locations.original_content,
        locations.analysis_results,
        locations.packed_content,
        iac_document_key(user_id, file_id, "yaml"),
        supporting_document_key(user_id, file_id, "doc"),
        supporting_document_metadata_key(user_id, file_id, "doc"),
    }


def test_locations_follow_documented_layout():
    locations = storage_locations("user", "file")

    assert locations.prefix == "user/file"
    assert locations.metadata == "user/file/metadata.json"
    assert locations.original_content == "user/file/original_content"
    assert locations.analysis_results == "user/file/analysis/analysis_results.json"
    assert locations.packed_content == "user/file/packed_content"
    assert iac_document_key("user", "file", ".tf") == "user/file/iac_templates/generated_template.tf"
    assert supporting_document_key("user", "file", "abc") == "user/file/supporting_documents/abc"
    assert supporting_document_metadata_key("user", "file", "abc") == (
        "user/file/supporting_documents/abc_metadata.json"
    )


def test_locations_are_deterministic():
    assert storage_locations("u1", "f1") == storage_locations("u1", "f1")


def test_distinct_pairs_never_share_keys():
    users = [hashing.create_user_id_hash(f"user{i}@example.com") for i in range(3)]
    files = ["abc", "abcd", hashing.create_file_id_hash("main.tf", 1)]
    pairs = list(itertools.product(users, files))

    for first, second in itertools.combinations(pairs, 2):
        assert not _all_keys(*first) & _all_keys(*second)


@pytest.mark.parametrize("user_id, file_id", [("", "f"), ("u", ""), ("a/b", "f"), ("u", "x/y")])
def test_invalid_segments_are_rejected(user_id, file_id):
    with pytest.raises(ValueError):
        storage_locations(user_id, file_id)


def test_listing_prefix_is_slash_terminated():
    assert storage_locations("u", "abc").listing_prefix == "u/abc/"


@pytest.mark.parametrize(
    "template_type, extension",
    [
        ("CloudFormation YAML", "yaml"),
        ("cloudformation-json", "json"),
        ("terraform", "tf"),
        ("", "tf"),
    ],
)
def test_extension_for_template_type(template_type, extension):
    assert extension_for_template_type(template_type) == extension


def test_user_id_hash_normalises_email():
    assert hashing.create_user_id_hash("A@B.com ") == hashing.create_user_id_hash("a@b.com")
    assert hashing.create_user_id_hash("a@b.com") != hashing.create_user_id_hash("c@b.com")


def test_file_id_hash_depends_on_timestamp():
    assert hashing.create_file_id_hash("main.tf", 1) == hashing.create_file_id_hash("main.tf", 1)
    assert hashing.create_file_id_hash("main.tf", 1) != hashing.create_file_id_hash("main.tf", 2)
    assert hashing.create_file_id_hash("main.tf") != hashing.create_file_id_hash("main.tf", 0)


def test_supporting_document_id_is_scoped_to_main_file():
    first = hashing.create_supporting_document_id("file-a", "doc.pdf", 5)
    second = hashing.create_supporting_document_id("file-b", "doc.pdf", 5)
    assert first != second
