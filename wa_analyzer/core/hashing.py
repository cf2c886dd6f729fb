from __future__ import annotations

import hashlib
import time


def sha256_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def create_user_id_hash(email: str) -> str:
    """Return the stable user id for an email address.

    The address is trimmed and lower-cased first so that ``"A@B.com "`` and
    ``"a@b.com"`` map to the same user.
    """

    return sha256_text(email.strip().lower())


def create_file_id_hash(file_name: str, timestamp_ns: int | None = None) -> str:
    stamp = time.time_ns() if timestamp_ns is None else timestamp_ns
    return sha256_text(f"{file_name}{stamp}")


def create_supporting_document_id(main_file_id: str, file_name: str, timestamp_ns: int | None = None) -> str:
    stamp = time.time_ns() if timestamp_ns is None else timestamp_ns
    return sha256_text(f"supporting_{main_file_id}_{file_name}_{stamp}")
