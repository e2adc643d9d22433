"""Tests for the local object storage."""

from __future__ import annotations

import pytest

from lexrag.storage import LocalObjectStorage, StorageError


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(tmp_path / "objects")


def test_upload_download_remove(storage):
    assert storage.upload("documents/a.pdf", b"%PDF") == "documents/a.pdf"
    assert storage.exists("documents/a.pdf")
    assert storage.download("documents/a.pdf") == b"%PDF"
    assert storage.remove("documents/a.pdf") is True
    assert storage.remove("documents/a.pdf") is False
    assert not storage.exists("documents/a.pdf")


def test_download_missing(storage):
    with pytest.raises(StorageError, match="not found"):
        storage.download("documents/missing.pdf")


@pytest.mark.parametrize("key", ["", "/etc/passwd", "../outside.txt", "documents\\a.pdf"])
def test_unsafe_keys_rejected(storage, key):
    with pytest.raises(StorageError):
        storage.upload(key, b"x")
