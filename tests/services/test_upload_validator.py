"""Tests for upload validation against the administrator's restrictions."""

import pytest

from conftest import png_bytes
from services.config_store import ConfigStore
from services.upload_validator import UploadValidator, content_matches_mime, parse_extension_list
from shared.errors import UploadError


@pytest.fixture
def validator(config_store):
    return UploadValidator(config_store)


def test_parse_extension_list():
    assert parse_extension_list(" TXT, .pdf ,,png") == ["txt", "pdf", "png"]
    assert parse_extension_list(["MD"]) == ["md"]
    assert parse_extension_list(None) == []


@pytest.mark.parametrize(
    "data, mime, expected",
    [
        (b"%PDF-1.7", "application/pdf", True),
        (b"<html>", "application/pdf", False),
        (b"\xff\xd8\xff\xe0", "image/jpeg", True),
        (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp", True),
        ("café".encode("utf-8"), "text/plain", True),
        (b"\xff\xfe\x00", "text/csv", False),
        (b"a\x00b", "text/plain", False),
    ],
)
def test_content_matches_mime(data, mime, expected):
    assert content_matches_mime(data, mime) is expected


def test_valid_upload_returns_extension(validator):
    assert validator.validate("Photo.PNG", png_bytes()) == "png"
    assert validator.validate("notes.txt", b"hello", upload_type="background") == "txt"


def test_global_switch(validator, config_store):
    config_store.set("enable_file_uploads", "0")
    with pytest.raises(UploadError, match="File handling is disabled by administrator"):
        validator.validate("notes.txt", b"hello")
    assert validator.allowed_extensions("chat") == []


def test_per_type_switch(validator, config_store):
    config_store.set("allow_background_files", "0")
    with pytest.raises(UploadError, match="Background file uploads are disabled by administrator."):
        validator.validate("notes.txt", b"hello", upload_type="background")
    assert validator.validate("notes.txt", b"hello", upload_type="chat") == "txt"


def test_size_limit(validator):
    with pytest.raises(UploadError, match="File too large. Maximum size is 1MB."):
        validator.validate("notes.txt", b"a" * (1024 * 1024 + 1))


def test_extension_whitelist(validator):
    with pytest.raises(UploadError, match="File type 'exe' not allowed"):
        validator.validate("setup.exe", b"MZ")
    with pytest.raises(UploadError, match="File type '' not allowed"):
        validator.validate("README", b"text")


def test_content_mismatch(validator):
    with pytest.raises(UploadError, match="File content does not match extension 'pdf'."):
        validator.validate("doc.pdf", b"<html></html>")


def test_defaults_without_configuration():
    validator = UploadValidator(ConfigStore({"enable_file_uploads": "1"}))
    assert validator.max_file_size_mb() == 5
    assert "webp" in validator.allowed_extensions("chat")


def test_unknown_upload_type(validator):
    with pytest.raises(ValueError):
        validator.validate("notes.txt", b"hello", upload_type="avatar")
