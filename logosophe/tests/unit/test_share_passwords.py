from __future__ import annotations

from logosophe.services.media import hash_share_password, media_type_for, verify_share_password


def test_share_password_hash_is_salted() -> None:
    # The same password hashes differently per link.
    first = hash_share_password("open sesame")
    second = hash_share_password("open sesame")
    assert first != second
    assert first.startswith("pbkdf2_sha256$")
    assert "open sesame" not in first


def test_verify_share_password() -> None:
    stored = hash_share_password("open sesame")
    assert verify_share_password("open sesame", stored) is True
    assert verify_share_password("wrong", stored) is False
    assert verify_share_password(None, stored) is False


def test_unprotected_links_need_no_password() -> None:
    assert verify_share_password(None, None) is True
    assert verify_share_password("anything", None) is True


def test_malformed_hash_never_verifies() -> None:
    assert verify_share_password("x", "not-a-hash") is False


def test_media_type_from_content_type() -> None:
    assert media_type_for("image/png") == "image"
    assert media_type_for("video/mp4") == "video"
    assert media_type_for("audio/mpeg") == "audio"
    assert media_type_for("application/pdf") == "document"
