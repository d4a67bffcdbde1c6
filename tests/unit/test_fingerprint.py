"""Unit tests for the duplicate fingerprint definition."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from spacehook.db.models import WebhookEvent
from spacehook.webhooks.fingerprint import DEFAULT_FINGERPRINT, FingerprintSpec


def _candidate(**overrides: str) -> dict[str, str]:
    values = {
        "user_id": "u1",
        "media_url": "https://m/1",
        "media_type": "audio",
        "space_name": "Morning show",
        "tweet_url": "https://x/1",
        "ip": "198.51.100.1",
        "city": "Paris",
        "region": "IDF",
        "country": "FR",
    }
    values.update(overrides)
    return values


class TestDigest:
    def test_default_uses_media_and_tweet_url(self) -> None:
        assert DEFAULT_FINGERPRINT.fields == ("media_url", "tweet_url")

    def test_digest_is_stable_hex(self) -> None:
        digest = DEFAULT_FINGERPRINT.digest(_candidate())
        assert digest == DEFAULT_FINGERPRINT.digest(_candidate())
        assert len(digest) == 64
        int(digest, 16)

    def test_non_fingerprint_fields_are_ignored(self) -> None:
        a = DEFAULT_FINGERPRINT.digest(_candidate(user_id="u1", ip="1.1.1.1"))
        b = DEFAULT_FINGERPRINT.digest(_candidate(user_id="u2", ip="2.2.2.2"))
        assert a == b

    def test_fingerprint_fields_change_digest(self) -> None:
        a = DEFAULT_FINGERPRINT.digest(_candidate(tweet_url="https://x/1"))
        b = DEFAULT_FINGERPRINT.digest(_candidate(tweet_url="https://x/2"))
        assert a != b

    def test_field_boundaries_are_unambiguous(self) -> None:
        """('ab', 'c') and ('a', 'bc') must not collide."""
        a = DEFAULT_FINGERPRINT.digest(_candidate(media_url="ab", tweet_url="c"))
        b = DEFAULT_FINGERPRINT.digest(_candidate(media_url="a", tweet_url="bc"))
        assert a != b

    def test_ip_participates_when_configured(self) -> None:
        spec = FingerprintSpec(("media_url", "tweet_url", "ip"))
        a = spec.digest(_candidate(ip="1.1.1.1"))
        b = spec.digest(_candidate(ip="2.2.2.2"))
        assert a != b

    def test_row_and_mapping_agree(self) -> None:
        values = _candidate()
        row = WebhookEvent(**values, fingerprint="x", created_at=datetime.now(timezone.utc))
        assert DEFAULT_FINGERPRINT.values(row) == DEFAULT_FINGERPRINT.values(values)
        assert DEFAULT_FINGERPRINT.digest(row) == DEFAULT_FINGERPRINT.digest(values)


class TestDefinition:
    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown fingerprint fields"):
            FingerprintSpec(("media_url", "city"))

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValueError):
            FingerprintSpec(())

    def test_columns_follow_field_order(self) -> None:
        spec = FingerprintSpec.from_names(["tweet_url", "media_url"])
        assert [c.key for c in spec.columns()] == ["tweet_url", "media_url"]

    def test_str_names_the_definition(self) -> None:
        assert str(DEFAULT_FINGERPRINT) == "media_url+tweet_url"
