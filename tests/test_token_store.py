"""Tests for token persistence and expiry checks."""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from mfcloud.auth.errors import StoreWriteError
from mfcloud.auth.token_store import EXPIRY_BUFFER_MS, TokenSet, TokenStore, now_ms


def _tokens(**overrides: object) -> TokenSet:
    data = {
        "access_token": "test-access",
        "refresh_token": "test-refresh",
        "expires_at": now_ms() + 3600_000,
        "scope": "office_setting:write",
    }
    data.update(overrides)
    return TokenSet(**data)  # type: ignore[arg-type]


def _mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


# ---------------------------------------------------------------------------
# TokenSet
# ---------------------------------------------------------------------------


class TestTokenSet:
    def test_from_token_response(self) -> None:
        token = TokenSet.from_token_response(
            {
                "access_token": "abc123",
                "refresh_token": "ref456",
                "expires_in": 3600,
                "scope": "report:write",
            },
            issued_at=1_000_000,
        )
        assert token.access_token == "abc123"
        assert token.refresh_token == "ref456"
        assert token.expires_at == 1_000_000 + 3_600_000
        assert token.scope == "report:write"

    def test_from_token_response_keeps_fallback_refresh_token(self) -> None:
        token = TokenSet.from_token_response(
            {"access_token": "abc", "expires_in": 60},
            fallback_refresh_token="old-refresh",
        )
        assert token.refresh_token == "old-refresh"
        assert token.scope == ""

    @pytest.mark.parametrize("expires_in", [0, -5, "soon", float("inf"), float("nan")])
    def test_from_token_response_rejects_bad_lifetime(self, expires_in: object) -> None:
        with pytest.raises(ValueError):
            TokenSet.from_token_response(
                {"access_token": "abc", "refresh_token": "ref", "expires_in": expires_in}
            )

    def test_from_token_response_requires_access_token(self) -> None:
        with pytest.raises(ValueError, match="access_token"):
            TokenSet.from_token_response({"refresh_token": "ref", "expires_in": 60})

    def test_from_dict_rejects_boolean_expiry(self) -> None:
        with pytest.raises(ValueError, match="expires_at"):
            TokenSet.from_dict(
                {"access_token": "a", "refresh_token": "r", "expires_at": True, "scope": ""}
            )


# ---------------------------------------------------------------------------
# TokenStore
# ---------------------------------------------------------------------------


class TestTokenStore:
    def test_load_missing_file(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        assert store.load() is None

    def test_save_and_load(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        tokens = _tokens()
        store.save(tokens)
        assert store.load() == tokens

    def test_saved_file_is_plain_json(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        TokenStore(path).save(_tokens(expires_at=1234))
        data = json.loads(path.read_text())
        assert data == {
            "access_token": "test-access",
            "refresh_token": "test-refresh",
            "expires_at": 1234,
            "scope": "office_setting:write",
        }

    @pytest.mark.parametrize(
        "content",
        [
            "not json at all",
            "[1, 2, 3]",
            '"a string"',
            json.dumps({"access_token": "only-this"}),
            json.dumps({"access_token": 1, "refresh_token": "r", "expires_at": 1, "scope": ""}),
            json.dumps({"access_token": "a", "refresh_token": "r", "expires_at": "tomorrow", "scope": ""}),
        ],
    )
    def test_load_malformed_returns_none(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "tokens.json"
        path.write_text(content)
        assert TokenStore(path).load() is None

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_save_restricts_permissions(self, tmp_path: Path) -> None:
        path = tmp_path / "config" / "mf" / "tokens.json"
        TokenStore(path).save(_tokens())
        assert _mode(path) == 0o600
        assert _mode(path.parent) == 0o700

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_save_tightens_existing_file(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        path.write_text("{}")
        path.chmod(0o644)

        TokenStore(path).save(_tokens())

        assert _mode(path) == 0o600

    def test_save_overwrites_previous_tokens(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        store.save(_tokens(access_token="first"))
        store.save(_tokens(access_token="second"))
        loaded = store.load()
        assert loaded is not None
        assert loaded.access_token == "second"

    def test_failed_save_keeps_previous_file(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        original = _tokens(access_token="keep-me")
        store.save(original)

        with patch("mfcloud.auth.token_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StoreWriteError, match="disk full"):
                store.save(_tokens(access_token="lost"))

        assert store.load() == original
        leftovers = [p.name for p in tmp_path.iterdir() if p.name != "tokens.json"]
        assert leftovers == []

    def test_save_into_unwritable_location_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        store = TokenStore(blocker / "tokens.json")
        with pytest.raises(StoreWriteError):
            store.save(_tokens())

    def test_save_when_directory_appears_concurrently(self, tmp_path: Path) -> None:
        path = tmp_path / "created-elsewhere" / "tokens.json"
        store = TokenStore(path)
        real_mkdir = Path.mkdir

        def racing_mkdir(self: Path, *args: object, **kwargs: object) -> None:
            # Another process wins the race to create the directory.
            real_mkdir(self, parents=True)
            raise FileExistsError(str(self))

        with patch.object(Path, "mkdir", racing_mkdir):
            store.save(_tokens(access_token="after-race"))

        loaded = store.load()
        assert loaded is not None
        assert loaded.access_token == "after-race"


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class TestIsExpired:
    def test_fresh_token(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        now = 10_000_000
        assert not store.is_expired(_tokens(expires_at=now + EXPIRY_BUFFER_MS + 1), now=now)

    def test_within_buffer(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        now = 10_000_000
        assert store.is_expired(_tokens(expires_at=now + EXPIRY_BUFFER_MS), now=now)
        assert store.is_expired(_tokens(expires_at=now + 30_000), now=now)

    def test_past_expiry(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        assert store.is_expired(_tokens(expires_at=now_ms() - 1000))

    def test_uses_current_time_by_default(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        assert not store.is_expired(_tokens(expires_at=now_ms() + 3600_000))
