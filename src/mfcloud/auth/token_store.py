"""
Token persistence - the single on-disk OAuth2 token set for this installation.

Tokens are plain JSON in a file only the current user can read (0o600),
inside a directory only the current user can enter (0o700). Writes go to a
temp file in the same directory and are renamed into place, so a crash or a
failed write never leaves a half-written token file behind.
"""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from mfcloud.auth.errors import StoreWriteError

logger = logging.getLogger("mfcloud.auth.token_store")

# Tokens expiring within this window count as expired.
EXPIRY_BUFFER_MS = 60_000

_DIR_MODE = 0o700
_FILE_MODE = 0o600


def now_ms() -> int:
    """Current instant in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TokenSet:
    """OAuth2 token data as persisted to disk."""

    access_token: str
    refresh_token: str
    expires_at: int
    scope: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> TokenSet:
        """Build a TokenSet from decoded JSON, rejecting anything of the wrong shape.

        Raises:
            ValueError: If a field is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        for key in ("access_token", "refresh_token", "scope"):
            if not isinstance(data.get(key), str):
                raise ValueError(f"{key!r} must be a string")
        expires_at = data.get("expires_at")
        # bool is an int subclass; true/false is not a timestamp.
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            raise ValueError("'expires_at' must be a number")
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=int(expires_at),
            scope=data["scope"],
        )

    @classmethod
    def from_token_response(
        cls,
        data: dict[str, Any],
        *,
        issued_at: int | None = None,
        fallback_refresh_token: str | None = None,
    ) -> TokenSet:
        """Parse a token endpoint response.

        ``expires_in`` is relative (seconds); it becomes an absolute
        ``expires_at`` in epoch milliseconds.

        Raises:
            ValueError: If the response lacks tokens or a positive lifetime.
        """
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token") or fallback_refresh_token
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("token response has no access_token")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise ValueError("token response has no refresh_token")
        raw_expires_in = data.get("expires_in", 3600)
        if isinstance(raw_expires_in, float) and not math.isfinite(raw_expires_in):
            raise ValueError(f"expires_in must be finite, got {raw_expires_in!r}")
        try:
            expires_in = int(raw_expires_in)
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValueError(f"invalid expires_in: {data.get('expires_in')!r}") from exc
        if expires_in <= 0:
            raise ValueError(f"expires_in must be positive, got {expires_in}")

        issued = now_ms() if issued_at is None else issued_at
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=issued + expires_in * 1000,
            scope=str(data.get("scope") or ""),
        )


class TokenStore:
    """File-based storage for the installation's token set.

    Usage::

        store = TokenStore(Path.home() / ".mf-cloud" / "tokens.json")
        tokens = store.load()
        if tokens is None or store.is_expired(tokens):
            ...  # refresh or re-authenticate
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> TokenSet | None:
        """Return the persisted tokens, or None if absent or unreadable.

        A corrupt or foreign file is treated as "no credentials" rather than
        an error.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Could not read token file %s: %s", self.path, exc)
            return None

        try:
            return TokenSet.from_dict(json.loads(raw))
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError too
            logger.warning("Ignoring malformed token file %s: %s", self.path, exc)
            return None

    def save(self, tokens: TokenSet) -> None:
        """Persist tokens atomically with owner-only permissions.

        Raises:
            StoreWriteError: If the directory or file cannot be written. The
                previous token file, if any, is left intact.
        """
        parent = self.path.parent
        tmp_path: str | None = None
        try:
            try:
                parent.mkdir(parents=True, mode=_DIR_MODE)
            except FileExistsError:
                pass
            else:
                os.chmod(parent, _DIR_MODE)

            fd, tmp_path = tempfile.mkstemp(dir=parent, prefix=".tokens-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(tokens.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, _FILE_MODE)
            os.replace(tmp_path, self.path)
            tmp_path = None
            # The rename replaced any looser pre-existing file; enforce anyway.
            os.chmod(self.path, _FILE_MODE)
        except OSError as exc:
            raise StoreWriteError(f"Could not save tokens to {self.path}: {exc}") from exc
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.debug("Could not remove temp token file %s", tmp_path)

        logger.debug("Saved tokens to %s", self.path)

    def is_expired(self, tokens: TokenSet, *, now: int | None = None) -> bool:
        """True if the access token is expired or expires within the buffer."""
        current = now_ms() if now is None else now
        return tokens.expires_at - EXPIRY_BUFFER_MS <= current
