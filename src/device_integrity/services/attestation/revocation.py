"""
Revocation status of Android attestation certificates.

Google publishes the status of revoked attestation keys and intermediates as
a JSON document::

    {"entries": {"2c8cdddfd5e03bfc": {"status": "REVOKED",
                                      "expires": "2020-11-13",
                                      "reason": "KEY_COMPROMISE",
                                      "comment": "..."}}}

Entries are keyed by certificate serial number in lowercase hex.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from .errors import RevocationFetchError
from .trust import GOOGLE_ATTESTATION_STATUS_URL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RevocationStatus:
    status: str
    expires: Optional[str] = None
    reason: Optional[str] = None
    comment: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RevocationStatus":
        return cls(
            status=str(data.get("status", "")),
            expires=data.get("expires"),
            reason=data.get("reason"),
            comment=data.get("comment"),
        )


def serial_key(serial_number: int) -> str:
    """Revocation list key of a serial number: lowercase hex, no padding."""
    return format(serial_number, "x")


class RevocationList:
    """Mapping of certificate serial number to revocation status."""

    def __init__(self, entries: Optional[Mapping[str, RevocationStatus]] = None):
        self.entries: Dict[str, RevocationStatus] = {
            key.strip().lower(): value for key, value in (entries or {}).items()
        }

    @classmethod
    def from_json(cls, body: Any) -> "RevocationList":
        """Build from the decoded status document. Raises ValueError when malformed."""
        if not isinstance(body, Mapping):
            raise ValueError("Revocation list body is not a JSON object")
        entries = body.get("entries")
        if not isinstance(entries, Mapping):
            raise ValueError("Revocation list body has no 'entries' object")
        return cls({
            str(serial): RevocationStatus.from_dict(status if isinstance(status, Mapping) else {})
            for serial, status in entries.items()
        })

    def lookup(self, serial_number: int) -> Optional[RevocationStatus]:
        return self.entries.get(serial_key(serial_number))

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, serial_number: int) -> bool:
        return self.lookup(serial_number) is not None


class RevocationListSource(ABC):
    """Anything able to produce the current revocation list."""

    @abstractmethod
    def fetch(self) -> RevocationList:
        """Return the current list or raise RevocationFetchError."""


class StaticRevocationListSource(RevocationListSource):
    """Serves a fixed list. Used in tests and staging environments."""

    def __init__(self, revocation_list: Optional[RevocationList] = None):
        self.revocation_list = revocation_list or RevocationList()
        self.fetch_count = 0

    def fetch(self) -> RevocationList:
        self.fetch_count += 1
        return self.revocation_list


class HttpRevocationListSource(RevocationListSource):
    """
    Downloads the revocation list over HTTPS.

    Each fetch is bounded by ``timeout`` per attempt and retried up to
    ``retries`` extra times with exponential backoff.
    """

    def __init__(self, url: str = GOOGLE_ATTESTATION_STATUS_URL, timeout: float = 10.0,
                 retries: int = 2, backoff_base: float = 0.5, backoff_max: float = 5.0):
        self.url = url
        self.timeout = timeout
        self.retries = max(0, retries)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

    def fetch(self) -> RevocationList:
        attempts = self.retries + 1
        last_error = None
        for attempt in range(attempts):
            try:
                return self._fetch_once()
            except RevocationFetchError as e:
                last_error = e
                logger.warning(f"Revocation list fetch attempt {attempt + 1}/{attempts} failed: {e.detail}")
                if attempt < attempts - 1:
                    delay = min(self.backoff_base * (2 ** attempt), self.backoff_max)
                    if delay > 0:
                        time.sleep(delay)
        raise last_error

    def _fetch_once(self) -> RevocationList:
        headers = {"Cache-Control": "no-cache", "Accept": "application/json"}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(self.url, headers=headers)
        except httpx.TimeoutException as e:
            raise RevocationFetchError(f"Timed out fetching revocation list: {e}")
        except httpx.HTTPError as e:
            raise RevocationFetchError(f"Revocation list request failed: {e}")

        if response.status_code != 200:
            raise RevocationFetchError(
                f"Revocation list endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            revocation_list = RevocationList.from_json(response.json())
        except ValueError as e:
            raise RevocationFetchError(f"Invalid revocation list document: {e}")

        logger.debug(f"Fetched revocation list with {len(revocation_list)} entries")
        return revocation_list
