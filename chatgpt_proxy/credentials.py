"""Single-slot store for the anonymous session credentials."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CredentialSet:
    """Device identifier and the sentinel token minted for it in one refresh."""

    device_id: str
    token: str

    @property
    def is_ready(self) -> bool:
        return bool(self.device_id and self.token)


class CredentialStore:
    """Holds the current credential pair.

    The refresher is the only writer; request handlers read whatever pair is
    current and never wait for a refresh. The pair is swapped as one object so
    a reader sees either the old pair or the new one.
    """

    def __init__(self, initial: Optional[CredentialSet] = None) -> None:
        self._lock = threading.Lock()
        self._current = initial

    def get(self) -> Optional[CredentialSet]:
        with self._lock:
            return self._current

    def replace(self, credentials: CredentialSet) -> Optional[CredentialSet]:
        """Install a new pair and return the one it superseded."""

        if not isinstance(credentials, CredentialSet):
            raise TypeError("credentials must be a CredentialSet")
        with self._lock:
            previous, self._current = self._current, credentials
        return previous
