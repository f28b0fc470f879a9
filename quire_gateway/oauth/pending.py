"""Single-use store for authorizations waiting on the upstream callback."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Optional

from quire_gateway.oauth.upstream import generate_state

logger = logging.getLogger(__name__)

PENDING_REQUEST_TTL = 10 * 60


@dataclass(frozen=True)
class AuthorizationRequest:
    """What the downstream client asked for when it started the flow."""
    client_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str = "S256"
    scopes: tuple[str, ...] = ()
    state: Optional[str] = None


@dataclass(frozen=True)
class PendingAuthorization:
    request: AuthorizationRequest
    created_at: float = field(default=0.0)


class PendingAuthorizationStore:
    """Maps a gateway-generated ``state`` to the request it belongs to.

    ``consume`` reads and removes the entry with a single ``dict.pop`` and no
    await in between, so two racing callbacks for one state get exactly one
    hit between them.
    """

    def __init__(self, ttl: float = PENDING_REQUEST_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, PendingAuthorization] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def create(self, request: AuthorizationRequest) -> str:
        state = generate_state()
        self._entries[state] = PendingAuthorization(request=request, created_at=self._clock())
        return state

    def consume(self, state: str) -> Optional[AuthorizationRequest]:
        entry = self._entries.pop(state, None)
        if entry is None:
            return None
        if self._clock() - entry.created_at > self._ttl:
            logger.info("Pending authorization for client %s expired", entry.request.client_id)
            return None
        return entry.request

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [s for s, e in list(self._entries.items()) if now - e.created_at > self._ttl]
        for state in expired:
            self._entries.pop(state, None)
        return len(expired)
