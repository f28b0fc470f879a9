"""Dynamically registered OAuth clients."""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredClient:
    client_id: str
    client_id_issued_at: int
    redirect_uris: tuple[str, ...]
    client_name: Optional[str] = None
    grant_types: tuple[str, ...] = ("authorization_code", "refresh_token")
    response_types: tuple[str, ...] = ("code",)
    token_endpoint_auth_method: str = "none"
    scope: Optional[str] = None


class ClientsStore:
    def __init__(self) -> None:
        self._clients: dict[str, RegisteredClient] = {}

    def __len__(self) -> int:
        return len(self._clients)

    def get(self, client_id: str) -> Optional[RegisteredClient]:
        client = self._clients.get(client_id)
        logger.debug("Client lookup %s: %s", client_id, "found" if client else "not found")
        return client

    def register(
        self,
        redirect_uris: list[str],
        client_name: Optional[str] = None,
        grant_types: Optional[list[str]] = None,
        response_types: Optional[list[str]] = None,
        token_endpoint_auth_method: str = "none",
        scope: Optional[str] = None,
    ) -> RegisteredClient:
        if not redirect_uris:
            raise ValueError("redirect_uris is required")
        client = RegisteredClient(
            client_id=str(uuid.uuid4()),
            client_id_issued_at=int(time.time()),
            redirect_uris=tuple(redirect_uris),
            client_name=client_name,
            grant_types=tuple(grant_types or ("authorization_code", "refresh_token")),
            response_types=tuple(response_types or ("code",)),
            token_endpoint_auth_method=token_endpoint_auth_method,
            scope=scope,
        )
        self._clients[client.client_id] = client
        logger.info("Registered client %s (%s)", client.client_id, client_name or "unnamed")
        return client
