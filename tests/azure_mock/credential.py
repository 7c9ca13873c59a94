"""Mock Azure credential for secretless testing.

Provides a mock ManagedIdentityCredential that returns fake tokens
without requiring Azure connectivity.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

TOKEN_VALIDITY_HOURS = 1


@dataclass
class MockAccessToken:
    """Mimics azure.core.credentials.AccessToken."""

    token: str
    expires_on: int


class MockManagedIdentityCredential:
    """Mock implementation of ManagedIdentityCredential.

    Records the identity it was created for and every token request.
    """

    def __init__(self, client_id: str | None = None) -> None:
        self._client_id = client_id
        self._get_token_calls: list[tuple[str, ...]] = []
        self.closed = False

    @property
    def client_id(self) -> str | None:
        return self._client_id

    @property
    def get_token_call_count(self) -> int:
        return len(self._get_token_calls)

    def get_token(self, *scopes: str, **kwargs: Any) -> MockAccessToken:
        """Return a fake token for the requested scopes."""
        self._get_token_calls.append(scopes)
        identity_part = self._client_id or "system-assigned"
        expires_on = datetime.now(UTC) + timedelta(hours=TOKEN_VALIDITY_HOURS)
        return MockAccessToken(
            token=f"mock-token-{len(self._get_token_calls)}-{identity_part}",
            expires_on=int(expires_on.timestamp()),
        )

    def close(self) -> None:
        self.closed = True


def create_mock_credential(client_id: str | None = None) -> MockManagedIdentityCredential:
    """Factory function to create a mock credential."""
    return MockManagedIdentityCredential(client_id=client_id)
