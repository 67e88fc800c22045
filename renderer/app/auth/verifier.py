"""
Credential verification.

The engine treats authentication as a black box: the verifier accepts
or rejects a bearer credential and nothing else. It does not issue
tokens, manage sessions or interpret claims.

Verifiers:
- ``StaticTokenVerifier``: constant-time comparison against a
  configured set of API keys.
- ``HttpTokenVerifier``: delegates to an external introspection
  endpoint over HTTP.
- ``DisabledVerifier``: accepts everything. For local development only.

Rejection is signalled by raising ``Unauthorized``. An unreachable or
misbehaving authority raises ``AuthVerifierUnavailable``; neither is
retried.
"""

from __future__ import annotations

import hmac
import logging
from typing import Iterable, Optional, Protocol

import httpx

from renderer.app.errors import AuthVerifierUnavailable, Unauthorized

logger = logging.getLogger("renderer.auth")


class AuthVerifier(Protocol):
    async def verify(self, token: Optional[str]) -> None:
        ...


class StaticTokenVerifier:
    def __init__(self, tokens: Iterable[str]) -> None:
        self._tokens = tuple(t.encode("utf-8") for t in tokens if t)
        if not self._tokens:
            raise ValueError("StaticTokenVerifier requires at least one token")

    async def verify(self, token: Optional[str]) -> None:
        if not token:
            raise Unauthorized("Missing credential")

        candidate = token.encode("utf-8")
        matched = False
        # Compare against every key so timing does not reveal which matched
        for known in self._tokens:
            matched |= hmac.compare_digest(candidate, known)

        if not matched:
            raise Unauthorized("Invalid credential")


class HttpTokenVerifier:
    """
    Verifies a token by POSTing it to an introspection endpoint.

    - 2xx accepts the credential.
    - 401 / 403 reject it.
    - Any other status, transport failure or timeout is reported as
      ``AuthVerifierUnavailable``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        verify_url: str,
        *,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._client = client
        self._verify_url = verify_url
        self._timeout = timeout_seconds

    async def verify(self, token: Optional[str]) -> None:
        if not token:
            raise Unauthorized("Missing credential")

        try:
            response = await self._client.post(
                self._verify_url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning("auth_verifier_timeout", extra={"url": self._verify_url})
            raise AuthVerifierUnavailable(
                f"Auth verifier timed out after {self._timeout}s"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "auth_verifier_unreachable",
                extra={"url": self._verify_url, "error": type(exc).__name__},
            )
            raise AuthVerifierUnavailable(
                f"Auth verifier unreachable: {exc}"
            ) from exc

        if response.status_code in (401, 403):
            raise Unauthorized("Credential rejected")

        if not response.is_success:
            logger.warning(
                "auth_verifier_unexpected_status",
                extra={"status_code": response.status_code},
            )
            raise AuthVerifierUnavailable(
                f"Auth verifier returned HTTP {response.status_code}"
            )


class DisabledVerifier:
    def __init__(self) -> None:
        logger.warning("auth_verification_disabled")

    async def verify(self, token: Optional[str]) -> None:
        return
