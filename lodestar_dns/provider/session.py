"""
Session client module for Lodestar-DNS.

This module wraps an HTTP transport with the session token lifecycle of the
Pi-hole v6 API and classifies the backend's answers into successes,
idempotent no-ops and errors.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from lodestar_dns.provider.errors import (
    APIError,
    BackendUnavailableError,
    ConfigurationError,
    TokenRenewalError,
)

CONTENT_TYPE_JSON = "application/json"
API_AUTH_PATH = "/api/auth"
SESSION_HEADER = "X-FTL-SID"
MAX_TOKEN_RETRIES = 3
SUCCESS_STATUS_CODES = (200, 201, 204)
ALREADY_PRESENT_MESSAGE = "Item already present"


class SessionClient:
    """
    HTTP client holding a lazily renewed session token.

    The token is the only state shared between concurrent callers; renewing
    it is serialized through a lock.
    """

    def __init__(
        self,
        server: str,
        password: str = "",
        tls_insecure_skip_verify: bool = False,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize a SessionClient.

        Use SessionClient.create() to also acquire the first token.

        Args:
            server: Root URL of the backend, e.g. http://pi.hole
            password: Secret exchanged for session tokens, empty if the
                server is not protected
            tls_insecure_skip_verify: Disable TLS certificate verification
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)

        Raises:
            ConfigurationError: If no server is configured
        """
        if not server:
            raise ConfigurationError("no pihole server found in the environment or flags")

        self.server = server.rstrip("/")
        self.password = password
        self.token = ""
        self.logger = logging.getLogger("lodestar-dns.session")
        self._token_lock = asyncio.Lock()
        self._http = httpx.AsyncClient(
            base_url=self.server,
            verify=not tls_insecure_skip_verify,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    async def create(cls, server: str, password: str = "", **kwargs: Any) -> "SessionClient":
        """
        Create a SessionClient and fetch a token if a password is configured.

        Returns:
            SessionClient: Ready to use client
        """
        client = cls(server, password, **kwargs)
        try:
            await client.retrieve_new_token()
        except BaseException:
            await client.aclose()
            raise
        return client

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Send a request, renewing the session token on 401 if needed.

        Args:
            method: HTTP method
            path: Path relative to the server root, already escaped
            payload: Optional JSON body

        Returns:
            Dict[str, Any]: Decoded JSON body, empty for idempotent no-ops

        Raises:
            APIError: On any non-success status
            TokenRenewalError: If the token could not be renewed
            BackendUnavailableError: If the server could not be reached
        """
        sent_token = self.token
        response = await self._send(method, path, payload)
        if response.status_code == 401 and sent_token:
            response = await self._renew_and_resend(method, path, payload, sent_token)
        return self._handle_response(method, path, response)

    async def retrieve_new_token(self) -> None:
        """
        Exchange the password for a new session token.
        """
        if not self.password:
            return

        self.logger.debug(f"Fetching new token from {self.server}{API_AUTH_PATH}")
        response = await self._send("POST", API_AUTH_PATH, {"password": self.password})
        body = self._handle_response("POST", API_AUTH_PATH, response)

        sid = (body.get("session") or {}).get("sid")
        if sid:
            self.token = sid
        else:
            self.logger.error("Auth response did not contain a session id")

    async def check_token_validity(self) -> bool:
        """
        Ask the backend whether the current token is still valid.

        Returns:
            bool: True if the backend reports the session as valid
        """
        if not self.token:
            return False

        response = await self._send("GET", API_AUTH_PATH)
        try:
            body = response.json()
        except ValueError as e:
            raise APIError(
                response.status_code, message=f"failed to unmarshal auth response: {e}"
            ) from e
        if not isinstance(body, dict):
            return False
        return bool((body.get("session") or {}).get("valid", False))

    async def _renew_and_resend(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]],
        sent_token: str,
    ) -> httpx.Response:
        for attempt in range(1, MAX_TOKEN_RETRIES + 1):
            async with self._token_lock:
                if self.token != sent_token:
                    self.logger.debug("Session token was renewed by another request")
                elif not await self.check_token_validity():
                    self.logger.debug(
                        f"Session token has expired, fetching a new one. "
                        f"Try ({attempt}/{MAX_TOKEN_RETRIES})"
                    )
                    await self.retrieve_new_token()
                else:
                    self.logger.debug(
                        f"Session token reported valid after a 401. "
                        f"Try ({attempt}/{MAX_TOKEN_RETRIES})"
                    )
            sent_token = self.token

            response = await self._send(method, path, payload)
            if response.status_code != 401:
                return response

        raise TokenRenewalError("max tries reached for token renewal")

    async def _send(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        headers = {"content-type": CONTENT_TYPE_JSON}
        if self.token:
            headers[SESSION_HEADER] = self.token
        try:
            return await self._http.request(method, path, headers=headers, json=payload)
        except httpx.RequestError as e:
            raise BackendUnavailableError(f"{method} {self.server}{path} failed: {e}") from e

    def _handle_response(
        self, method: str, path: str, response: httpx.Response
    ) -> Dict[str, Any]:
        status = response.status_code
        if status in SUCCESS_STATUS_CODES:
            return self._decode(response)

        # Deleting something that is already gone is not an error
        if status == 404 and method == "DELETE":
            self.logger.debug(f"{method} {path}: entry not found, nothing to delete")
            return {}

        try:
            envelope = response.json()
        except ValueError as e:
            raise APIError(status, message=f"failed to unmarshal error response: {e}") from e
        if not isinstance(envelope, dict):
            envelope = {}
        error = envelope.get("error") or {}

        if ALREADY_PRESENT_MESSAGE in str(error.get("message", "")):
            self.logger.debug(f"{method} {path}: entry already present")
            return {}

        self.logger.debug(f"Error on request {method} {self.server}{path}")
        raise APIError(
            status,
            key=str(error.get("key", "")),
            message=str(error.get("message", "")),
            hint=str(error.get("hint") or ""),
            took=float(envelope.get("took") or 0.0),
        )

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            raise APIError(
                response.status_code, message=f"failed to unmarshal response: {e}"
            ) from e
        return body if isinstance(body, dict) else {}
