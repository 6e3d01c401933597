"""
Credential provider — Builds one authenticated SharePointClient per network
domain from the credential store, and keeps it for the rest of the run.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import httpx

from ..config import ThrottlePolicy
from ..credentials import CertificateCredential, CredentialStore
from ..safety.guardian import SafetyGuardian
from ..sharepoint.client import AuthenticationRequired, SharePointClient
from ..sharepoint.throttle import CancellationToken, Sleeper, interruptible_sleep
from .authenticator import AuthenticationError, Authenticator

logger = logging.getLogger("spo_reconcile_engine.auth")


class CredentialProvider:
    """
    Hands out clients keyed by domain. A domain with no credential, expired
    cookies, or a failed token request raises AuthenticationRequired; the
    failure is remembered so later pairs on that domain fail fast.
    """

    def __init__(
        self,
        store: CredentialStore,
        guardian: SafetyGuardian,
        policy: Optional[ThrottlePolicy] = None,
        cancel: Optional[CancellationToken] = None,
        sleeper: Sleeper = interruptible_sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        authenticator_factory: Callable[[CertificateCredential], Authenticator] = Authenticator,
    ):
        self.store = store
        self.guardian = guardian
        self.policy = policy
        self.cancel = cancel
        self.sleeper = sleeper
        self.transport = transport
        self.authenticator_factory = authenticator_factory
        self._clients: dict[str, SharePointClient] = {}
        self._failed: dict[str, str] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def client_for(self, domain: str) -> SharePointClient:
        key = domain.lower()
        if key in self._clients:
            return self._clients[key]
        if key in self._failed:
            raise AuthenticationRequired(key, self._failed[key])

        try:
            client = self._build(key)
        except AuthenticationRequired as e:
            self._failed[key] = e.message
            raise
        await client.open()
        self._clients[key] = client
        return client

    def mark_failed(self, domain: str, message: str) -> None:
        """Record that ``domain`` answered 401; later lookups fail fast."""
        self._failed[domain.lower()] = message

    def is_failed(self, domain: str) -> bool:
        return domain.lower() in self._failed

    def _build(self, domain: str) -> SharePointClient:
        credential = self.store.get(domain)
        if credential is None:
            raise AuthenticationRequired(domain, f"No credentials stored for {domain}")

        access_token = None
        cookies = None
        if credential.certificate:
            try:
                access_token = self.authenticator_factory(credential.certificate).acquire_token(domain)
            except AuthenticationError as e:
                raise AuthenticationRequired(domain, str(e)) from e
        elif credential.cookies and credential.cookies.is_valid:
            cookies = credential.cookies.as_cookies()
        elif credential.cookies:
            raise AuthenticationRequired(domain, f"Cookies for {domain} are missing or expired")
        else:
            raise AuthenticationRequired(domain, f"No usable credential for {domain}")

        logger.debug(f"Building client for {domain} ({credential.kind})")
        return SharePointClient(
            domain,
            self.guardian,
            cookies=cookies,
            access_token=access_token,
            policy=self.policy,
            cancel=self.cancel,
            sleeper=self.sleeper,
            transport=self.transport,
        )

    @property
    def throttle_count(self) -> int:
        return sum(c.throttle_count for c in self._clients.values())

    def get_stats(self) -> list[dict]:
        return [c.get_stats() for c in self._clients.values()]

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
