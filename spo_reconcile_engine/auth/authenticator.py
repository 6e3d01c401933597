"""
Authentication module — Certificate-based app-only tokens for SharePoint.
Uses MSAL for token acquisition against Microsoft Identity Platform.
"""

from __future__ import annotations

import base64
import getpass
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal

from ..credentials import CertificateCredential

logger = logging.getLogger("spo_reconcile_engine.auth")

CERT_PASSWORD_ENV = "SPO_CERT_PASSWORD"


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


def sharepoint_scopes(domain: str) -> list[str]:
    """App-only scope for a SharePoint host, e.g. contoso.sharepoint.com."""
    return [f"https://{domain}/.default"]


def load_certificate(cert_path: str, password: str) -> tuple[str, str]:
    """Return ``(private_key_pem, thumbprint)`` from a base64-encoded PFX file."""
    try:
        with open(cert_path, "r") as f:
            cert_base64 = f.read().strip()

        cert_bytes = base64.b64decode(cert_base64)
        password_bytes = password.encode("utf-8") if password else None

        private_key, certificate, _ = pkcs12.load_key_and_certificates(
            cert_bytes, password_bytes
        )

        private_key_pem = private_key.private_bytes(
            Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
        ).decode("utf-8")

        thumbprint = certificate.fingerprint(SHA1()).hex()
        logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")
        return private_key_pem, thumbprint

    except FileNotFoundError:
        raise AuthenticationError(f"Certificate file not found: {cert_path}")
    except Exception as e:
        raise AuthenticationError(f"Failed to load certificate: {e}")


class Authenticator:
    """
    Handles MSAL-based app-only authentication for SharePoint Online.
    One instance per certificate credential; tokens are cached by MSAL per
    scope, so repeated calls for the same domain do not hit the network.
    """

    def __init__(self, credential: CertificateCredential):
        self.credential = credential
        self._app: Optional[msal.ConfidentialClientApplication] = None

    def _password(self) -> str:
        password = self.credential.cert_password or os.environ.get(CERT_PASSWORD_ENV, "")
        if not password:
            password = getpass.getpass("Enter the certificate password: ")
        return password

    def _application(self) -> msal.ConfidentialClientApplication:
        if self._app is None:
            logger.info("Authenticating with certificate-based app credentials...")
            private_key_pem, thumbprint = load_certificate(
                self.credential.resolve_cert_path(), self._password()
            )
            self._app = msal.ConfidentialClientApplication(
                client_id=self.credential.client_id,
                authority=f"https://login.microsoftonline.com/{self.credential.tenant_id}",
                client_credential={
                    "thumbprint": thumbprint,
                    "private_key": private_key_pem,
                },
            )
        return self._app

    def acquire_token(self, domain: str) -> str:
        """Acquire an app-only access token for the SharePoint host ``domain``."""
        result = self._application().acquire_token_for_client(scopes=sharepoint_scopes(domain))

        if "access_token" in result:
            logger.info(f"Certificate authentication successful for {domain}.")
            return result["access_token"]
        error = result.get("error_description", result.get("error", "Unknown"))
        raise AuthenticationError(f"Certificate auth failed for {domain}: {error}")
