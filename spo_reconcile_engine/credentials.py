"""
Credential Store — Per-domain SharePoint credentials.

Credentials are stored in:
    ~/.spo_reconcile_engine/credentials.json

Each entry is keyed by network domain (e.g. ``contoso.sharepoint.com``) and
holds either a browser cookie pair (FedAuth + rtFa) or certificate-based app
credentials (tenant id, client id, base64 PFX path). Migrations span two
tenants, so a run typically needs one entry per side.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CONFIG_DIR = Path.home() / ".spo_reconcile_engine"
_CREDENTIALS_FILE = _CONFIG_DIR / "credentials.json"


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class CookieCredential:
    """Session cookies captured from a signed-in browser."""
    fed_auth: str
    rt_fa: str
    expires_at: Optional[datetime] = None

    @property
    def is_valid(self) -> bool:
        if not self.fed_auth or not self.rt_fa:
            return False
        if self.expires_at is not None:
            expires = self.expires_at
            if expires.tzinfo is None:
                expires = expires.replace(tzinfo=timezone.utc)
            return expires > datetime.now(timezone.utc)
        return True

    def as_cookies(self) -> dict[str, str]:
        return {"FedAuth": self.fed_auth, "rtFa": self.rt_fa}


@dataclass
class CertificateCredential:
    """App registration with a certificate, for app-only tokens."""
    tenant_id: str
    client_id: str
    cert_path: str = "./base64.txt"    # Path to the base64-encoded PFX certificate
    cert_password: str = ""            # Empty: read SPO_CERT_PASSWORD or prompt

    def resolve_cert_path(self) -> str:
        """Return absolute cert path, resolving ~ and relative paths."""
        p = Path(self.cert_path).expanduser()
        if not p.is_absolute():
            p = Path.cwd() / p
        return str(p)


@dataclass
class DomainCredential:
    domain: str
    cookies: Optional[CookieCredential] = None
    certificate: Optional[CertificateCredential] = None
    notes: str = ""

    @property
    def kind(self) -> str:
        if self.certificate:
            return "certificate"
        if self.cookies:
            return "cookies"
        return "none"

    def to_dict(self) -> dict:
        data: dict = {"notes": self.notes}
        if self.cookies:
            data["cookies"] = {
                "fed_auth": self.cookies.fed_auth,
                "rt_fa": self.cookies.rt_fa,
                "expires_at": self.cookies.expires_at.isoformat() if self.cookies.expires_at else None,
            }
        if self.certificate:
            data["certificate"] = {
                "tenant_id": self.certificate.tenant_id,
                "client_id": self.certificate.client_id,
                "cert_path": self.certificate.cert_path,
            }
        return data

    @classmethod
    def from_dict(cls, domain: str, data: dict) -> "DomainCredential":
        cookies = None
        if data.get("cookies"):
            c = data["cookies"]
            expires = c.get("expires_at")
            cookies = CookieCredential(
                fed_auth=c["fed_auth"],
                rt_fa=c["rt_fa"],
                expires_at=datetime.fromisoformat(expires) if expires else None,
            )
        certificate = None
        if data.get("certificate"):
            c = data["certificate"]
            certificate = CertificateCredential(
                tenant_id=c["tenant_id"],
                client_id=c["client_id"],
                cert_path=c.get("cert_path", "./base64.txt"),
            )
        return cls(domain=domain, cookies=cookies, certificate=certificate, notes=data.get("notes", ""))


@dataclass
class CredentialStore:
    """Manages per-domain credentials on disk."""
    credentials: dict[str, DomainCredential] = field(default_factory=dict)
    path: Path = _CREDENTIALS_FILE

    # --- Persistence ---

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "CredentialStore":
        """Load credentials from disk. Returns empty store if file doesn't exist."""
        path = Path(path) if path else _CREDENTIALS_FILE
        if not path.exists():
            return cls(path=path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            store = cls(path=path)
            for domain, entry in data.get("domains", {}).items():
                store.credentials[domain.lower()] = DomainCredential.from_dict(domain.lower(), entry)
            return store
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            print(f"  ⚠  Failed to parse {path.name}: {e}")
            return cls(path=path)

    def save(self) -> None:
        """Persist credentials to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "domains": {
                domain: cred.to_dict()
                for domain, cred in sorted(self.credentials.items())
            },
        }
        self.path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")

    # --- CRUD ---

    def add(self, credential: DomainCredential) -> None:
        """Add or overwrite the credential for a domain."""
        credential.domain = credential.domain.lower()
        self.credentials[credential.domain] = credential
        self.save()

    def remove(self, domain: str) -> bool:
        """Remove a domain's credential. Returns True if it existed."""
        key = domain.lower()
        if key not in self.credentials:
            return False
        del self.credentials[key]
        self.save()
        return True

    def get(self, domain: str) -> Optional[DomainCredential]:
        """Get a credential by domain (case-insensitive)."""
        return self.credentials.get(domain.lower())

    def list_credentials(self) -> list[DomainCredential]:
        """Return all credentials sorted by domain."""
        return sorted(self.credentials.values(), key=lambda c: c.domain)
