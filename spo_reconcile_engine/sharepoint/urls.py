"""URL helpers for SharePoint site addresses."""

from __future__ import annotations

from urllib.parse import quote, urlparse


def domain_of(url: str) -> str:
    """Network domain (host) of an absolute URL, lowercased."""
    return (urlparse(url).hostname or "").lower()


def server_relative_path(site_url: str) -> str:
    """``https://contoso.sharepoint.com/sites/hr`` → ``/sites/hr`` (``""`` for the root)."""
    return urlparse(site_url).path.rstrip("/")


def site_collection_url(site_url: str) -> str:
    """Site collection that contains ``site_url``: ``/sites/x``, ``/teams/x`` or the host root."""
    parsed = urlparse(site_url)
    root = f"{parsed.scheme}://{parsed.netloc}"
    segments = [s for s in parsed.path.split("/") if s]
    if len(segments) >= 2 and segments[0].lower() in ("sites", "teams"):
        return f"{root}/{segments[0]}/{segments[1]}"
    return root


def absolute_url(site_url: str, server_relative_url: str) -> str:
    parsed = urlparse(site_url)
    return f"{parsed.scheme}://{parsed.netloc}{server_relative_url}"


def odata_literal(value: str) -> str:
    """Percent-encode a value for use inside an OData ``('...')`` literal."""
    return quote(value.replace("'", "''"), safe="")


def same_url(a: str, b: str) -> bool:
    return a.rstrip("/").lower() == b.rstrip("/").lower()
