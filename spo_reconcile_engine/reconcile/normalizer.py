"""
Comparison keys — Derives the library-relative join key for an item path.

Source and target sites rarely share the same site path or library URL
name, so items are joined on the path *inside* the library, lowercased.
"""

from __future__ import annotations

from ..sharepoint.urls import server_relative_path


def normalize(path: str, anchor_site_url: str, collection_name: str) -> str:
    """
    Return the lowercase path of ``path`` relative to its library root.

    1. Strip the site's server-relative path, then the library URL segment.
    2. Otherwise find the library title (or its no-space variant) as a path
       segment and keep what follows it.
    3. Otherwise return the whole path, lowercased.

    Items sitting directly in the library root (and the root folder itself)
    map to ``""``. Percent sequences are kept as-is: ``%2E`` may be a
    literal part of a file name.
    """
    lowered = path.lower()

    site_prefix = server_relative_path(anchor_site_url).lower() + "/"
    if lowered.startswith(site_prefix):
        after_site = path[len(site_prefix):]
        slash = after_site.find("/")
        if 0 <= slash < len(after_site) - 1:
            return after_site[slash + 1:].lower()
        return ""

    title = collection_name.lower()
    candidates = [title + "/"]
    no_spaces = title.replace(" ", "") + "/"
    if no_spaces != candidates[0]:
        candidates.append(no_spaces)

    for candidate in candidates:
        index = lowered.rfind(candidate)
        if index < 0:
            continue
        if index == 0 or path[index - 1] in ("/", " "):
            start = index + len(candidate)
            return path[start:].lower() if start < len(path) else ""

    return lowered
