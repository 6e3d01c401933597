"""Comparison key derivation."""

from __future__ import annotations

import pytest

from spo_reconcile_engine.reconcile import normalize

SITE = "https://contoso.sharepoint.com/sites/hr"


@pytest.mark.parametrize("path,expected", [
    ("/sites/hr/Shared Documents/Policies/Leave.docx", "policies/leave.docx"),
    ("/sites/hr/Shared Documents/Leave.docx", "leave.docx"),
    ("/sites/HR/Shared Documents/A/B/c.TXT", "a/b/c.txt"),
    ("/sites/hr/Shared Documents", ""),
    ("/sites/hr/Shared Documents/", ""),
])
def test_strips_site_and_library_segment(path, expected):
    assert normalize(path, SITE, "Documents") == expected


def test_library_url_name_differs_from_title():
    # Site prefix strategy does not depend on the title at all
    assert normalize("/sites/hr/Lib1/a/1.txt", SITE, "Project Files") == "a/1.txt"
    assert normalize("/sites/hr/ProjectFiles/a/1.txt", SITE, "Project Files") == "a/1.txt"


def test_title_segment_when_site_prefix_does_not_match():
    path = "/sites/archive/Project Files/2023/report.pdf"
    assert normalize(path, SITE, "Project Files") == "2023/report.pdf"


def test_title_without_spaces():
    path = "/sites/archive/ProjectFiles/2023/report.pdf"
    assert normalize(path, SITE, "Project Files") == "2023/report.pdf"


def test_title_must_be_a_whole_segment():
    path = "/sites/archive/OldDocuments/x.txt"
    assert normalize(path, SITE, "Documents") == path.lower()


def test_fallback_is_whole_path_lowercased():
    assert normalize("/teams/other/Stuff/X.txt", SITE, "Documents") == "/teams/other/stuff/x.txt"


def test_root_site_anchor():
    root = "https://contoso.sharepoint.com"
    assert normalize("/Shared Documents/a/B.txt", root, "Documents") == "a/b.txt"


def test_percent_sequences_are_not_decoded():
    key = normalize("/sites/hr/Shared Documents/a%2Eb/c%20d.txt", SITE, "Documents")
    assert key == "a%2eb/c%20d.txt"


def test_deterministic_regardless_of_call_order():
    inputs = [
        ("/sites/hr/Docs/a.txt", SITE, "Docs"),
        ("/sites/x/Docs/b.txt", SITE, "Docs"),
        ("/other/c.txt", SITE, "Docs"),
    ]
    first = [normalize(*args) for args in inputs]
    second = [normalize(*args) for args in reversed(inputs)][::-1]
    assert first == second
