"""
SharePoint Online Reconciliation Engine
=======================================
An administrative client for SharePoint Online that audits and reconciles
content across site collections and tenant migrations: document compare,
permission audit and navigation settings checks.

The engine is read-oriented. The only write it can perform is applying
navigation settings, and only when explicitly enabled.
"""

__version__ = "1.0.0"
__author__ = "SPO Reconcile Engine"
__mode__ = "READ-ORIENTED"
