"""
Navigation Settings Collector
Reads and (when admin writes are enabled) applies a web's navigation layout
flags: HorizontalQuickLaunch and MegaMenuEnabled.
"""

from __future__ import annotations

import logging

from ..models import NavigationSettings, OperationResult, OperationStatus
from ..parsing import get_bool, unwrap_verbose
from ..safety.guardian import SafetyViolation
from ..sharepoint.client import AuthenticationRequired, SharePointAPIError
from .base import BaseCollector

logger = logging.getLogger("spo_reconcile_engine.collectors.navigation")


class NavigationSettingsCollector(BaseCollector):
    name = "navigation"
    description = "Web navigation settings"

    async def collect(self, site_url: str) -> OperationResult[NavigationSettings]:
        site = site_url.rstrip("/")
        result = await self.client.get_result(
            f"{site}/_api/web",
            params={"$select": "HorizontalQuickLaunch,MegaMenuEnabled"},
        )
        if not result.ok:
            return OperationResult.failure(result.status, result.error_message)
        data = unwrap_verbose(result.data)
        return OperationResult.success(NavigationSettings(
            horizontal_quick_launch=get_bool(data, "HorizontalQuickLaunch"),
            mega_menu_enabled=get_bool(data, "MegaMenuEnabled"),
        ))

    async def apply(self, site_url: str, settings: NavigationSettings) -> OperationResult[bool]:
        """Write ``settings`` to the web with a MERGE request."""
        site = site_url.rstrip("/")
        try:
            digest = await self.client.get_form_digest(site)
            await self.client.merge_json(
                f"{site}/_api/web",
                {
                    "HorizontalQuickLaunch": settings.horizontal_quick_launch,
                    "MegaMenuEnabled": settings.mega_menu_enabled,
                },
                digest,
            )
        except AuthenticationRequired:
            raise
        except SafetyViolation as e:
            return OperationResult.failure(OperationStatus.ACCESS_DENIED, str(e))
        except SharePointAPIError as e:
            return OperationResult.failure(
                OperationStatus.from_http_status(e.status_code), e.message
            )
        logger.info(
            f"Applied navigation settings to {site}: "
            f"HorizontalQuickLaunch={settings.horizontal_quick_launch}, "
            f"MegaMenuEnabled={settings.mega_menu_enabled}"
        )
        return OperationResult.success(True)
