"""
Permission Assignment Collector
Finds explicit (unique) role assignments on a site, its lists, and the
folders and items inside them.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..config import CSOM_BATCH_SIZE, DEFAULT_PAGE_SIZE, LIMITED_ACCESS_ROLE, PermissionScope
from ..models import (
    PRINCIPAL_TYPES,
    ListInfo,
    PermissionAssignment,
    PermissionObjectType,
    RemoteItem,
)
from ..parsing import get_bool, get_collection, get_dict, get_int, get_str, unwrap_verbose
from ..sharepoint.client import SharePointAPIError, SharePointClient
from ..sharepoint.csom import BatchPropertyChecker
from ..sharepoint.paging import EnumerationError, PagedListFetcher
from ..sharepoint.urls import absolute_url, odata_literal, same_url, site_collection_url
from .base import BaseCollector

logger = logging.getLogger("spo_reconcile_engine.collectors.permissions")

ROLE_EXPAND = {"$expand": "Member,RoleDefinitionBindings"}


def filter_roles(names: list[str]) -> list[str]:
    """Drop the baseline Limited Access role (case-insensitive) and blanks."""
    return [n for n in names if n and n.lower() != LIMITED_ACCESS_ROLE.lower()]


class PermissionContext:
    """Where a batch of role assignments belongs."""

    def __init__(
        self,
        site_url: str,
        site_title: str,
        object_type: PermissionObjectType,
        object_title: str,
        object_url: str,
        object_path: str = "",
        inherited: bool = False,
        inherited_from: str = "",
    ):
        self.site_url = site_url
        self.site_title = site_title
        self.object_type = object_type
        self.object_title = object_title
        self.object_url = object_url
        self.object_path = object_path
        self.inherited = inherited
        self.inherited_from = inherited_from


def parse_role_assignments(data: Any, ctx: PermissionContext) -> list[PermissionAssignment]:
    """
    Turn a roleassignments payload into PermissionAssignments.
    Assignments left with no roles after filtering are discarded.
    """
    assignments = []
    for ra in get_collection(data):
        member = get_dict(ra, "Member")
        roles = filter_roles([get_str(b, "Name") for b in get_collection(ra, "RoleDefinitionBindings")])
        if not roles:
            continue
        assignments.append(PermissionAssignment(
            principal_name=get_str(member, "Title"),
            principal_login=get_str(member, "LoginName"),
            principal_type=PRINCIPAL_TYPES.get(get_int(member, "PrincipalType"), "Unknown"),
            object_type=ctx.object_type,
            object_title=ctx.object_title,
            object_url=ctx.object_url,
            object_path=ctx.object_path,
            roles=roles,
            site_url=ctx.site_url,
            site_title=ctx.site_title,
            site_collection_url=site_collection_url(ctx.site_url),
            inherited=ctx.inherited,
            inherited_from=ctx.inherited_from,
        ))
    return assignments


class PermissionAssignmentCollector(BaseCollector):
    """
    Site and list scope check the object's HasUniqueRoleAssignments flag
    directly. Folder and item scope enumerate rows cheaply, confirm which
    ids really have unique permissions through a batched CSOM check, and
    fetch role assignments for that subset only.
    """

    name = "permissions"
    description = "Unique permission assignments for sites, lists, folders and items"

    def __init__(
        self,
        client: SharePointClient,
        batch_size: int = CSOM_BATCH_SIZE,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        super().__init__(client)
        self.page_size = page_size
        self.fetcher = PagedListFetcher(client)
        self.checker = BatchPropertyChecker(client, batch_size=batch_size)
        self.site_title = ""

    @property
    def errors(self) -> list[str]:
        return self.result.errors

    @property
    def warnings(self) -> list[str]:
        return self.result.warnings

    async def collect(self, site_url: str, scope: PermissionScope) -> list[PermissionAssignment]:
        """
        All reportable assignments for ``site_url`` under ``scope``.
        Raises SharePointAPIError only if the web itself cannot be read.
        """
        result = self._begin(site_url)
        site = site_url.rstrip("/")
        assignments: list[PermissionAssignment] = []

        web = await self.client.get_result(
            f"{site}/_api/web",
            params={"$select": "Title,Url,HasUniqueRoleAssignments,ServerRelativeUrl"},
        )
        if not web.ok:
            raise SharePointAPIError(0, f"Cannot read site: {web.error_message}", site)
        web_data = unwrap_verbose(web.data)
        self.site_title = get_str(web_data, "Title")

        if scope.include_site:
            assignments.extend(await self._collect_web(site, web_data, scope))

        if scope.wants_lists:
            try:
                lists = await self.client.get_lists(site)
            except SharePointAPIError as e:
                result.add_error(f"Failed to list lists on {site}: {e}")
                lists = []
            for lst in lists:
                if lst.hidden and not scope.include_hidden_lists:
                    continue
                if scope.include_lists:
                    assignments.extend(await self._collect_list(site, lst, scope))
                if scope.include_folders or scope.include_items:
                    assignments.extend(await self._collect_items(site, lst, scope))

        result.count("assignments", len(assignments))
        result.finish()
        return assignments

    async def _fetch_roles(self, url: str, ctx: PermissionContext) -> list[PermissionAssignment]:
        response = await self.client.get_result(url, params=ROLE_EXPAND)
        self.result.count("role_fetches")
        if not response.ok:
            self.result.add_warning(f"Role assignments unavailable for {ctx.object_url}: {response.error_message}")
            return []
        return parse_role_assignments(response.data, ctx)

    async def _collect_web(self, site: str, web: dict, scope: PermissionScope) -> list[PermissionAssignment]:
        unique = get_bool(web, "HasUniqueRoleAssignments")
        self.result.count("objects_checked")
        if not unique and not scope.include_inherited:
            return []

        collection = site_collection_url(site)
        if same_url(site, collection):
            object_type = PermissionObjectType.SITE_COLLECTION
        elif get_str(web, "ServerRelativeUrl").count("/") > 2:
            object_type = PermissionObjectType.SUBSITE
        else:
            object_type = PermissionObjectType.SITE

        ctx = PermissionContext(
            site_url=site,
            site_title=self.site_title,
            object_type=object_type,
            object_title=self.site_title,
            object_url=get_str(web, "Url", site),
            object_path=get_str(web, "ServerRelativeUrl"),
            inherited=not unique,
            inherited_from="" if unique or object_type == PermissionObjectType.SITE_COLLECTION else collection,
        )
        return await self._fetch_roles(f"{site}/_api/web/roleassignments", ctx)

    def _list_url(self, site: str, lst: ListInfo) -> str:
        return f"{site}/_api/web/lists/GetByTitle('{odata_literal(lst.title)}')"

    async def _collect_list(self, site: str, lst: ListInfo, scope: PermissionScope) -> list[PermissionAssignment]:
        info = await self.client.get_result(
            self._list_url(site, lst),
            params={
                "$select": "Title,HasUniqueRoleAssignments,RootFolder/ServerRelativeUrl",
                "$expand": "RootFolder",
            },
        )
        self.result.count("objects_checked")
        if not info.ok:
            self.result.add_error(f"Failed to read list '{lst.title}': {info.error_message}")
            return []

        data = unwrap_verbose(info.data)
        unique = get_bool(data, "HasUniqueRoleAssignments")
        if not unique and not scope.include_inherited:
            return []

        root = get_str(get_dict(data, "RootFolder"), "ServerRelativeUrl") or lst.server_relative_url
        ctx = PermissionContext(
            site_url=site,
            site_title=self.site_title,
            object_type=PermissionObjectType.LIBRARY if lst.is_library else PermissionObjectType.LIST,
            object_title=lst.title,
            object_url=absolute_url(site, root) if root else site,
            object_path=root,
            inherited=not unique,
            inherited_from="" if unique else site,
        )
        return await self._fetch_roles(f"{self._list_url(site, lst)}/roleassignments", ctx)

    def _wanted(self, item: RemoteItem, scope: PermissionScope) -> bool:
        if item.id <= 0:
            return False
        return scope.include_folders if item.is_folder else scope.include_items

    async def _collect_items(self, site: str, lst: ListInfo, scope: PermissionScope) -> list[PermissionAssignment]:
        try:
            rows = await self.fetcher.collect(site, lst.title, page_size=self.page_size)
        except EnumerationError as e:
            self.result.add_error(
                f"Item scan of '{lst.title}' stopped after {e.items_yielded} items: {e.__cause__ or e}"
            )
            return []

        candidates = {item.id: item for item in rows if self._wanted(item, scope)}
        self.result.count("items_scanned", len(rows))
        if not candidates:
            return []

        failed_before = self.checker.failed_batches
        unique_ids = await self.checker.check_flags(site, lst.title, list(candidates))
        if self.checker.failed_batches > failed_before:
            self.result.add_warning(
                f"{self.checker.failed_batches - failed_before} permission check batch(es) "
                f"failed for '{lst.title}'; affected items were not checked"
            )
        self.result.count("unique_items", len(unique_ids))

        assignments = []
        for item_id in sorted(unique_ids):
            item = candidates[item_id]
            if item.is_folder:
                object_type = PermissionObjectType.FOLDER
            elif lst.is_library:
                object_type = PermissionObjectType.DOCUMENT
            else:
                object_type = PermissionObjectType.LIST_ITEM
            ctx = PermissionContext(
                site_url=site,
                site_title=self.site_title,
                object_type=object_type,
                object_title=item.name,
                object_url=absolute_url(site, item.server_relative_url),
                object_path=item.server_relative_url,
            )
            assignments.extend(await self._fetch_roles(
                f"{self._list_url(site, lst)}/items({item_id})/roleassignments", ctx
            ))
        return assignments
