"""
CSOM ProcessQuery support — Builds multiplexed client.svc requests and
demultiplexes their interleaved ``[id, result, id, result, ...]`` answers.

Used to check a scalar property (HasUniqueRoleAssignments) for hundreds of
list items in one round trip instead of one REST call per item.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import httpx

from ..config import (
    CSOM_APPLICATION_NAME,
    CSOM_BATCH_SIZE,
    CSOM_MAX_BATCH_SIZE,
    CSOM_QUERY_ID_BASE,
)
from .client import AuthenticationRequired, SharePointAPIError, SharePointClient
from .throttle import OperationCancelled

logger = logging.getLogger("spo_reconcile_engine.sharepoint.csom")

CSOM_NAMESPACE = "http://schemas.microsoft.com/sharepoint/clientquery/2009"
CSOM_SCHEMA_VERSION = "15.0.0.0"
CSOM_LIBRARY_VERSION = "16.0.0.0"
CLIENT_CONTEXT_TYPE_ID = "{3747adcd-a3c3-41b9-bfab-4a64dd2f1e0a}"

# Shared object path chain: Current → Web → Lists → GetByTitle(list)
PATH_CURRENT = 10
PATH_WEB = 20
PATH_LISTS = 30
PATH_LIST = 40

ITEM_ACTION_ID_BASE = 100     # ObjectPath action per item
ITEM_PATH_ID_BASE = 1000      # GetItemById object path per item


def query_action_id(index: int) -> int:
    """Query action id for the item at ``index`` within its batch."""
    return CSOM_QUERY_ID_BASE + index


def batch_index(action_id: int) -> int:
    """Inverse of :func:`query_action_id`."""
    return action_id - CSOM_QUERY_ID_BASE


class CsomBatchError(Exception):
    """The ProcessQuery header carried a non-null ErrorInfo."""
    def __init__(self, message: str, code: Any = None, type_name: str = ""):
        self.code = code
        self.type_name = type_name
        super().__init__(f"[{code}] {type_name}: {message}")


@dataclass
class ProcessQueryBuilder:
    """
    Accumulates action and object-path descriptors and serializes them as
    a client.svc ``<Request>`` document.
    """
    application_name: str = CSOM_APPLICATION_NAME
    _actions: list[ET.Element] = field(default_factory=list)
    _paths: list[ET.Element] = field(default_factory=list)

    def object_path_action(self, action_id: int, object_path_id: int) -> "ProcessQueryBuilder":
        self._actions.append(ET.Element(
            "ObjectPath", Id=str(action_id), ObjectPathId=str(object_path_id)
        ))
        return self

    def query_action(
        self, action_id: int, object_path_id: int, properties: Iterable[str]
    ) -> "ProcessQueryBuilder":
        outer = ET.Element("Query", Id=str(action_id), ObjectPathId=str(object_path_id))
        inner = ET.SubElement(outer, "Query", SelectAllProperties="false")
        props = ET.SubElement(inner, "Properties")
        for name in properties:
            ET.SubElement(props, "Property", Name=name, ScalarProperty="true")
        self._actions.append(outer)
        return self

    def static_property(self, path_id: int, type_id: str, name: str) -> "ProcessQueryBuilder":
        self._paths.append(ET.Element(
            "StaticProperty", Id=str(path_id), TypeId=type_id, Name=name
        ))
        return self

    def property_path(self, path_id: int, parent_id: int, name: str) -> "ProcessQueryBuilder":
        self._paths.append(ET.Element(
            "Property", Id=str(path_id), ParentId=str(parent_id), Name=name
        ))
        return self

    def method_path(
        self, path_id: int, parent_id: int, name: str, parameters: Iterable[tuple[str, Any]]
    ) -> "ProcessQueryBuilder":
        method = ET.Element("Method", Id=str(path_id), ParentId=str(parent_id), Name=name)
        params = ET.SubElement(method, "Parameters")
        for type_name, value in parameters:
            param = ET.SubElement(params, "Parameter", Type=type_name)
            param.text = str(value)
        self._paths.append(method)
        return self

    def to_xml(self) -> str:
        root = ET.Element("Request", {
            "xmlns": CSOM_NAMESPACE,
            "SchemaVersion": CSOM_SCHEMA_VERSION,
            "LibraryVersion": CSOM_LIBRARY_VERSION,
            "ApplicationName": self.application_name,
        })
        actions = ET.SubElement(root, "Actions")
        actions.extend(self._actions)
        paths = ET.SubElement(root, "ObjectPaths")
        paths.extend(self._paths)
        return ET.tostring(root, encoding="unicode")


def build_item_property_query(
    list_title: str,
    item_ids: list[int],
    property_name: str,
    application_name: str = CSOM_APPLICATION_NAME,
) -> str:
    """One request probing ``property_name`` on every item of one batch."""
    builder = ProcessQueryBuilder(application_name=application_name)
    for action_id, path_id in ((1, PATH_CURRENT), (2, PATH_WEB), (3, PATH_LISTS), (4, PATH_LIST)):
        builder.object_path_action(action_id, path_id)
    for i in range(len(item_ids)):
        builder.object_path_action(ITEM_ACTION_ID_BASE + i, ITEM_PATH_ID_BASE + i)
        builder.query_action(query_action_id(i), ITEM_PATH_ID_BASE + i, [property_name])

    builder.static_property(PATH_CURRENT, CLIENT_CONTEXT_TYPE_ID, "Current")
    builder.property_path(PATH_WEB, PATH_CURRENT, "Web")
    builder.property_path(PATH_LISTS, PATH_WEB, "Lists")
    builder.method_path(PATH_LIST, PATH_LISTS, "GetByTitle", [("String", list_title)])
    for i, item_id in enumerate(item_ids):
        builder.method_path(ITEM_PATH_ID_BASE + i, PATH_LIST, "GetItemById", [("Number", item_id)])
    return builder.to_xml()


def parse_process_query(payload: Any) -> dict[int, Any]:
    """
    Demultiplex a ProcessQuery answer into ``{action_id: result}``.

    Raises CsomBatchError when the header reports an error. Stray values
    that are not preceded by a numeric id are ignored.
    """
    if not isinstance(payload, list) or not payload:
        raise CsomBatchError("Empty or non-array ProcessQuery response")
    header = payload[0]
    error_info = header.get("ErrorInfo") if isinstance(header, dict) else None
    if error_info:
        raise CsomBatchError(
            error_info.get("ErrorMessage", "unknown"),
            error_info.get("ErrorCode"),
            error_info.get("ErrorTypeName", ""),
        )

    results: dict[int, Any] = {}
    i = 1
    while i < len(payload) - 1:
        element = payload[i]
        if isinstance(element, int) and not isinstance(element, bool):
            results[element] = payload[i + 1]
            i += 2
        else:
            i += 1
    return results


def flagged_indices(results: dict[int, Any], batch_len: int, property_name: str) -> set[int]:
    """Batch-relative indices whose query result has ``property_name`` exactly True."""
    flagged = set()
    for action_id, result in results.items():
        index = batch_index(action_id)
        if not 0 <= index < batch_len:
            continue
        if isinstance(result, dict) and result.get(property_name) is True:
            flagged.add(index)
    return flagged


class BatchPropertyChecker:
    """
    Checks a boolean item property in batches of ``batch_size`` through
    ProcessQuery. A failed batch is logged and skipped; its items count as
    not flagged.
    """

    def __init__(self, client: SharePointClient, batch_size: int = CSOM_BATCH_SIZE):
        if not 0 < batch_size <= CSOM_MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be in 1..{CSOM_MAX_BATCH_SIZE}")
        self.client = client
        self.batch_size = batch_size
        self.requests_sent = 0
        self.failed_batches = 0

    async def check_flags(
        self,
        site_url: str,
        list_title: str,
        item_ids: list[int],
        property_name: str = "HasUniqueRoleAssignments",
        form_digest: Optional[str] = None,
    ) -> set[int]:
        flagged: set[int] = set()
        if not item_ids:
            return flagged

        site = site_url.rstrip("/")
        url = f"{site}/_vti_bin/client.svc/ProcessQuery"
        if form_digest is None:
            try:
                form_digest = await self.client.get_form_digest(site)
            except (OperationCancelled, AuthenticationRequired):
                raise
            except (SharePointAPIError, httpx.HTTPError) as e:
                logger.warning(f"Form digest unavailable for {site}, sending without: {e}")
                form_digest = ""

        total_batches = (len(item_ids) + self.batch_size - 1) // self.batch_size
        for n, start in enumerate(range(0, len(item_ids), self.batch_size), start=1):
            batch = item_ids[start:start + self.batch_size]
            xml = build_item_property_query(list_title, batch, property_name)
            self.requests_sent += 1
            try:
                payload = await self.client.post_xml(url, xml, form_digest)
                results = parse_process_query(payload)
            except (OperationCancelled, AuthenticationRequired):
                raise
            except (SharePointAPIError, CsomBatchError, httpx.HTTPError) as e:
                self.failed_batches += 1
                logger.warning(
                    f"ProcessQuery batch {n}/{total_batches} for '{list_title}' failed, "
                    f"skipping {len(batch)} items: {e}"
                )
                continue

            indices = flagged_indices(results, len(batch), property_name)
            if len([k for k in results if 0 <= batch_index(k) < len(batch)]) != len(batch):
                logger.debug(
                    f"Batch {n}/{total_batches}: expected {len(batch)} query results, "
                    f"got {len(results)} entries"
                )
            flagged.update(batch[i] for i in indices)

        logger.debug(
            f"{len(flagged)} of {len(item_ids)} items in '{list_title}' have {property_name}=true"
        )
        return flagged
