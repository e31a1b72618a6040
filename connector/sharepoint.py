"""SharePoint REST implementation of the library session.

Authentication is handled upstream: callers pass an access token that is
already valid for the site. Every method performs exactly one HTTP round trip
so the retry executor can wrap it as a unit.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from connector.session import (
    FileItem,
    FileVersion,
    ItemPage,
    Library,
    RemoteError,
    VersionPolicy,
    parse_remote_datetime,
)


LOGGER = logging.getLogger("versiontrim.sharepoint")

DEFAULT_TIMEOUT_SECONDS = 180.0
JSON_ACCEPT = "application/json;odata=nometadata"
ITEM_FIELDS = "Id,FileRef,FileLeafRef,FSObjType,File_x0020_Size"

_BATCH_STATUS_RE = re.compile(r"^HTTP/1\.1 (\d{3}) ?(.*)$", re.MULTILINE)
_BATCH_MESSAGE_RE = re.compile(r'"message"\s*:\s*(?:\{[^{}]*?"value"\s*:\s*)?"((?:[^"\\]|\\.)*)"')


def _quote_path(server_relative_url: str) -> str:
    return server_relative_url.replace("'", "''")


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    error = payload.get("odata.error") or payload.get("error") or {}
    message = error.get("message")
    if isinstance(message, dict):
        message = message.get("value")
    return str(message or response.text or response.reason_phrase)


def _file_endpoint(file_ref: str) -> str:
    return (
        "/_api/web/GetFileByServerRelativePath(decodedurl=@u)"
        f"?@u='{quote(_quote_path(file_ref), safe='/')}'"
    )


class SharePointSession:
    def __init__(
        self,
        site_url: str,
        access_token: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not site_url or not site_url.strip():
            raise ValueError("site_url is required.")
        if not access_token and client is None:
            raise ValueError("An access token is required to open a SharePoint session.")
        self.site_url = site_url.strip().rstrip("/")
        self._client = client or httpx.Client(
            base_url=self.site_url,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": JSON_ACCEPT,
            },
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "SharePointSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = self._client.request(method, url, **kwargs)
        if response.status_code >= 400:
            raise RemoteError(_error_message(response), status_code=response.status_code)
        return response

    def _get_json(self, url: str) -> Dict[str, Any]:
        return self._request("GET", url).json()

    def get_version_policy(self) -> VersionPolicy:
        payload = self._get_json("/_api/site/VersionPolicyForNewLibrariesTemplate")
        return VersionPolicy(
            status=payload.get("Status") or payload.get("PolicyStatus"),
            major_version_limit=payload.get("MajorVersionLimit"),
            expire_versions_after_days=payload.get("ExpireVersionsAfterDays"),
            raw=payload,
        )

    def set_version_policy(
        self,
        major_version_limit: int,
        expire_versions_after_days: Optional[int] = None,
    ) -> None:
        body: Dict[str, Any] = {"MajorVersionLimit": major_version_limit}
        if expire_versions_after_days is not None:
            body["ExpireVersionsAfterDays"] = expire_versions_after_days
        self._request(
            "POST",
            "/_api/site/VersionPolicyForNewLibrariesTemplate",
            headers={"X-HTTP-Method": "MERGE", "Content-Type": JSON_ACCEPT, "IF-MATCH": "*"},
            content=json.dumps(body),
        )

    def list_libraries(self) -> List[Library]:
        payload = self._get_json(
            "/_api/web/lists?$select=Id,Title,Hidden,BaseTemplate,ItemCount,RootFolder/ServerRelativeUrl"
            "&$expand=RootFolder"
        )
        libraries: List[Library] = []
        for entry in payload.get("value", []):
            root = entry.get("RootFolder") or {}
            libraries.append(
                Library(
                    title=str(entry.get("Title", "")),
                    id=str(entry.get("Id", "")),
                    root_url=str(root.get("ServerRelativeUrl", "")),
                    hidden=bool(entry.get("Hidden", False)),
                    base_template=int(entry.get("BaseTemplate", 0)),
                    item_count=int(entry.get("ItemCount", 0) or 0),
                )
            )
        return libraries

    def fetch_item_page(self, library: Library, page_size: int, token: Optional[str] = None) -> ItemPage:
        url = token or (
            f"/_api/web/lists(guid'{library.id}')/items?$select={ITEM_FIELDS}&$top={page_size}"
        )
        payload = self._get_json(url)
        items: List[FileItem] = []
        for entry in payload.get("value", []):
            raw_size = entry.get("File_x0020_Size") or 0
            try:
                size = int(raw_size)
            except (TypeError, ValueError):
                size = 0
            items.append(
                FileItem(
                    id=int(entry.get("Id", 0)),
                    file_ref=str(entry.get("FileRef", "")),
                    leaf_name=str(entry.get("FileLeafRef", "")),
                    is_file=int(entry.get("FSObjType", 0) or 0) == 0,
                    size=size,
                )
            )
        return ItemPage(items=items, next_token=payload.get("odata.nextLink") or payload.get("@odata.nextLink"))

    def load_versions(self, library: Library, item: FileItem) -> List[FileVersion]:
        payload = self._get_json(
            _file_endpoint(item.file_ref) + "&$select=UIVersionLabel,TimeLastModified,Versions&$expand=Versions"
        )
        current_label = str(payload.get("UIVersionLabel") or "")
        versions: List[FileVersion] = []
        for entry in payload.get("Versions", []):
            created = parse_remote_datetime(entry.get("Created"))
            if created is None:
                LOGGER.debug("Version without Created timestamp on %s", item.file_ref)
                continue
            label = str(entry.get("VersionLabel", ""))
            versions.append(
                FileVersion(
                    id=entry.get("ID"),
                    label=label,
                    created=created,
                    is_current=bool(entry.get("IsCurrentVersion")) or label == current_label,
                )
            )
        modified = parse_remote_datetime(payload.get("TimeLastModified"))
        if modified is not None and not any(version.is_current for version in versions):
            versions.append(FileVersion(id=None, label=current_label, created=modified, is_current=True))
        return versions

    def delete_versions(self, library: Library, item: FileItem, version_ids: Sequence[int]) -> None:
        if not version_ids:
            return
        batch_boundary = f"batch_{uuid.uuid4()}"
        changeset_boundary = f"changeset_{uuid.uuid4()}"
        endpoint = _file_endpoint(item.file_ref)
        path, _, query = endpoint.partition("?")
        parts: List[str] = []
        for version_id in version_ids:
            parts.extend(
                [
                    f"--{changeset_boundary}",
                    "Content-Type: application/http",
                    "Content-Transfer-Encoding: binary",
                    "",
                    f"POST {self.site_url}{path}/versions/DeleteByID(vid={int(version_id)})?{query} HTTP/1.1",
                    f"Accept: {JSON_ACCEPT}",
                    "",
                ]
            )
        parts.append(f"--{changeset_boundary}--")
        body = "\r\n".join(
            [
                f"--{batch_boundary}",
                f'Content-Type: multipart/mixed; boundary="{changeset_boundary}"',
                "Content-Transfer-Encoding: binary",
                "",
                *parts,
                f"--{batch_boundary}--",
                "",
            ]
        )
        response = self._request(
            "POST",
            "/_api/$batch",
            headers={"Content-Type": f"multipart/mixed; boundary={batch_boundary}"},
            content=body.encode("utf-8"),
        )
        _raise_for_batch_failures(response.text)


def _raise_for_batch_failures(body: str) -> None:
    for match in _BATCH_STATUS_RE.finditer(body):
        status = int(match.group(1))
        if status < 400:
            continue
        message_match = _BATCH_MESSAGE_RE.search(body, match.end())
        message = message_match.group(1) if message_match else match.group(2).strip()
        raise RemoteError(message or f"Batch request failed with HTTP {status}", status_code=status)
