from __future__ import annotations

import json
from pathlib import Path
import sys

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[2]
sys.path.append(str(ROOT))

from connector.session import FileItem, Library, RemoteError
from connector.sharepoint import SharePointSession, _raise_for_batch_failures


SITE = "https://contoso.sharepoint.com/sites/Records"
LIBRARY = Library(title="Documents", id="0f6b8c3e-1111-2222-3333-444455556666", root_url="/sites/Records/Shared Documents")
ITEM = FileItem(id=7, file_ref="/sites/Records/Shared Documents/Q1 Plan.docx", leaf_name="Q1 Plan.docx")


def _session(handler):
    client = httpx.Client(base_url=SITE, transport=httpx.MockTransport(handler))
    return SharePointSession(SITE, "", client=client)


def test_session_requires_site_and_token():
    with pytest.raises(ValueError):
        SharePointSession("", "token")
    with pytest.raises(ValueError):
        SharePointSession(SITE, "")


def test_version_policy_is_parsed():
    def handler(request):
        assert request.url.path.endswith("/_api/site/VersionPolicyForNewLibrariesTemplate")
        return httpx.Response(200, json={"Status": "InProgress", "MajorVersionLimit": 100})

    policy = _session(handler).get_version_policy()

    assert policy.pending is True
    assert policy.major_version_limit == 100


def test_set_version_policy_sends_merge():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(204)

    _session(handler).set_version_policy(100, expire_versions_after_days=365)

    assert seen[0].method == "POST"
    assert seen[0].headers["X-HTTP-Method"] == "MERGE"
    assert json.loads(seen[0].content) == {"MajorVersionLimit": 100, "ExpireVersionsAfterDays": 365}


def test_list_libraries():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "value": [
                    {
                        "Id": "abc",
                        "Title": "Documents",
                        "Hidden": False,
                        "BaseTemplate": 101,
                        "ItemCount": 42,
                        "RootFolder": {"ServerRelativeUrl": "/sites/Records/Shared Documents"},
                    },
                    {"Id": "def", "Title": "Tasks", "Hidden": False, "BaseTemplate": 171},
                ]
            },
        )

    libraries = _session(handler).list_libraries()

    assert [lib.title for lib in libraries] == ["Documents", "Tasks"]
    assert libraries[0].root_url == "/sites/Records/Shared Documents"
    assert libraries[0].is_document_library is True
    assert libraries[1].is_document_library is False


def test_item_pages_follow_next_link():
    next_link = f"{SITE}/_api/web/lists(guid'{LIBRARY.id}')/items?$skiptoken=Paged%3dTRUE%26p_ID%3d2&$top=2"

    def handler(request):
        if "skiptoken" in str(request.url):
            return httpx.Response(200, json={"value": [{"Id": 3, "FileRef": "/c", "FileLeafRef": "c", "FSObjType": 0}]})
        assert request.url.params["$top"] == "2"
        return httpx.Response(
            200,
            json={
                "value": [
                    {"Id": 1, "FileRef": "/a", "FileLeafRef": "a", "FSObjType": 0, "File_x0020_Size": "2048"},
                    {"Id": 2, "FileRef": "/folder", "FileLeafRef": "folder", "FSObjType": 1},
                ],
                "odata.nextLink": next_link,
            },
        )

    session = _session(handler)
    first = session.fetch_item_page(LIBRARY, 2)
    second = session.fetch_item_page(LIBRARY, 2, first.next_token)

    assert [(item.id, item.is_file, item.size) for item in first.items] == [(1, True, 2048), (2, False, 0)]
    assert first.next_token == next_link
    assert [item.id for item in second.items] == [3]
    assert second.next_token is None


def test_load_versions_marks_current_version():
    def handler(request):
        assert "GetFileByServerRelativePath" in request.url.path
        return httpx.Response(
            200,
            json={
                "UIVersionLabel": "3.0",
                "TimeLastModified": "2025-12-01T10:00:00Z",
                "Versions": [
                    {"ID": 512, "VersionLabel": "1.0", "Created": "2025-01-01T08:00:00Z", "IsCurrentVersion": False},
                    {"ID": 1024, "VersionLabel": "2.0", "Created": "2025-06-01T08:00:00Z", "IsCurrentVersion": False},
                ],
            },
        )

    versions = _session(handler).load_versions(LIBRARY, ITEM)

    assert [(v.id, v.label, v.is_current) for v in versions] == [
        (512, "1.0", False),
        (1024, "2.0", False),
        (None, "3.0", True),
    ]
    assert versions[0].created.tzinfo is not None


def test_delete_versions_posts_one_batch():
    seen = []

    def handler(request):
        seen.append(request)
        body = "--batchresponse_1\r\nContent-Type: application/http\r\n\r\nHTTP/1.1 200 OK\r\n\r\n--batchresponse_1--\r\n"
        return httpx.Response(200, text=body)

    _session(handler).delete_versions(LIBRARY, ITEM, [512, 1024])

    assert len(seen) == 1
    assert seen[0].url.path.endswith("/_api/$batch")
    body = seen[0].content.decode("utf-8")
    assert "DeleteByID(vid=512)" in body
    assert "DeleteByID(vid=1024)" in body
    assert seen[0].headers["Content-Type"].startswith("multipart/mixed; boundary=batch_")


def test_batch_failure_raises_with_remote_message():
    body = (
        "--batchresponse_1\r\nContent-Type: application/http\r\n\r\n"
        "HTTP/1.1 200 OK\r\n\r\n"
        "--batchresponse_1\r\nContent-Type: application/http\r\n\r\n"
        "HTTP/1.1 403 Forbidden\r\nContent-Type: application/json\r\n\r\n"
        '{"odata.error":{"code":"-2146232832","message":{"lang":"en-US","value":"Item is on hold for records management"}}}\r\n'
        "--batchresponse_1--\r\n"
    )

    with pytest.raises(RemoteError) as excinfo:
        _raise_for_batch_failures(body)

    assert excinfo.value.status_code == 403
    assert "on hold" in str(excinfo.value)


def test_http_error_raises_remote_error():
    def handler(request):
        return httpx.Response(429, json={"odata.error": {"message": {"value": "Too many requests"}}})

    with pytest.raises(RemoteError) as excinfo:
        _session(handler).list_libraries()

    assert excinfo.value.status_code == 429
    assert excinfo.value.message == "Too many requests"
