"""Tests for the HTTP layer (download, runs, rate-limit).

Mocking strategy:
- Each test builds its own app with ``create_app(config, quota)`` so quota
  state never leaks between tests.
- ``respx`` (the ``site`` fixture) serves the crawled pages; the streamed
  response body is opened with ``zipfile``.
"""

from __future__ import annotations

import io
import zipfile

import httpx
import pytest
from fastapi.testclient import TestClient

from site_archiver.api.app import create_app
from site_archiver.api.routers.download import RunRegistry, archive_filename
from site_archiver.quota import SlidingWindowQuota

SEED = "https://example.com/"


@pytest.fixture
def client(test_settings):
    app = create_app(test_settings, SlidingWindowQuota(limit=2, window=3600))
    return TestClient(app)


@pytest.fixture
def home(site):
    site.get(SEED).mock(
        return_value=httpx.Response(200, html='<link rel="stylesheet" href="/s.css">')
    )
    site.get("https://example.com/s.css").mock(
        return_value=httpx.Response(200, content=b"body{}", headers={"Content-Type": "text/css"})
    )
    return site


# ---------------------------------------------------------------------------
# POST /download
# ---------------------------------------------------------------------------

class TestDownload:
    def test_streams_zip_with_framing_headers(self, client, home):
        resp = client.post("/download", json={"urls": [SEED], "zipName": "my site"})

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/zip"
        assert resp.headers["content-disposition"] == 'attachment; filename="my_site.zip"'
        assert resp.headers["x-seed-count"] == "1"
        assert resp.headers["cache-control"] == "no-cache"
        assert resp.headers["x-run-id"]
        zf = zipfile.ZipFile(io.BytesIO(resp.content))
        assert sorted(zf.namelist()) == ["example.com/index.html", "example.com/s.css"]

    def test_single_url_field_and_html_option(self, client, home):
        resp = client.post("/download", json={"url": SEED, "option": "html"})
        zf = zipfile.ZipFile(io.BytesIO(resp.content))
        assert zf.namelist() == ["example.com/index.html"]
        assert 'filename="website-download.zip"' in resp.headers["content-disposition"]

    def test_download_linked_means_full_recursive(self, client, site):
        site.get(SEED).mock(return_value=httpx.Response(200, html='<a href="/b.html">b</a>'))
        site.get("https://example.com/b.html").mock(
            return_value=httpx.Response(200, html='<img src="/b.png">')
        )
        site.get("https://example.com/b.png").mock(return_value=httpx.Response(200, content=b"png"))

        resp = client.post(
            "/download", json={"urls": [SEED], "option": "assets", "downloadLinked": True}
        )

        zf = zipfile.ZipFile(io.BytesIO(resp.content))
        assert "example.com/b.png" in zf.namelist()

    def test_run_log_is_readable_afterwards(self, client, home):
        resp = client.post("/download", json={"urls": [SEED]})
        run_id = resp.headers["x-run-id"]

        summary = client.get(f"/runs/{run_id}").json()

        assert summary["run_id"] == run_id
        assert summary["state"] == "done"
        assert summary["resources"] == 2
        assert summary["log_lines"] == len(summary["log"])
        assert "[SAVE] https://example.com/ -> example.com/index.html" in summary["log"]

    def test_unknown_run_is_404(self, client):
        assert client.get("/runs/nope").status_code == 404


class TestDownloadRejections:
    def test_sixth_url_rejected_before_any_fetch(self, client, site):
        route = site.get(url__startswith="https://example.com/")
        urls = [f"https://example.com/{i}" for i in range(6)]

        resp = client.post("/download", json={"urls": urls})

        assert resp.status_code == 400
        assert "Too many URLs" in resp.json()["error"]
        assert not route.called

    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"urls": ["not-a-url"]},
            {"urls": [SEED], "option": "everything"},
            {"urls": [SEED], "customHeader": "missing colon"},
        ],
    )
    def test_invalid_requests_are_400(self, client, body):
        resp = client.post("/download", json=body)
        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_non_ascii_custom_header_is_400_before_any_fetch(self, client, site):
        route = site.get(url__startswith="https://example.com/")

        resp = client.post("/download", json={"urls": [SEED], "customHeader": "X-Name: café"})

        assert resp.status_code == 400
        assert "X-Name" in resp.json()["error"]
        assert not route.called

    def test_wrong_body_shape_is_422(self, client):
        assert client.post("/download", json={"urls": 5}).status_code == 422

    def test_invalid_request_does_not_consume_quota(self, client):
        client.post("/download", json={"urls": []})
        assert client.get("/rate-limit").json() == {"remaining": 2, "limit": 2}

    def test_quota_exhausted_is_429(self, client, home):
        assert client.post("/download", json={"urls": [SEED]}).status_code == 200
        assert client.post("/download", json={"urls": [SEED]}).status_code == 200

        resp = client.post("/download", json={"urls": [SEED]})

        assert resp.status_code == 429
        assert resp.json() == {
            "error": "Rate limit exceeded. Please try again later.",
            "remaining": 0,
            "limit": 2,
        }
        assert 0 < int(resp.headers["retry-after"]) <= 3600


# ---------------------------------------------------------------------------
# GET /rate-limit
# ---------------------------------------------------------------------------

class TestRateLimit:
    def test_reports_without_consuming(self, client):
        assert client.get("/rate-limit").json() == {"remaining": 2, "limit": 2}
        assert client.get("/rate-limit").json() == {"remaining": 2, "limit": 2}

    def test_forwarded_identity_is_tracked_separately(self, client, home):
        client.post("/download", json={"urls": [SEED]}, headers={"X-Forwarded-For": "203.0.113.7"})

        other = client.get("/rate-limit", headers={"X-Forwarded-For": "198.51.100.1"})
        same = client.get("/rate-limit", headers={"X-Forwarded-For": "203.0.113.7"})

        assert other.json()["remaining"] == 2
        assert same.json()["remaining"] == 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    @pytest.mark.parametrize(
        "name, expected",
        [
            (None, "website-download.zip"),
            ("", "website-download.zip"),
            ("backup", "backup.zip"),
            ("site.ZIP", "site.ZIP"),
            ("../../etc/passwd", "etc_passwd.zip"),
            ('a"b', "a_b.zip"),
        ],
    )
    def test_archive_filename(self, name, expected):
        assert archive_filename(name, "website-download.zip") == expected

    def test_registry_keeps_latest_runs(self):
        class _Run:
            def __init__(self, run_id):
                self.run_id = run_id

        registry = RunRegistry(max_runs=2)
        for run_id in ("a", "b", "c"):
            registry.add(_Run(run_id))

        assert len(registry) == 2
        assert registry.get("a") is None
        assert registry.get("c").run_id == "c"
