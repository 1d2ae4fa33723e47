"""Tests for URL canonicalization, host filtering, and the bounded web fetcher."""

import httpx
import pytest

from intake_kernel.config import IntakeSettings
from intake_kernel.ingestion.fetcher import (
    HTTP_STATUS_NOT_OK,
    REDIRECT_LIMIT_EXCEEDED,
    TIMEOUT,
    UNSUPPORTED_CONTENT_TYPE,
    WebFetcher,
)
from intake_kernel.ingestion.urls import (
    HOST_BLOCKED,
    INVALID_URL,
    canonicalize_url,
    extract_first_url,
    is_blocked_host,
)

PAGE = "<html><body><p>Sunrise Bakery bakes sourdough every morning.</p></body></html>"


def _make_fetcher(handler, **overrides) -> WebFetcher:
    settings = IntakeSettings(**overrides)
    client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=False)
    return WebFetcher(settings, client=client)


class TestCanonicalizeUrl:
    def test_normalizes_host_path_and_fragment(self):
        url, error = canonicalize_url("  https://Example.COM#about ")
        assert error is None
        assert url == "https://example.com/"

    def test_keeps_query_and_non_default_port(self):
        url, _ = canonicalize_url("https://example.com:8443/menu?day=mon")
        assert url == "https://example.com:8443/menu?day=mon"

    def test_drops_default_port(self):
        url, _ = canonicalize_url("https://example.com:443/a")
        assert url == "https://example.com/a"

    @pytest.mark.parametrize("raw", ["", "http://example.com", "ftp://example.com", "example.com",
                                     "https://user:pw@example.com/"])
    def test_invalid(self, raw):
        assert canonicalize_url(raw) == (None, INVALID_URL)

    @pytest.mark.parametrize("raw", [
        "https://localhost/",
        "https://app.localhost/",
        "https://printer.local/",
        "https://127.0.0.1/",
        "https://10.1.2.3/",
        "https://172.20.0.1/",
        "https://192.168.1.1/",
        "https://169.254.169.254/latest/meta-data",
        "https://0.0.0.0/",
        "https://[::1]/",
        "https://[fe80::1]/",
        "https://[fd00::1]/",
        "https://[::ffff:127.0.0.1]/",
        "https://2130706433/",
        "https://127.1/",
        "https://0x7f000001/",
        "https://0177.0.0.1/",
        "https://167772165/",
        "https://0xa.0.0.5/",
        "https://99999999999/",
    ])
    def test_blocked_hosts(self, raw):
        assert canonicalize_url(raw) == (None, HOST_BLOCKED)

    def test_numeric_public_host_is_rewritten_to_dotted_quad(self):
        assert canonicalize_url("https://1572395042/menu") == ("https://93.184.216.34/menu", None)

    def test_public_hosts_allowed(self):
        assert not is_blocked_host("example.com")
        assert not is_blocked_host("93.184.216.34")

    def test_extract_first_url(self):
        text = "Our site is https://sunrise.example.com/menu. Have a look!"
        assert extract_first_url(text) == "https://sunrise.example.com/menu"
        assert extract_first_url("no links here") is None


class TestWebFetcher:
    def test_successful_fetch(self):
        fetcher = _make_fetcher(lambda request: httpx.Response(
            200, headers={"content-type": "text/html; charset=utf-8"}, text=PAGE,
        ))
        outcome = fetcher.fetch("https://sunrise.example.com")

        assert outcome.ok
        assert outcome.final_url == "https://sunrise.example.com/"
        assert outcome.content_type == "text/html"
        assert "sourdough" in outcome.body
        assert outcome.truncated is False

    def test_blocked_host_never_hits_network(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(200, text=PAGE)

        outcome = _make_fetcher(handler).fetch("https://127.0.0.1/admin")
        assert outcome.ok is False
        assert outcome.error_code == HOST_BLOCKED
        assert calls == []

    def test_numeric_loopback_never_hits_network(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(200, text=PAGE)

        outcome = _make_fetcher(handler).fetch("https://2130706433/admin")
        assert outcome.error_code == HOST_BLOCKED
        assert calls == []

    def test_redirect_to_numeric_private_host_is_blocked(self):
        def handler(request):
            return httpx.Response(302, headers={"location": "https://167772165/internal"})

        outcome = _make_fetcher(handler).fetch("https://sunrise.example.com/")
        assert outcome.error_code == HOST_BLOCKED

    def test_redirects_are_followed_and_revalidated(self):
        def handler(request):
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "/new"})
            return httpx.Response(200, headers={"content-type": "text/html"}, text=PAGE)

        outcome = _make_fetcher(handler).fetch("https://sunrise.example.com/old")
        assert outcome.ok
        assert outcome.final_url == "https://sunrise.example.com/new"
        assert outcome.redirect_count == 1

    def test_redirect_to_private_host_is_blocked(self):
        calls = []

        def handler(request):
            calls.append(request.url.host)
            return httpx.Response(302, headers={"location": "https://10.0.0.5/internal"})

        outcome = _make_fetcher(handler).fetch("https://sunrise.example.com/")
        assert outcome.error_code == HOST_BLOCKED
        assert calls == ["sunrise.example.com"]

    def test_redirect_limit(self):
        def handler(request):
            hop = int(request.url.params.get("hop", "0"))
            return httpx.Response(302, headers={"location": f"/loop?hop={hop + 1}"})

        outcome = _make_fetcher(handler, max_redirects=2).fetch("https://sunrise.example.com/loop")
        assert outcome.error_code == REDIRECT_LIMIT_EXCEEDED
        assert outcome.redirect_count == 2

    def test_body_is_capped(self):
        body = "a" * 5000
        fetcher = _make_fetcher(
            lambda request: httpx.Response(200, headers={"content-type": "text/plain"}, text=body),
            max_fetch_bytes=1000,
        )
        outcome = fetcher.fetch("https://sunrise.example.com/big.txt")
        assert outcome.ok
        assert outcome.truncated is True
        assert outcome.bytes_read == 1000
        assert len(outcome.body) == 1000

    def test_unsupported_content_type(self):
        fetcher = _make_fetcher(lambda request: httpx.Response(
            200, headers={"content-type": "application/pdf"}, content=b"%PDF-1.4",
        ))
        outcome = fetcher.fetch("https://sunrise.example.com/menu.pdf")
        assert outcome.error_code == UNSUPPORTED_CONTENT_TYPE

    def test_error_status(self):
        fetcher = _make_fetcher(lambda request: httpx.Response(404, headers={"content-type": "text/html"}))
        outcome = fetcher.fetch("https://sunrise.example.com/missing")
        assert outcome.error_code == HTTP_STATUS_NOT_OK
        assert outcome.http_status == 404

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        outcome = _make_fetcher(handler).fetch("https://sunrise.example.com/")
        assert outcome.error_code == TIMEOUT
