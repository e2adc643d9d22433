"""Tests for WebFetcher: SSRF guard, failure classification and page parsing."""

from __future__ import annotations

import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from lexrag.errors import FetchError, IngestionError
from lexrag.ingest.web import WebFetcher, check_url, parse_html, parse_plain_text

_ARTICLE = (
    "<html><head><title>Tenancy Act</title>"
    '<meta name="description" content="Rules for residential leases."></head>'
    "<body><nav>Home | About</nav><article><h2>Section 1</h2>"
    "<p>" + "A landlord must return the deposit within thirty days. " * 4 + "</p>"
    "</article><footer>Copyright</footer><script>track()</script></body></html>"
)


def _patch_getaddrinfo(ip: str):
    """Make getaddrinfo resolve every host to *ip*."""
    return patch(
        "lexrag.ingest.web.socket.getaddrinfo",
        return_value=[(None, None, None, None, (ip, 0))],
    )


def _response(body: bytes = b"", content_type: str = "text/html; charset=utf-8"):
    resp = MagicMock()
    resp.headers = {"Content-Type": content_type}
    resp.read.return_value = body
    return resp


# ------------------------------------------------------------------
# check_url()
# ------------------------------------------------------------------


@pytest.mark.parametrize("url", ["ftp://example.com", "file:///etc/passwd", "https://"])
def test_check_url_invalid(url):
    with pytest.raises(FetchError) as exc_info:
        check_url(url)
    assert exc_info.value.kind == "invalid_url"
    assert exc_info.value.transient is False


def test_check_url_public_ok():
    with _patch_getaddrinfo("93.184.216.34"):
        check_url("https://example.com/law")


@pytest.mark.parametrize(
    "ip", ["127.0.0.1", "10.0.0.1", "172.16.0.1", "192.168.1.1", "169.254.169.254", "::1"]
)
def test_check_url_private_blocked(ip):
    with _patch_getaddrinfo(ip):
        with pytest.raises(FetchError, match="private address") as exc_info:
            check_url("http://internal.example/")
    assert exc_info.value.kind == "blocked"


def test_check_url_dns_failure_is_unreachable():
    import socket

    with patch("lexrag.ingest.web.socket.getaddrinfo", side_effect=socket.gaierror("nope")):
        with pytest.raises(FetchError) as exc_info:
            check_url("https://no-such-host.example")
    assert exc_info.value.kind == "unreachable"
    assert exc_info.value.transient is True


# ------------------------------------------------------------------
# fetch()
# ------------------------------------------------------------------


def test_fetch_html_page():
    with _patch_getaddrinfo("93.184.216.34"), patch.object(
        WebFetcher, "_open", return_value=_response(_ARTICLE.encode())
    ):
        page = WebFetcher().fetch("https://example.com/act")
    assert page.title == "Tenancy Act"
    assert page.description == "Rules for residential leases."
    assert "return the deposit" in page.content
    assert "Home | About" not in page.content
    assert "track()" not in page.content
    assert "<" not in page.content


def test_fetch_plain_text():
    body = b"Residential Tenancy Notes\nLine two.\nLine three.\nMore."
    with _patch_getaddrinfo("93.184.216.34"), patch.object(
        WebFetcher, "_open", return_value=_response(body, "text/plain")
    ):
        page = WebFetcher().fetch("https://example.com/notes.txt")
    assert page.title == "Residential Tenancy Notes"
    assert page.description == "Line two. Line three."
    assert page.content_type == "text/plain"


def test_fetch_rejects_unsupported_content_type():
    with _patch_getaddrinfo("93.184.216.34"), patch.object(
        WebFetcher, "_open", return_value=_response(b"%PDF", "application/pdf")
    ):
        with pytest.raises(FetchError) as exc_info:
            WebFetcher().fetch("https://example.com/file.pdf")
    assert exc_info.value.kind == "unsupported_content_type"


def test_fetch_rejects_oversized_body():
    with _patch_getaddrinfo("93.184.216.34"), patch.object(
        WebFetcher, "_open", return_value=_response(b"x" * 11)
    ):
        with pytest.raises(FetchError) as exc_info:
            WebFetcher(max_bytes=10).fetch("https://example.com/big")
    assert exc_info.value.kind == "too_large"


def test_fetch_thin_html_is_empty_text():
    html = b"<html><head><title>T</title></head><body><p>Too short.</p></body></html>"
    with _patch_getaddrinfo("93.184.216.34"), patch.object(
        WebFetcher, "_open", return_value=_response(html)
    ):
        with pytest.raises(IngestionError) as exc_info:
            WebFetcher().fetch("https://example.com/thin")
    assert exc_info.value.reason == "empty_text"


def test_fetch_blocked_host_never_opens():
    with _patch_getaddrinfo("10.1.2.3"), patch.object(WebFetcher, "_open") as mock_open:
        with pytest.raises(FetchError):
            WebFetcher().fetch("https://intranet.example")
    mock_open.assert_not_called()


@pytest.mark.parametrize(
    "error,kind",
    [
        (urllib.error.HTTPError("https://example.com", 404, "Not Found", {}, None), "http_error"),
        (urllib.error.URLError(TimeoutError("timed out")), "timeout"),
        (urllib.error.URLError(ConnectionRefusedError("refused")), "unreachable"),
        (TimeoutError("timed out"), "timeout"),
    ],
)
def test_open_classifies_failures(error, kind):
    opener = MagicMock()
    opener.open.side_effect = error
    with patch("lexrag.ingest.web.urllib.request.build_opener", return_value=opener):
        with pytest.raises(FetchError) as exc_info:
            WebFetcher._open("https://example.com", method="GET", timeout=1)
    assert exc_info.value.kind == kind


# ------------------------------------------------------------------
# validate()
# ------------------------------------------------------------------


def test_validate_ok():
    with _patch_getaddrinfo("93.184.216.34"), patch.object(
        WebFetcher, "_open", return_value=_response()
    ):
        result = WebFetcher().validate("https://example.com")
    assert result.valid is True
    assert result.content_type == "text/html"


def test_validate_unsupported_type():
    with _patch_getaddrinfo("93.184.216.34"), patch.object(
        WebFetcher, "_open", return_value=_response(content_type="image/png")
    ):
        result = WebFetcher().validate("https://example.com/logo.png")
    assert result.valid is False
    assert "image/png" in result.error


def test_validate_never_raises():
    result = WebFetcher().validate("ftp://example.com")
    assert result.valid is False
    assert "scheme" in result.error


# ------------------------------------------------------------------
# parse_html() / parse_plain_text()
# ------------------------------------------------------------------


def test_parse_html_title_falls_back_to_h1():
    page = parse_html("u", "<html><body><h1>Heading</h1><p>Body.</p></body></html>")
    assert page.title == "Heading"


def test_parse_html_untitled():
    assert parse_html("u", "<html><body><p>Body.</p></body></html>").title == "Untitled Document"


def test_parse_html_description_from_og():
    html = '<html><head><meta property="og:description" content="OG text"></head><body></body></html>'
    assert parse_html("u", html).description == "OG text"


def test_parse_html_description_from_long_paragraph():
    html = "<html><body><p>" + "x" * 200 + "</p></body></html>"
    description = parse_html("u", html).description
    assert description == "x" * 160 + "..."


def test_parse_html_prefers_main_over_body():
    html = "<html><body><div>Sidebar text</div><main><p>Main text.</p></main></body></html>"
    assert parse_html("u", html).content == "Main text."


def test_parse_plain_text_generic_title_for_long_first_line():
    page = parse_plain_text("u", "x" * 150 + "\nsecond")
    assert page.title == "Plain Text Document"
    assert page.description == "second"


def test_parse_plain_text_defaults_for_single_line():
    page = parse_plain_text("u", "Hi")
    assert page.title == "Plain Text Document"
    assert page.description == "Plain text document"
