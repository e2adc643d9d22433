"""Web page fetching with SSRF protection and classified failures.

Security requirements:
- SSRF guard: every resolved address of the host (and of each redirect target)
  must be public before a connection is made.
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist: text/html, application/xhtml+xml and text/plain.
- Max response body: 5 MB.
- Timeout: 30 seconds for fetches, 10 seconds for validation.
- Max redirects: 3.

Failures raise FetchError with a ``kind`` so operators can tell transient
problems (timeout, unreachable) from permanent ones.
"""

from __future__ import annotations

import ipaddress
import re
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.client import HTTPResponse

import html2text
import structlog
from bs4 import BeautifulSoup

from lexrag.errors import FetchError, IngestionError

log = structlog.get_logger(__name__)

_USER_AGENT = "Mozilla/5.0 (compatible; lexrag/0.1)"
_ACCEPT = "text/html,application/xhtml+xml,text/plain;q=0.8"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_TIMEOUT = 30  # seconds
_VALIDATE_TIMEOUT = 10  # seconds
_MAX_REDIRECTS = 3
_MIN_CONTENT_LENGTH = 100
_ALLOWED_SCHEMES = {"https", "http"}
_ALLOWED_CONTENT_TYPES = {"text/html", "application/xhtml+xml", "text/plain"}

_STRIP_TAGS = ["script", "style", "nav", "header", "footer", "aside"]
_CONTENT_SELECTORS = [
    "article",
    "main",
    '[role="main"]',
    ".content",
    ".post-content",
    ".entry-content",
    "#content",
    "body",
]

_MAX_TITLE = 255
_MAX_DESCRIPTION = 500
_PARAGRAPH_PREVIEW = 160

_MARKDOWN_PREFIX = re.compile(r"^\s*(?:#+|[*+-])\s+", re.MULTILINE)
_WHITESPACE = re.compile(r"\s+")


@dataclass
class WebPage:
    url: str
    content: str
    title: str
    description: str
    content_type: str


@dataclass
class UrlValidation:
    valid: bool
    error: str | None = None
    content_type: str | None = None


class WebFetcher:
    """Fetch a URL and reduce it to plain text plus a title and description."""

    def __init__(
        self,
        timeout: float = _TIMEOUT,
        max_bytes: int = _MAX_BYTES,
        validate_timeout: float = _VALIDATE_TIMEOUT,
        min_content_length: int = _MIN_CONTENT_LENGTH,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.validate_timeout = validate_timeout
        self.min_content_length = min_content_length

    def fetch(self, url: str) -> WebPage:
        """Validate, fetch, and convert *url*.

        Raises:
            FetchError: Classified network, HTTP, or policy failure.
            IngestionError: The page yields too little text (``empty_text``).
        """
        check_url(url)
        body, content_type = self._fetch(url)
        text = body.decode("utf-8", errors="replace")
        if not text.strip():
            raise IngestionError("empty_text", f"Empty response from '{url}'.")

        if content_type == "text/plain":
            page = parse_plain_text(url, text)
        else:
            page = parse_html(url, text)
            if len(page.content) < self.min_content_length:
                raise IngestionError(
                    "empty_text",
                    f"Insufficient content extracted from '{url}' "
                    f"(less than {self.min_content_length} characters).",
                )
        log.info("web.fetched", url=url, content_type=content_type, chars=len(page.content))
        return page

    def validate(self, url: str) -> UrlValidation:
        """Check that *url* is reachable and serves a supported content type.

        Issues a HEAD request. Never raises; failures are reported in the result.
        """
        try:
            check_url(url)
            response = self._open(url, method="HEAD", timeout=self.validate_timeout)
        except FetchError as exc:
            return UrlValidation(valid=False, error=str(exc))

        content_type = _content_type(response)
        response.close()
        if content_type not in _ALLOWED_CONTENT_TYPES:
            return UrlValidation(
                valid=False,
                error=(
                    f"Unsupported content type: {content_type}. "
                    "Only HTML and plain text are supported."
                ),
            )
        return UrlValidation(valid=True, content_type=content_type)

    # ------------------------------------------------------------------
    # Fetch pipeline
    # ------------------------------------------------------------------

    def _fetch(self, url: str) -> tuple[bytes, str]:
        """Fetch *url* with the size cap and Content-Type check.

        Returns (body_bytes, content_type_without_params).
        """
        response = self._open(url, method="GET", timeout=self.timeout)
        try:
            ct = _content_type(response)
            if ct not in _ALLOWED_CONTENT_TYPES:
                raise FetchError(
                    "unsupported_content_type",
                    f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                    f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}",
                    url=url,
                )
            try:
                body = response.read(self.max_bytes + 1)
            except TimeoutError as exc:
                raise FetchError("timeout", f"Timed out reading '{url}'.", url=url) from exc
            if len(body) > self.max_bytes:
                raise FetchError(
                    "too_large",
                    f"Response body exceeds {self.max_bytes // (1024 * 1024)} MB limit "
                    f"for URL '{url}'.",
                    url=url,
                )
            return body, ct
        finally:
            response.close()

    @staticmethod
    def _open(url: str, *, method: str, timeout: float) -> HTTPResponse:
        request = urllib.request.Request(
            url, method=method, headers={"User-Agent": _USER_AGENT, "Accept": _ACCEPT}
        )
        opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS))
        try:
            return opener.open(request, timeout=timeout)
        except urllib.error.HTTPError as exc:
            raise FetchError(
                "http_error", f"URL '{url}' returned {exc.code}: {exc.reason}", url=url
            ) from exc
        except urllib.error.URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise FetchError(
                    "timeout", f"Request timeout - '{url}' took too long to respond.", url=url
                ) from exc
            raise FetchError(
                "unreachable", f"Failed to connect to '{url}': {exc.reason}", url=url
            ) from exc
        except TimeoutError as exc:
            raise FetchError(
                "timeout", f"Request timeout - '{url}' took too long to respond.", url=url
            ) from exc
        except OSError as exc:
            raise FetchError("unreachable", f"Failed to connect to '{url}': {exc}", url=url) from exc


# ------------------------------------------------------------------
# URL policy
# ------------------------------------------------------------------

def check_url(url: str) -> None:
    """Validate the scheme and block hosts that resolve to non-public addresses.

    Raises:
        FetchError: ``invalid_url``, ``blocked`` (SSRF) or ``unreachable`` (DNS).
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise FetchError(
            "invalid_url",
            f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed.",
            url=url,
        )
    hostname = parsed.hostname
    if not hostname:
        raise FetchError("invalid_url", f"URL has no hostname: {url}", url=url)

    try:
        addrinfos = socket.getaddrinfo(hostname, None)
    except socket.gaierror as exc:
        raise FetchError(
            "unreachable", f"DNS resolution failed for '{hostname}': {exc}", url=url
        ) from exc

    for addrinfo in addrinfos:
        addr_str = addrinfo[4][0]
        try:
            ip = ipaddress.ip_address(addr_str)
        except ValueError:
            continue
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_multicast
            or ip.is_unspecified
        ):
            raise FetchError(
                "blocked",
                f"URL resolves to private address ({ip}). "
                "Access to internal network addresses is not allowed.",
                url=url,
            )


def _content_type(response: HTTPResponse) -> str:
    raw_ct = response.headers.get("Content-Type", "text/html")
    return raw_ct.split(";")[0].strip().lower()


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Re-check each redirect target and stop after *max_redirects*."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise FetchError(
                "http_error",
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'.",
                url=req.full_url,
            )
        check_url(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)


# ------------------------------------------------------------------
# Content extraction
# ------------------------------------------------------------------

def parse_html(url: str, html: str) -> WebPage:
    """Extract title, description and main text from an HTML document."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(_STRIP_TAGS):
        tag.decompose()

    title = _text_of(soup.find("title")) or _text_of(soup.find("h1")) or "Untitled Document"

    description = _meta_content(soup, name="description") or _meta_content(
        soup, property="og:description"
    )
    if not description:
        first_paragraph = _text_of(soup.find("p"))
        if len(first_paragraph) > _PARAGRAPH_PREVIEW:
            description = first_paragraph[:_PARAGRAPH_PREVIEW] + "..."
        else:
            description = first_paragraph

    content = ""
    for selector in _CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            content = _to_plain_text(str(element))
            break

    return WebPage(
        url=url,
        content=content,
        title=title[:_MAX_TITLE],
        description=description[:_MAX_DESCRIPTION],
        content_type="text/html",
    )


def parse_plain_text(url: str, text: str) -> WebPage:
    """Plain text: the first line is the title when it looks like one."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    first_line = lines[0] if lines else ""
    title = first_line if 5 < len(first_line) < 100 else "Plain Text Document"
    description = " ".join(lines[1:3])[:200] or "Plain text document"
    return WebPage(
        url=url,
        content=text,
        title=title[:_MAX_TITLE],
        description=description,
        content_type="text/plain",
    )


def _to_plain_text(html: str) -> str:
    # HTML2Text keeps parser state, so each call gets its own converter.
    h2t = html2text.HTML2Text()
    h2t.ignore_links = True
    h2t.ignore_images = True
    h2t.ignore_emphasis = True
    h2t.body_width = 0
    markdown = h2t.handle(html)
    return _WHITESPACE.sub(" ", _MARKDOWN_PREFIX.sub("", markdown)).strip()


def _text_of(tag) -> str:
    return tag.get_text(" ", strip=True) if tag is not None else ""


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    return (tag.get("content") or "").strip()
