"""URL helpers shared by the robots resolver, the cache and the orchestrator."""

from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit

from politecrawl.exceptions import InvalidURLError

DEFAULT_PORTS = {"http": 80, "https": 443}


def extract_host(url: str) -> str:
    """Return the lowercased host of ``url`` or raise ``InvalidURLError``."""
    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError as e:
        raise InvalidURLError(f"Malformed URL {url!r}: {e}", url=url) from e
    if parts.scheme not in DEFAULT_PORTS or not host:
        raise InvalidURLError(f"Malformed URL {url!r}: missing scheme or host", url=url)
    return host


def url_authority(url: str) -> str:
    """
    Host plus any non-default port, e.g. ``example.com:8080``.

    robots.txt and crawl spacing both apply per authority: the same host on
    another port is a separate origin.
    """
    host = extract_host(url)
    parts = urlsplit(url)
    try:
        port = parts.port
    except ValueError as e:
        raise InvalidURLError(f"Malformed URL {url!r}: {e}", url=url) from e
    if port is not None and DEFAULT_PORTS[parts.scheme] != port:
        return f"{host}:{port}"
    return host


def extract_scheme(url: str) -> str:
    return urlsplit(url).scheme.lower() or "https"


def request_path(url: str) -> str:
    """Path plus query, the part of a URL that robots.txt patterns match against."""
    parts = urlsplit(url)
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return path


def normalize_url(url: str) -> str:
    """
    Canonical form used as the cache key.

    Lowercases scheme and host, drops the default port and the fragment and
    turns an empty path into ``/``. Query strings are kept verbatim.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError as e:
        raise InvalidURLError(f"Malformed URL {url!r}: {e}", url=url) from e
    netloc = host
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"
    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


def domain_matches(host: str, domain: str) -> bool:
    """True when ``host`` is ``domain`` or one of its subdomains."""
    host = host.lower()
    domain = domain.lower()
    return host == domain or host.endswith("." + domain)
