"""URL normalization helpers shared by the crawler, testers and reports."""

from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

DEFAULT_PORTS = {"http": 80, "https": 443}

IGNORED_SCHEMES = frozenset(["javascript", "mailto", "tel", "data", "blob", "about"])


def canonicalize_url(url: str) -> str:
    """Return the canonical form of an absolute URL.

    The scheme and host are lowercased, default ports are dropped, an empty
    path becomes ``/``, query parameters are sorted and the fragment is
    stripped. Two URLs addressing the same page map to the same string.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if parts.port is not None and DEFAULT_PORTS.get(scheme) != parts.port:
        host = f"{host}:{parts.port}"
    path = parts.path or "/"
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    return urlunsplit((scheme, host, path, query, ""))


def resolve_link(page_url: str, href: str) -> str | None:
    """Resolve ``href`` found on ``page_url`` to a canonical absolute URL.

    Returns None for links that can never be navigated to (``mailto:``,
    ``javascript:``, pure fragments and the like).
    """
    href = href.strip()
    if not href or href.startswith("#"):
        return None
    scheme = urlsplit(href).scheme.lower()
    if scheme in IGNORED_SCHEMES:
        return None
    absolute = urljoin(page_url, href)
    if urlsplit(absolute).scheme not in DEFAULT_PORTS:
        return None
    return canonicalize_url(absolute)


def origin(url: str) -> str:
    """Return the ``scheme://host[:port]`` origin of a canonical URL."""
    parts = urlsplit(canonicalize_url(url))
    return f"{parts.scheme}://{parts.netloc}"


def same_origin(url: str, other: str) -> bool:
    """Check whether two URLs share scheme, host and port."""
    return origin(url) == origin(other)


def page_key(url: str) -> str:
    """Return the host-independent part of a canonical URL (path and query).

    Check identifiers are built from this key so the same logical check can
    be matched across environments that serve the app from different hosts.
    """
    parts = urlsplit(canonicalize_url(url))
    return f"{parts.path}?{parts.query}" if parts.query else parts.path
