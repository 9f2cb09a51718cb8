"""URL helpers shared by link rewriting and login redirects.

Magic links carry two query parameters: the token and the URL the user
originally wanted. Everything here works on raw query segments so that
parameters the site itself uses pass through byte-for-byte.

Same-site rule: a redirect target is safe when it has no host and no
scheme (a host-relative path) or when its host equals the site host or the
host the current request arrived on. URLs a browser could read with a
different host (backslashes, extra slashes after the scheme) are rejected,
as is anything else off-site.
"""

import re
from urllib.parse import parse_qsl, unquote, unquote_plus, urlsplit, urlunsplit

from magic_login.core.errors import UnsafeRedirectTargetError

MAGIC_TOKEN_PARAM = "agw_token"
MAGIC_REDIRECT_PARAM = "agw_redirect"
# Link-tracking services wrap the destination in this parameter
UPSTREAM_URL_PARAM = "url"

MAGIC_PARAMS = frozenset({MAGIC_TOKEN_PARAM, MAGIC_REDIRECT_PARAM})

_ALLOWED_REDIRECT_SCHEMES = frozenset({"http", "https"})
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def split_query(query: str) -> list[str]:
    """Split a raw query string into its non-empty ``key=value`` segments."""
    return [segment for segment in query.split("&") if segment]


def segment_key(segment: str) -> str:
    """Decoded key of a raw ``key=value`` query segment."""
    return unquote_plus(segment.split("=", 1)[0])


def strip_magic_params(url: str) -> str:
    """Remove the magic login parameters from ``url``.

    Other parameters keep their original encoding and order. A URL without
    magic parameters is returned unchanged.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    segments = split_query(parts.query)
    kept = [s for s in segments if segment_key(s) not in MAGIC_PARAMS]
    if len(kept) == len(segments):
        return url

    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path, "&".join(kept), parts.fragment)
    )


def get_query_param(url: str, name: str) -> str | None:
    """Decoded value of the last ``name`` parameter in ``url``, if any."""
    try:
        query = urlsplit(url).query
    except ValueError:
        return None

    value = None
    for key, item in parse_qsl(query, keep_blank_values=True):
        if key == name:
            value = item
    return value


def decode_url_param(value: str, depth: int) -> str:
    """Undo up to ``depth`` extra levels of percent-encoding.

    Link trackers sometimes encode the destination again before wrapping
    it. Decoding stops early once a pass changes nothing.
    """
    decoded = value
    for _ in range(depth):
        next_value = unquote(decoded)
        if next_value == decoded:
            break
        decoded = next_value
    return decoded


def sanitize_redirect_url(url: str) -> str:
    """Trim and clean a redirect candidate.

    Control characters are removed and spaces encoded. URLs with a scheme
    other than http/https (javascript:, data:, ...) become empty strings.
    """
    cleaned = _CONTROL_CHARS.sub("", url.strip()).replace(" ", "%20")
    try:
        scheme = urlsplit(cleaned).scheme
    except ValueError:
        return ""
    if scheme and scheme.lower() not in _ALLOWED_REDIRECT_SCHEMES:
        return ""
    return cleaned


def normalize_host(host: str | None) -> str | None:
    """Lower-cased host name without port, or None if ``host`` is empty."""
    if not host:
        return None
    try:
        hostname = urlsplit(f"//{host}").hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def host_of(url: str) -> str | None:
    """Lower-cased host of ``url``, or None for host-less URLs."""
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def has_ambiguous_authority(url: str) -> bool:
    """Whether a browser may navigate ``url`` to a host urlsplit does not see.

    Browsers read ``\\`` as ``/`` in http(s) URLs and collapse extra slashes
    after the scheme, so ``https://evil.example\\@site.example/`` and
    ``https:///evil.example`` both reach evil.example.
    """
    if "\\" in url or url.startswith("///"):
        return True
    try:
        parts = urlsplit(url)
    except ValueError:
        return True
    return bool(parts.scheme) and not parts.netloc


def is_same_site(
    url: str,
    site_host: str | None,
    request_host: str | None = None,
) -> bool:
    """Whether ``url`` stays on this site.

    Args:
        url: Redirect candidate.
        site_host: Canonical site host.
        request_host: Host header of the current request (may include port).

    Returns:
        True for host-relative paths and for URLs whose host matches either
        the site host or the request host.
    """
    if not url or has_ambiguous_authority(url):
        return False
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError:
        return False

    if not parts.netloc:
        return not parts.scheme

    if hostname is None:
        return False

    allowed = {h for h in (normalize_host(site_host), normalize_host(request_host)) if h}
    return hostname.lower() in allowed


def ensure_same_site(
    url: str,
    site_host: str | None,
    request_host: str | None = None,
) -> str:
    """Return ``url`` if it is same-site.

    Raises:
        UnsafeRedirectTargetError: ``url`` points off-site or is unusable.
    """
    if not is_same_site(url, site_host, request_host):
        raise UnsafeRedirectTargetError()
    return url
