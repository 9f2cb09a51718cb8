"""Inject magic login tokens into the links of an HTML email.

Every ``<a>`` and ``<area>`` element with an ``href`` is found with
BeautifulSoup and classified:

1. non-navigable schemes (mailto, tel, sms, javascript, other non-http)
   and pure fragments are skipped
2. unsubscribe links are skipped
3. links to another host, or whose host a browser could read differently
   (backslashes, extra slashes after the scheme), are skipped so tokens
   never leave the site
4. registered skip policies may veto the link

Eligible links keep their query string and gain ``agw_token`` (the token)
and ``agw_redirect`` (the original URL, used as the post-login destination).
Existing magic parameters are replaced, never duplicated.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import unquote_plus, urlencode, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from magic_login.core.hooks import Hooks
from magic_login.services.redirects import (
    MAGIC_PARAMS,
    MAGIC_REDIRECT_PARAM,
    MAGIC_TOKEN_PARAM,
    get_query_param,
    has_ambiguous_authority,
    host_of,
    segment_key,
    split_query,
    strip_magic_params,
)

logger = logging.getLogger(__name__)

_SKIPPED_SCHEMES = frozenset({"mailto", "tel", "sms", "javascript"})
_NAVIGABLE_SCHEMES = frozenset({"http", "https"})
_ANCHOR_TAGS = ["a", "area"]

DEFAULT_UNSUBSCRIBE_MARKERS = ("unsubscribe",)


class LinkDecision(str, Enum):
    """What the rewriter does with a link."""

    REWRITE = "rewrite"
    SKIP_PROTOCOL = "skip_protocol"
    SKIP_FRAGMENT = "skip_fragment"
    SKIP_UNSUBSCRIBE = "skip_unsubscribe"
    SKIP_EXTERNAL = "skip_external"
    SKIP_POLICY = "skip_policy"
    SKIP_MALFORMED = "skip_malformed"


@dataclass(frozen=True)
class LinkClassification:
    """Classification of one href.

    Attributes:
        original_url: The href as found in the document.
        scheme: Lower-cased scheme ("" for relative links).
        host: Lower-cased host, None for host-less links.
        decision: Rewrite or the reason the link is skipped.
    """

    original_url: str
    scheme: str
    host: str | None
    decision: LinkDecision

    @property
    def should_rewrite(self) -> bool:
        """Whether the link receives the token."""
        return self.decision is LinkDecision.REWRITE


@dataclass
class RewriteResult:
    """Output of a rewrite pass.

    Attributes:
        html: The document with eligible links rewritten.
        links_rewritten: Number of links that received the token.
        classifications: One entry per link found, in document order.
    """

    html: str
    links_rewritten: int = 0
    classifications: list[LinkClassification] = field(default_factory=list)


class LinkRewriter:
    """Adds magic login parameters to same-site links in HTML.

    Args:
        site_url: Public site URL; its host defines "same site" and it is
            the fallback destination.
        unsubscribe_markers: Substrings that identify unsubscribe links.
        hooks: Source of skip policies and link URL transforms.
    """

    def __init__(
        self,
        site_url: str,
        *,
        unsubscribe_markers: tuple[str, ...] | list[str] = DEFAULT_UNSUBSCRIBE_MARKERS,
        hooks: Hooks | None = None,
    ) -> None:
        self._site_url = site_url
        self._site_host = host_of(site_url)
        self._unsubscribe_markers = tuple(m.lower() for m in unsubscribe_markers if m)
        self._hooks = hooks or Hooks()

    @property
    def site_root(self) -> str:
        """Fallback destination for links without one."""
        return self._site_url

    def classify(self, url: str) -> LinkClassification:
        """Decide whether ``url`` should carry the token."""
        href = url.strip()

        if href.startswith("#"):
            return LinkClassification(href, "", None, LinkDecision.SKIP_FRAGMENT)

        try:
            parts = urlsplit(href)
            host = parts.hostname
        except ValueError:
            return LinkClassification(href, "", None, LinkDecision.SKIP_MALFORMED)

        scheme = parts.scheme.lower()
        host = host.lower() if host else None

        if scheme in _SKIPPED_SCHEMES or (scheme and scheme not in _NAVIGABLE_SCHEMES):
            decision = LinkDecision.SKIP_PROTOCOL
        elif has_ambiguous_authority(href) or (parts.netloc and host is None):
            decision = LinkDecision.SKIP_MALFORMED
        elif self._is_unsubscribe(parts.path, parts.query):
            decision = LinkDecision.SKIP_UNSUBSCRIBE
        elif host is not None and host != self._site_host:
            decision = LinkDecision.SKIP_EXTERNAL
        elif self._hooks.should_skip_link(href):
            decision = LinkDecision.SKIP_POLICY
        else:
            decision = LinkDecision.REWRITE

        return LinkClassification(href, scheme, host, decision)

    def _is_unsubscribe(self, path: str, query: str) -> bool:
        target = f"{path}?{query}".lower()
        return any(marker in target for marker in self._unsubscribe_markers)

    def rewrite_document(
        self,
        html: str,
        token: str,
        user_id: int | None = None,
    ) -> RewriteResult:
        """Rewrite eligible links in ``html``.

        The input is returned unchanged (not re-serialized) when the token
        is empty or no link qualifies.
        """
        if not token:
            return RewriteResult(html=html)

        soup = BeautifulSoup(html, "html.parser")
        result = RewriteResult(html=html)

        for tag in soup.find_all(_ANCHOR_TAGS, href=True):
            original = str(tag["href"])
            classification = self.classify(original)
            result.classifications.append(classification)
            if not classification.should_rewrite:
                continue

            new_url = self.add_token_to_url(classification.original_url, token)
            new_url = self._hooks.transform_link_url(new_url, original, token, user_id)
            tag["href"] = new_url
            result.links_rewritten += 1

        if result.links_rewritten:
            result.html = str(soup)

        logger.debug(
            "Rewrote %d of %d links for user %s",
            result.links_rewritten,
            len(result.classifications),
            user_id,
        )
        return result

    def rewrite(self, html: str, token: str, user_id: int | None = None) -> str:
        """Return ``html`` with the token added to every eligible link."""
        return self.rewrite_document(html, token, user_id).html

    def add_token_to_url(self, url: str, token: str) -> str:
        """Append the magic parameters to ``url``.

        Existing parameters keep their encoding and order. If ``url`` is
        already a magic link, its token is replaced and its original
        destination is kept.
        """
        parts = urlsplit(url)
        segments = split_query(parts.query)

        kept: list[str] = []
        existing_destination: str | None = None
        for segment in segments:
            key = segment_key(segment)
            if key == MAGIC_REDIRECT_PARAM and "=" in segment:
                existing_destination = unquote_plus(segment.split("=", 1)[1])
            if key not in MAGIC_PARAMS:
                kept.append(segment)

        destination = existing_destination or strip_magic_params(url)
        magic = urlencode(
            {MAGIC_TOKEN_PARAM: token, MAGIC_REDIRECT_PARAM: destination}
        )
        query = "&".join([*kept, magic])

        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))

    def extract_destination(self, url: str) -> str:
        """Recover the original destination from a magic link.

        Returns the decoded ``agw_redirect`` value when present, otherwise
        ``url`` without magic parameters, otherwise the site root.
        """
        try:
            query = urlsplit(url).query
        except ValueError:
            return self.site_root

        if not query:
            return self.site_root

        destination = get_query_param(url, MAGIC_REDIRECT_PARAM)
        if destination:
            return destination

        return strip_magic_params(url)
