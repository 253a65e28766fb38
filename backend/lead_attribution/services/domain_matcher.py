"""
Domain matching for discovered company/contact records.

A candidate matches a requested domain exactly, or as a subdomain of it
(`corp.google.com` under `google.com`). Subdomain matches require the
separating dot, so `agoogle.com` never matches `google.com`.
"""

import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Union

from lead_attribution.exceptions import InvalidDomainInput

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^https?://")
_PATH_CUT_RE = re.compile(r"[/?#]")


class MatchKind(str, enum.Enum):
    EXACT = "EXACT"
    SUBDOMAIN = "SUBDOMAIN"
    NONE = "NONE"


@dataclass(frozen=True)
class DomainMatch:
    matched: bool
    normalized_domain: str
    match_kind: MatchKind


NO_MATCH = DomainMatch(matched=False, normalized_domain="", match_kind=MatchKind.NONE)


def normalize_domain(value: Any) -> str:
    """
    Normalize a URL, bare domain or email address to a lower-case host.

    - Strip whitespace and lower-case
    - Remove http:// or https://
    - Drop a user@ prefix (emails yield their domain)
    - Remove a leading www.
    - Discard path, query and fragment

    Raises:
        InvalidDomainInput: value is not a string or normalizes to nothing usable
    """
    if not isinstance(value, str):
        raise InvalidDomainInput(f"Domain must be a string, got {type(value).__name__}")

    domain = value.strip().lower()
    domain = _SCHEME_RE.sub("", domain)
    domain = _PATH_CUT_RE.split(domain, maxsplit=1)[0]
    if "@" in domain:
        domain = domain.rsplit("@", 1)[1]
    if domain.startswith("www."):
        domain = domain[4:]
    domain = domain.rstrip(".")

    if not domain or any(ch.isspace() for ch in domain):
        raise InvalidDomainInput(f"Not a domain: {value!r}")

    return domain


class DomainSet:
    """Immutable set of normalized target domains for one matching operation."""

    __slots__ = ("_domains",)

    def __init__(self, domains: Iterable[str] = ()):
        normalized = set()
        for raw in domains:
            try:
                normalized.add(normalize_domain(raw))
            except InvalidDomainInput:
                logger.debug(f"Ignoring unusable requested domain: {raw!r}")
        self._domains = frozenset(normalized)

    def __contains__(self, domain: object) -> bool:
        return domain in self._domains

    def __iter__(self) -> Iterator[str]:
        return iter(self._domains)

    def __len__(self) -> int:
        return len(self._domains)

    def __repr__(self):
        return f"DomainSet({sorted(self._domains)!r})"

    def parent_of(self, domain: str) -> Union[str, None]:
        """Return the requested domain that `domain` is a subdomain of, if any."""
        for requested in self._domains:
            if domain.endswith("." + requested):
                return requested
        return None


def match(candidate: Any, requested: Union[DomainSet, Iterable[str]]) -> DomainMatch:
    """
    Decide whether a candidate domain/URL belongs to the requested set.

    Never raises: unusable candidates yield a NONE match.
    """
    domains = requested if isinstance(requested, DomainSet) else DomainSet(requested)

    if candidate is None:
        return NO_MATCH
    try:
        domain = normalize_domain(candidate)
    except InvalidDomainInput as e:
        logger.debug(f"Candidate treated as no match: {e}")
        return NO_MATCH

    if domain in domains:
        return DomainMatch(matched=True, normalized_domain=domain, match_kind=MatchKind.EXACT)

    if domains.parent_of(domain) is not None:
        return DomainMatch(matched=True, normalized_domain=domain, match_kind=MatchKind.SUBDOMAIN)

    return DomainMatch(matched=False, normalized_domain=domain, match_kind=MatchKind.NONE)


class DomainMatcher:
    """Matches candidates against a fixed target set built once per run."""

    def __init__(self, requested: Iterable[str]):
        self.domains = DomainSet(requested)

    def match(self, candidate: Any) -> DomainMatch:
        return match(candidate, self.domains)
