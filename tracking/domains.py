"""
Domain helpers for the approved-website allow-list.

Matching is boundary-aware so an approved "x.com" never matches
"netflix.com", while subdomains of an approved domain do match.
"""

import logging
from typing import Iterable, List, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


def normalise_domain(value: str) -> Optional[str]:
    """
    Reduce a URL or domain-like string to a bare lowercase host.

    Examples:
        "https://Docs.Google.com/document/d/1" -> "docs.google.com"
        "www.github.com" -> "github.com"
        "confluence.com/" -> "confluence.com"

    Returns:
        Host name, or None if nothing domain-like is present.
    """
    if not value:
        return None

    text = value.strip().lower()
    if not text:
        return None

    if "://" not in text:
        text = "//" + text

    try:
        host = urlparse(text).hostname or ""
    except ValueError as e:
        logger.debug(f"Could not parse domain from {value!r}: {e}")
        return None

    if host.startswith("www."):
        host = host[len("www."):]

    if "." not in host:
        return None
    return host


def normalise_domains(values: Iterable[str]) -> List[str]:
    """Normalise a list of domains, dropping junk and duplicates while keeping order."""
    seen = set()
    result = []
    for value in values:
        if not isinstance(value, str):
            continue
        domain = normalise_domain(value)
        if domain and domain not in seen:
            seen.add(domain)
            result.append(domain)
    return result


def is_domain_allowed(url_or_domain: str, approved: Iterable[str]) -> bool:
    """
    Check whether a URL or domain falls under the approved list.

    A host matches an approved domain when it is equal to it or is one of
    its subdomains ("docs.google.com" is covered by "google.com").

    Args:
        url_or_domain: Observed URL or domain
        approved: Approved domains from setup

    Returns:
        True if the host is approved
    """
    host = normalise_domain(url_or_domain)
    if not host:
        return False

    for pattern in approved:
        allowed = normalise_domain(pattern)
        if not allowed:
            continue
        if host == allowed or host.endswith("." + allowed):
            return True
    return False
