"""
Link extraction and URL validation.

Extractors turn raw HTML into candidate link strings in document order.
``validate_and_normalize`` decides which candidates are crawlable URLs.
"""

import re
import logging
from typing import List, Tuple

from bs4 import BeautifulSoup

from .errors import ExtractionFailure


# Anchors written as <a href="..."> with nothing else in the tag
ANCHOR_PATTERN = re.compile(r'<a href="(.*?)">', re.IGNORECASE)

# scheme://[www.]host.tld[/path...]
URL_PATTERN = re.compile(
    r'((http|https)://)(www.)?[a-zA-Z0-9@:%._\+~#?&//=]{2,256}\.[a-z]{2,6}\b'
    r'([-a-zA-Z0-9@:%._\+~#?&//=]*)'
)

# A candidate ends at the first of these characters
LINK_DELIMITERS = (' ', '"')


class RegexLinkExtractor:
    """Extracts href values from plain ``<a href="...">`` anchors."""

    name = 'regex'

    def __init__(self, pattern: re.Pattern = ANCHOR_PATTERN):
        self.pattern = pattern

    def extract_links(self, html_content: str) -> List[str]:
        """
        Return every anchor target in document order.

        Duplicates and malformed values are kept; filtering is the
        validator's job.
        """
        if not isinstance(html_content, str):
            raise ExtractionFailure(
                f"Expected text content, got {type(html_content).__name__}"
            )
        return self.pattern.findall(html_content)


class SoupLinkExtractor:
    """
    Extracts every ``<a href>`` value with BeautifulSoup.
    Picks up anchors the regex misses, such as ones with extra attributes.
    """

    name = 'soup'

    def __init__(self, features: str = 'lxml'):
        self.features = features
        self.logger = logging.getLogger(__name__)

    def extract_links(self, html_content: str) -> List[str]:
        if not isinstance(html_content, str):
            raise ExtractionFailure(
                f"Expected text content, got {type(html_content).__name__}"
            )

        try:
            soup = BeautifulSoup(html_content, self.features)
        except Exception as e:
            raise ExtractionFailure(f"Could not parse HTML: {e}") from e

        return [anchor['href'] for anchor in soup.find_all('a', href=True)]


EXTRACTORS = {
    RegexLinkExtractor.name: RegexLinkExtractor,
    SoupLinkExtractor.name: SoupLinkExtractor,
}


def create_extractor(name: str):
    """Build the link extractor registered under ``name``."""
    try:
        return EXTRACTORS[name]()
    except KeyError:
        raise ValueError(
            f"Unknown link extractor '{name}', expected one of {sorted(EXTRACTORS)}"
        )


def trim_link(raw: str) -> str:
    """Cut a candidate link at the first space or double quote."""
    for index, ch in enumerate(raw):
        if ch in LINK_DELIMITERS:
            return raw[:index]
    return raw


def validate_and_normalize(raw: str) -> Tuple[str, bool]:
    """
    Trim a raw link and check it has the shape of an absolute web URL.

    Pure function: the same input always gives the same result, and a URL
    already in canonical form comes back unchanged.

    Returns:
        (url, True) for an accepted link, ("", False) otherwise
    """
    if not raw:
        return "", False

    url = trim_link(raw)
    if URL_PATTERN.fullmatch(url):
        return url, True
    return "", False


class LinkValidator:
    """Applies ``validate_and_normalize`` to a batch and counts rejections."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'links_checked': 0,
            'links_accepted': 0,
            'links_rejected': 0
        }

    def filter_links(self, raw_links: List[str]) -> List[str]:
        """Return accepted URLs in input order. Duplicates are kept."""
        valid = []
        for raw in raw_links:
            self.stats['links_checked'] += 1
            url, ok = validate_and_normalize(raw)
            if ok:
                self.stats['links_accepted'] += 1
                valid.append(url)
            else:
                self.stats['links_rejected'] += 1
                self.logger.debug(f"Rejected link: {raw!r}")
        return valid

    def get_stats(self):
        return self.stats.copy()
