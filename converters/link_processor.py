"""Link processor for rewriting OneNote internal links to vault wikilinks."""

import logging
import re
from typing import Optional, Tuple
from urllib.parse import unquote

from bs4 import BeautifulSoup

from exporters.vault import sanitize_file_name
from .markdown_converter import raw_markdown

logger = logging.getLogger('onenote_markdown_migrator.converters.linkprocessor')

INTERNAL_LINK_SCHEME = 'onenote:'


class LinkProcessor:
    """Resolves onenote: links to the title of the page they point at."""

    def __init__(self, indexer=None, logger: logging.Logger = None):
        """Initialize link processor with the hierarchy indexer used for page lookups."""
        self.logger = logger or logging.getLogger('onenote_markdown_migrator.converters.linkprocessor')
        self.indexer = indexer
        self.page_id_pattern = re.compile(r'page-id=\{?([0-9A-Za-z-]+)\}?')

    def is_internal_link(self, href: str) -> bool:
        return href.strip().lower().startswith(INTERNAL_LINK_SCHEME)

    def parse_internal_link(self, href: str) -> Tuple[str, Optional[str]]:
        """
        Extract (title, page_id) from a onenote: link.

        The fragment of these links starts with the URL-encoded page title,
        followed by &-separated section-id/page-id parameters.
        """
        fragment = href.split('#', 1)[1] if '#' in href else ''
        title = unquote(fragment.split('&', 1)[0]).strip()

        match = self.page_id_pattern.search(href)
        page_id = match.group(1) if match else None
        return title, page_id

    def link_target(self, href: str) -> Optional[str]:
        """Wikilink target for a onenote: link, preferring the title of a known page."""
        title, page_id = self.parse_internal_link(href)

        if page_id and self.indexer is not None:
            page = self.indexer.find_page(page_id)
            if page is not None:
                title = page.title

        if not title:
            return None
        return sanitize_file_name(title)

    def rewrite(self, soup: BeautifulSoup) -> int:
        """Replace internal links in the DOM with wikilinks; returns the number rewritten."""
        rewritten = 0
        for link in soup.find_all('a', href=True):
            href = link['href']
            if not self.is_internal_link(href):
                continue

            target = self.link_target(href)
            if target is None:
                self.logger.debug(f"Could not determine target of internal link: {href}")
                link.unwrap()
                continue

            text = re.sub(r'[\[\]|]', '', link.get_text()).strip()
            wikilink = f"[[{target}|{text}]]" if text and text != target else f"[[{target}]]"
            link.replace_with(raw_markdown(soup, wikilink))
            rewritten += 1

        if rewritten:
            self.logger.debug(f"Rewrote {rewritten} internal links")
        return rewritten


def rewrite_internal_links(soup: BeautifulSoup, ctx) -> BeautifulSoup:
    """Rewrite onenote: links as [[Page title|text]] wikilinks."""
    LinkProcessor(indexer=ctx.indexer).rewrite(soup)
    return soup
