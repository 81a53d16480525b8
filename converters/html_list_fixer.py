"""
HTML List Fixer for OneNote list markup.

OneNote wraps the text of every list item in a zero-margin paragraph. Left
alone, markdownify renders those as loose list items separated by blank
lines, which also breaks nested lists.
"""

import logging
from bs4 import BeautifulSoup, NavigableString, Tag

from .html_cleaner import is_zero_margin


class HtmlListFixer:
    """Repairs list structures so they convert to tight markdown lists."""

    def __init__(self, logger: logging.Logger = None):
        """Initialize with optional logger."""
        self.logger = logger or logging.getLogger('onenote_markdown_migrator.converters.listfixer')

    def fix(self, soup: BeautifulSoup) -> BeautifulSoup:
        """Main entry point - repair list structures in place."""
        self._unwrap_item_paragraphs(soup)
        self._fix_nested_list_nesting(soup)
        return soup

    def _unwrap_item_paragraphs(self, soup: BeautifulSoup) -> None:
        """Promote the children of a list item's leading zero-margin paragraph."""
        unwrapped = 0
        for li in soup.find_all('li'):
            first = self._first_content_child(li)
            if isinstance(first, Tag) and first.name == 'p' and is_zero_margin(first):
                first.unwrap()
                unwrapped += 1

        if unwrapped:
            self.logger.debug(f"Unwrapped {unwrapped} list item paragraphs")

    @staticmethod
    def _first_content_child(li: Tag):
        for child in li.children:
            if isinstance(child, NavigableString) and not child.strip():
                continue
            return child
        return None

    def _fix_nested_list_nesting(self, soup: BeautifulSoup) -> None:
        """Move lists that sit directly inside a list into the preceding item."""
        for nested in soup.find_all(['ul', 'ol']):
            if nested.parent is None or nested.parent.name not in ('ul', 'ol'):
                continue
            prev_li = nested.find_previous_sibling('li')
            if prev_li:
                prev_li.append(nested.extract())
                self.logger.debug("Fixed nested list structure")


def fix_lists(soup: BeautifulSoup, ctx) -> BeautifulSoup:
    """Unwrap zero-margin paragraphs at the start of list items."""
    return HtmlListFixer().fix(soup)
