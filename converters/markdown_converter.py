"""Final HTML to Markdown conversion for transformed OneNote pages."""

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup, Tag
from markdownify import MarkdownConverter as MarkdownifyConverter

RAW_MARKDOWN_ATTR = 'data-raw-markdown'
MATH_ATTR = 'data-math'


def raw_markdown(soup: BeautifulSoup, markdown: str, **attrs) -> Tag:
    """
    Create a span whose markdown is emitted verbatim by the final conversion.

    Earlier stages use these for syntax markdownify has no element for
    (wikilinks, embeds, hashtags, checklist markers).
    """
    span = soup.new_tag('span')
    span[RAW_MARKDOWN_ATTR] = markdown
    for name, value in attrs.items():
        span[name] = value
    return span


def is_raw_markdown(element) -> bool:
    return isinstance(element, Tag) and element.has_attr(RAW_MARKDOWN_ATTR)


class MarkdownConverter(MarkdownifyConverter):
    """
    markdownify converter tuned for the vault's markdown dialect.

    Text escaping happens in an earlier DOM stage, so markdownify's own
    escaping is disabled here.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, **kwargs):
        markdownify_options = {
            'heading_style': 'ATX',  # Use # for headings
            'bullets': '-',  # Use - for unordered lists
            'escape_asterisks': False,
            'escape_underscores': False,
            'escape_misc': False,
        }
        markdownify_options.update(kwargs)
        super().__init__(**markdownify_options)

        self.logger = logger or logging.getLogger('onenote_markdown_migrator.converters.markdownconverter')

    def convert_document(self, soup: BeautifulSoup) -> str:
        """Convert a transformed page DOM to markdown text."""
        self.logger.debug("Converting to markdown")

        for element in soup.find_all(['head', 'script', 'style']):
            element.decompose()

        markdown = self.convert_soup(soup)
        return self._final_cleanup(markdown).strip()

    def _final_cleanup(self, markdown: str) -> str:
        """Final cleanup pass - remove excessive blank lines."""
        # Whitespace-only lines left by OneNote's layout divs
        markdown = re.sub(r'\n[ \t]+\n', '\n\n', markdown)

        # Replace 3+ consecutive newlines with 2 newlines
        while '\n\n\n' in markdown:
            markdown = markdown.replace('\n\n\n', '\n\n')

        return markdown

    def convert_span(self, el, text, parent_tags=None, **kwargs):
        """Emit raw markdown spans verbatim, pass other spans through."""
        if el.has_attr(RAW_MARKDOWN_ATTR):
            return el[RAW_MARKDOWN_ATTR]
        return text

    def convert_mark(self, el, text, parent_tags=None, **kwargs):
        if not text.strip():
            return text
        return f"=={text}=="

    def convert_u(self, el, text, parent_tags=None, **kwargs):
        # No markdown syntax for underline; the vault renders inline HTML
        if not text.strip():
            return text
        return f"<u>{text}</u>"

    def convert_pre(self, el, text, parent_tags=None, **kwargs):
        """Handle pre elements as fenced code blocks."""
        code_el = el.find('code')
        code_text = code_el.get_text() if code_el else el.get_text()
        code_text = code_text.strip('\n')
        if not code_text:
            return ''
        return f"\n\n```\n{code_text}\n```\n\n"

    def convert_code(self, el, text, parent_tags=None, **kwargs):
        """Handle inline code and code blocks."""
        parent = el.parent
        if parent and parent.name == 'pre':
            # This will be handled by convert_pre, just return the text
            return text

        code_text = el.get_text()
        if not code_text:
            return ''
        # Widen the fence when the code itself contains backticks
        fence = '``' if '`' in code_text else '`'
        return f"{fence}{code_text}{fence}"
