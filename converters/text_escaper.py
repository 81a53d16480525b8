"""Escaping of markdown-significant characters in page text."""

import re

from bs4 import BeautifulSoup, NavigableString

from .markdown_converter import MATH_ATTR, RAW_MARKDOWN_ATTR

MARKDOWN_CHARS = re.compile(r'([\\*_`\[\]<$])')
MARKDOWN_PAIRS = re.compile(r'(==|~~)')
PROTECTED_TAGS = ('pre', 'code', 'script', 'style')


def escape_markdown_text(text: str) -> str:
    """Backslash-escape characters the vault would read as markdown syntax."""
    text = MARKDOWN_CHARS.sub(r'\\\1', text)
    return MARKDOWN_PAIRS.sub(lambda m: '\\' + m.group(1)[0] + '\\' + m.group(1)[1], text)


def escape_text(soup: BeautifulSoup, ctx) -> BeautifulSoup:
    """
    Escape text nodes, leaving code, math and emitted markdown untouched.

    Runs after the math stage so converted equations are never escaped.
    """
    for node in soup.find_all(string=True):
        # Comments, doctypes and CDATA are NavigableString subclasses
        if type(node) is not NavigableString or _is_protected(node):
            continue
        escaped = escape_markdown_text(str(node))
        if escaped != node:
            node.replace_with(escaped)
    return soup


def _is_protected(node: NavigableString) -> bool:
    for parent in node.parents:
        if parent.name in PROTECTED_TAGS:
            return True
        if parent.has_attr(RAW_MARKDOWN_ATTR) or parent.has_attr(MATH_ATTR):
            return True
    return False
