"""Normalization of OneNote inline styles into semantic HTML."""

import logging
import re
from typing import Dict, List

from bs4 import BeautifulSoup, Comment, Tag

from .markdown_converter import is_raw_markdown, raw_markdown

logger = logging.getLogger('onenote_markdown_migrator.converters.htmlcleaner')

TABLE_TAGS = ('table', 'tr', 'td', 'th')
HEADING_TAGS = ('h1', 'h2', 'h3', 'h4', 'h5', 'h6')
NO_HIGHLIGHT_VALUES = ('transparent', 'white', '#fff', '#ffffff', 'inherit', 'initial', 'none')

INK_MARKER = 'InkNode is not supported'
DRAWING_BANNER = '> [!caution] This page contained a drawing which was not converted.'


def parse_style(style: str) -> Dict[str, str]:
    """Parse an inline style attribute into {property: value} with lowercased property names."""
    declarations = {}
    for declaration in (style or '').split(';'):
        name, sep, value = declaration.partition(':')
        if sep and name.strip():
            declarations[name.strip().lower()] = value.strip()
    return declarations


def normalize_styles(soup: BeautifulSoup, ctx) -> BeautifulSoup:
    """
    Rewrite inline style declarations as semantic elements.

    Styled spans are renamed (b, i, u, s, mark); styled blocks keep their tag
    and get their children wrapped instead. Table elements only lose their
    styling. Citations get a blockquote marker.
    """
    converted = 0
    for element in soup.find_all(style=True):
        if element.name in TABLE_TAGS:
            del element['style']
            continue
        if is_raw_markdown(element) or element.name in ('pre', 'code') or element.find_parent(['pre', 'code']):
            continue

        wrappers = _semantic_tags(element)
        if not wrappers:
            continue

        if element.name == 'span':
            element.name = wrappers[0]
            del element['style']
            _wrap_contents(soup, element, wrappers[1:])
        else:
            _wrap_contents(soup, element, wrappers)
        converted += 1

    for cite in soup.find_all('cite'):
        cite.insert(0, raw_markdown(soup, '> '))
        cite.insert_after(soup.new_tag('br'))

    if converted:
        logger.debug(f"Converted {converted} styled elements")
    return soup


def _semantic_tags(element: Tag) -> List[str]:
    style = parse_style(element.get('style', ''))
    tags = []

    weight = style.get('font-weight', '').lower()
    if element.name not in HEADING_TAGS and (
        weight in ('bold', 'bolder') or (weight.isdigit() and int(weight) >= 600)
    ):
        tags.append('b')

    if style.get('font-style', '').lower() in ('italic', 'oblique'):
        tags.append('i')

    decoration = ' '.join([
        style.get('text-decoration', ''),
        style.get('text-decoration-line', ''),
    ]).lower()
    if 'underline' in decoration:
        tags.append('u')
    if 'line-through' in decoration:
        tags.append('s')

    background = (style.get('background-color') or style.get('background') or '').lower()
    if background and background not in NO_HIGHLIGHT_VALUES:
        tags.append('mark')

    return tags


def _wrap_contents(soup: BeautifulSoup, element: Tag, names: List[str]) -> None:
    """Move element's children into nested wrapper tags, outermost first."""
    if not names or not element.contents:
        return

    outer = soup.new_tag(names[0])
    inner = outer
    for name in names[1:]:
        tag = soup.new_tag(name)
        inner.append(tag)
        inner = tag

    for child in list(element.contents):
        inner.append(child.extract())
    element.append(outer)


def mark_drawings(soup: BeautifulSoup, ctx) -> BeautifulSoup:
    """Insert a caution banner at the top of the page if it contains unsupported ink."""
    root = soup.body or soup
    if _contains_ink_marker(root):
        banner = soup.new_tag('p')
        banner.append(raw_markdown(soup, DRAWING_BANNER))
        root.insert(0, banner)
        ctx.warnings.append("Page contains a drawing that was not converted")
        logger.info(f"Page '{ctx.page.title}' contains a drawing that was not converted")
    return soup


def _contains_ink_marker(node: Tag) -> bool:
    # Stops at the first marker found
    for child in node.children:
        if isinstance(child, Comment):
            if INK_MARKER in child:
                return True
        elif isinstance(child, Tag) and _contains_ink_marker(child):
            return True
    return False


def is_zero_margin(element: Tag) -> bool:
    """True if the element declares margins and all of them are zero."""
    style = parse_style(element.get('style', ''))
    margins = [value for name, value in style.items() if name == 'margin' or name.startswith('margin-')]
    if not margins:
        return False
    return all(
        re.fullmatch(r'0(\.0+)?([a-z]{2}|%)?', part.strip().lower())
        for value in margins for part in value.split()
    )
