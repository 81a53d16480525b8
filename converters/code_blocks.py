"""Reconstruction of code blocks from monospace-styled OneNote paragraphs."""

import logging
from typing import List

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from .html_cleaner import parse_style
from .markdown_converter import is_raw_markdown

logger = logging.getLogger('onenote_markdown_migrator.converters.code')

MONOSPACE_FONTS = ('consolas', 'courier new', 'courier', 'lucida console', 'monospace')


def is_monospace(element) -> bool:
    if not isinstance(element, Tag):
        return False
    font = parse_style(element.get('style', '')).get('font-family', '').lower()
    return any(name in font for name in MONOSPACE_FONTS)


def reconstruct_code_blocks(soup: BeautifulSoup, ctx) -> BeautifulSoup:
    """
    Merge runs of monospace paragraphs into fenced code blocks.

    Paragraphs separated only by line breaks join into one block, one line per
    paragraph line. A lone single-line paragraph becomes inline code, and
    monospace spans inside ordinary text become inline code.
    """
    for paragraph in soup.find_all('p'):
        if paragraph.parent is None or paragraph.find_parent('pre'):
            continue
        if not _is_monospace_paragraph(paragraph):
            continue

        run = [paragraph]
        separators = []
        pending = []
        node = paragraph.next_sibling
        while node is not None:
            if _is_blank(node) or _is_break(node):
                pending.append(node)
            elif isinstance(node, Tag) and node.name == 'p' and _is_monospace_paragraph(node):
                run.append(node)
                separators.extend(pending)
                pending = []
            else:
                break
            node = node.next_sibling

        lines = []
        for para in run:
            lines.extend(_paragraph_lines(para))

        if len(run) == 1 and len(lines) == 1:
            code = soup.new_tag('code')
            code.string = lines[0]
            paragraph.clear()
            paragraph.append(code)
            continue

        pre = soup.new_tag('pre')
        code = soup.new_tag('code')
        code.string = '\n'.join(lines)
        pre.append(code)
        paragraph.replace_with(pre)
        for node in separators + run[1:]:
            node.extract()

        logger.debug(f"Merged {len(run)} monospace paragraph(s) into a code block")

    for span in soup.find_all('span'):
        if is_raw_markdown(span) or not is_monospace(span) or span.find_parent(['pre', 'code']):
            continue
        span.name = 'code'
        del span['style']

    return soup


def _is_monospace_paragraph(paragraph: Tag) -> bool:
    if is_monospace(paragraph):
        return True

    content = [c for c in paragraph.children if not _is_blank(c) and not _is_break(c)]
    return bool(content) and all(
        isinstance(c, Tag) and c.name == 'span' and is_monospace(c) for c in content
    )


def _paragraph_lines(paragraph: Tag) -> List[str]:
    parts = []
    for node in paragraph.descendants:
        if isinstance(node, Comment):
            continue
        if isinstance(node, NavigableString):
            parts.append(str(node))
        elif _is_break(node):
            parts.append('\n')

    text = ''.join(parts).replace('\xa0', ' ')
    return [line.rstrip() for line in text.split('\n')]


def _is_blank(node) -> bool:
    return isinstance(node, NavigableString) and not node.strip()


def _is_break(node) -> bool:
    return isinstance(node, Tag) and node.name == 'br'
