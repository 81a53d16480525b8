"""Splitting of OneNote page payloads into their HTML and InkML parts."""

import logging
import re
from typing import Tuple

logger = logging.getLogger('onenote_markdown_migrator.converters.multipart')

HTML_CONTENT_TYPE = 'text/html'
INKML_CONTENT_TYPE = 'application/inkml+xml'

SELF_CLOSING_PATTERN = re.compile(r'<(object|iframe)(\s[^>]*?)?\s*/>', re.IGNORECASE)


def split_multipart(payload: str) -> Tuple[str, str]:
    """
    Split a page payload fetched with includeInkML into (html, inkml).

    The first line of a multipart payload is the boundary marker. Each part
    starts with its headers, a blank line, then the body. A payload that does
    not start with a boundary is plain HTML.

    Args:
        payload: Raw page content

    Returns:
        Tuple of (html, inkml); inkml is empty when absent
    """
    payload = payload.replace('\r\n', '\n')
    stripped = payload.lstrip()
    if not stripped.startswith('--'):
        return payload, ''

    boundary = stripped.split('\n', 1)[0].strip()
    # The closing boundary carries a trailing "--"
    boundary = boundary[:-2] if boundary.endswith('--') and len(boundary) > 2 else boundary

    html = ''
    inkml = ''
    for part in stripped.split(boundary):
        if not part.strip() or part.strip() == '--':
            continue

        headers, _, body = part.lstrip('\n').partition('\n\n')
        content_type = _content_type(headers)
        body = body.strip()

        if content_type == HTML_CONTENT_TYPE:
            html = body
        elif content_type == INKML_CONTENT_TYPE:
            inkml = body
        else:
            logger.debug(f"Ignoring multipart part with content type '{content_type}'")

    if not html:
        logger.warning("Multipart payload has no text/html part")
    return html, inkml


def _content_type(headers: str) -> str:
    for line in headers.split('\n'):
        name, _, value = line.partition(':')
        if name.strip().lower() == 'content-type':
            return value.split(';', 1)[0].strip().lower()
    return ''


def repair_self_closing_tags(html: str) -> str:
    """Rewrite <object .../> and <iframe .../> as open/close pairs so they parse as empty elements."""
    return SELF_CLOSING_PATTERN.sub(
        lambda m: f"<{m.group(1)}{m.group(2) or ''}></{m.group(1)}>",
        html
    )
