"""Extraction of embedded files, images and videos from OneNote page HTML."""

import logging
import posixpath
from datetime import datetime
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from models import AttachmentRef
from exporters.vault import sanitize_file_name
from .markdown_converter import raw_markdown

logger = logging.getLogger('onenote_markdown_migrator.converters.attachments')

# File types the vault can display or embed
COMPATIBLE_EXTENSIONS = {
    'png', 'webp', 'jpg', 'jpeg', 'gif', 'bmp', 'svg',
    'mpg', 'm4a', 'webm', 'wav', 'ogv', '3gp', 'mov', 'mp4', 'mkv',
    'pdf',
}
VIDEO_EMBED_HOSTS = ('youtube.com', 'youtu.be')


def extract_attachments(soup: BeautifulSoup, ctx) -> BeautifulSoup:
    """
    Download embedded resources and replace them with embed syntax.

    Objects become ![[name]] embeds, images become ![alt](name) and iframes
    become a video embed (known video hosts) or a plain link.
    """
    _convert_objects(soup, ctx)
    _convert_images(soup, ctx)
    _convert_iframes(soup, ctx)
    return soup


def _convert_objects(soup: BeautifulSoup, ctx) -> None:
    for obj in soup.find_all('object'):
        name = obj.get('data-attachment')
        location = obj.get('data')
        if not name or not location:
            logger.debug("Skipping object without data-attachment or data")
            continue

        extension = name.rsplit('.', 1)[-1].lower() if '.' in name else ''
        if extension not in COMPATIBLE_EXTENSIONS and not ctx.import_incompatible_attachments:
            logger.info(f"Skipping incompatible attachment '{name}'")
            obj.decompose()
            continue

        output_name = _fetch(ctx, name, location)
        obj.replace_with(raw_markdown(soup, f"![[{output_name}]]"))


def _convert_images(soup: BeautifulSoup, ctx) -> None:
    created = ctx.page.created or datetime.now()
    stamp = created.strftime('%Y-%m-%d-%H%M%S')

    index = 0
    for img in soup.find_all('img'):
        location = img.get('data-fullres-src') or img.get('src')
        if not location:
            continue

        content_type = img.get('data-fullres-src-type') or img.get('data-src-type') or 'image/png'
        extension = content_type.split('/')[-1].split('+')[0].lower()
        name = f"Exported image {stamp}-{index}.{extension}"
        index += 1

        output_name = _fetch(ctx, name, location)
        # Wikilink embeds resolve by name wherever the attachment folder is
        img.replace_with(raw_markdown(soup, f"![[{output_name}]]"))


def _convert_iframes(soup: BeautifulSoup, ctx) -> None:
    for iframe in soup.find_all('iframe'):
        src = iframe.get('data-original-src') or iframe.get('src') or ''
        if not src:
            iframe.decompose()
            continue

        host = urlparse(src).netloc.lower()
        if any(host == h or host.endswith('.' + h) for h in VIDEO_EMBED_HOSTS):
            iframe.replace_with(raw_markdown(soup, f"![Embedded YouTube video]({src})"))
        else:
            link = soup.new_tag('a', href=src)
            link.string = src
            iframe.replace_with(link)


def _fetch(ctx, name: str, location: str) -> str:
    """Download through the context's fetcher and return the name to embed."""
    ref = AttachmentRef(name=name, content_location=location)

    output_path = None
    if ctx.attachment_fetcher is not None:
        output_path = ctx.attachment_fetcher.fetch(name, location, ctx.attachment_folder)
        if output_path is None:
            ctx.warnings.append(f"Attachment '{name}' could not be downloaded")

    # A failed download still embeds the intended name so a later run can fill it in
    ref.output_name = posixpath.basename(output_path) if output_path else sanitize_file_name(name)
    ctx.attachments.append(ref)
    return ref.output_name
