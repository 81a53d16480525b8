"""Conversion of one OneNote page payload into vault markdown."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from bs4 import BeautifulSoup

from models import AttachmentRef, PageRef, TransformResult, WriteOptions
from fetchers.errors import ImportAbortedError, MigrationError, TransformError, UnauthenticatedError
from exporters.vault import render_frontmatter
from .attachment_extractor import extract_attachments
from .code_blocks import reconstruct_code_blocks
from .html_cleaner import mark_drawings, normalize_styles
from .html_list_fixer import fix_lists
from .link_processor import rewrite_internal_links
from .markdown_converter import MarkdownConverter
from .math_converter import convert_math
from .multipart import repair_self_closing_tags, split_multipart
from .tag_converter import convert_tags
from .text_escaper import escape_text


@dataclass
class TransformContext:
    """Per-page state shared by the transformation stages."""

    page: PageRef
    attachment_fetcher: Any = None
    attachment_folder: str = ''
    indexer: Any = None
    import_incompatible_attachments: bool = False
    attachments: List[AttachmentRef] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


Stage = Callable[[BeautifulSoup, TransformContext], BeautifulSoup]

# Order matters: each stage relies on the output of the ones before it
TRANSFORM_STAGES: List[Tuple[str, Stage]] = [
    ('tags', convert_tags),
    ('attachments', extract_attachments),
    ('code', reconstruct_code_blocks),
    ('styles', normalize_styles),
    ('internal_links', rewrite_internal_links),
    ('drawings', mark_drawings),
    ('math', convert_math),
    ('lists', fix_lists),
    ('escaping', escape_text),
]


class ContentTransformer:
    """
    Converts raw page content to markdown.

    The pipeline:
    1. Split the multipart payload into HTML and InkML
    2. Repair self-closing object/iframe tags and parse the HTML
    3. Run every DOM stage in TRANSFORM_STAGES
    4. Convert the DOM to markdown with markdownify
    """

    def __init__(
        self,
        frontmatter: bool = False,
        stages: Optional[List[Tuple[str, Stage]]] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.frontmatter = frontmatter
        self.stages = list(stages if stages is not None else TRANSFORM_STAGES)
        self.logger = logger or logging.getLogger('onenote_markdown_migrator.converters.transformer')
        self.converter = MarkdownConverter(logger=self.logger)

    def transform(self, raw_payload: str, page: PageRef, ctx: TransformContext) -> TransformResult:
        """
        Transform one page.

        Args:
            raw_payload: Page content as fetched (multipart or plain HTML)
            page: Page metadata
            ctx: Stage context (attachment fetcher, indexer, options)

        Returns:
            TransformResult with the markdown and file write options

        Raises:
            TransformError: If the page cannot be converted
        """
        self.logger.debug(f"Transforming page '{page.title}' ({page.id})")

        try:
            html, inkml = split_multipart(raw_payload)
            if inkml:
                self.logger.debug(f"Page '{page.title}' has {len(inkml)} chars of InkML (not rendered)")

            soup = BeautifulSoup(repair_self_closing_tags(html), 'lxml')
            for name, stage in self.stages:
                self.logger.debug(f"Running stage: {name}")
                soup = stage(soup, ctx)

            markdown = self.converter.convert_document(soup)
        except (ImportAbortedError, UnauthenticatedError, TransformError):
            raise
        except MigrationError as e:
            raise TransformError(f"Could not transform page '{page.title}': {e}") from e
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            self.logger.debug(f"Transformation of page {page.id} failed", exc_info=True)
            raise TransformError(f"Could not transform page '{page.title}': {e}") from e

        if self.frontmatter:
            markdown = self._frontmatter(page) + markdown

        return TransformResult(
            markdown=markdown,
            write_options=WriteOptions.for_page(page),
            inkml=inkml,
            attachments=ctx.attachments,
            warnings=ctx.warnings,
        )

    @staticmethod
    def _frontmatter(page: PageRef) -> str:
        metadata = {
            'onenote_page_id': page.id,
            'title': page.title,
        }
        if page.created:
            metadata['created'] = page.created.isoformat()
        if page.last_modified:
            metadata['modified'] = page.last_modified.isoformat()
        return render_frontmatter(metadata)
