"""
Migration orchestrator for a OneNote import.

Sequences the import of the selected sections strictly one page at a time:
Resolve folder → Fetch content → Transform (attachments included) → Write →
Record. Per-page errors are reported and the import moves on; only the abort
conditions (stall, consecutive failures, cancellation, lost sign-in) end the
run early.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from models import FetchKind, PageRef, TreeNode
from config_loader import get_nested
from converters import ContentTransformer, TransformContext
from exporters import AttachmentFetcher, sanitize_file_name
from fetchers.errors import (
    ImportAbortedError,
    ImportCancelledError,
    MigrationError,
    PathResolutionError,
    UnauthenticatedError,
)
from logger import ProgressTracker, log_section

PAGE_CONTENT_PARAMS = {'includeInkML': 'true'}
PREVIOUSLY_IMPORTED = "Previously imported"


class MigrationOrchestrator:
    """Central coordinator for importing sections into the vault."""

    def __init__(
        self,
        config: Dict[str, Any],
        client,
        indexer,
        vault,
        state,
        reporter,
        transformer: Optional[ContentTransformer] = None,
        attachment_fetcher: Optional[AttachmentFetcher] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize migration orchestrator.

        Args:
            config: Configuration dictionary
            client: GraphClient shared by every component
            indexer: HierarchyIndexer holding the discovered forest
            vault: FileVault pages and attachments are written into
            state: ImportStateStore of previously imported page IDs
            reporter: ProgressReporter receiving every outcome
            transformer: Page transformer (built from config when omitted)
            attachment_fetcher: Attachment fetcher (built from config when omitted)
            sleep: Sleep function used for the page-batch pause
            logger: Optional logger instance
        """
        self.config = config
        self.client = client
        self.indexer = indexer
        self.vault = vault
        self.state = state
        self.reporter = reporter
        self.health = client.health
        self.sleep = sleep
        self.logger = logger or logging.getLogger('onenote_markdown_migrator.orchestrator')

        self.skip_previously_imported = get_nested(config, 'import.skip_previously_imported', True)
        self.import_incompatible_attachments = get_nested(
            config, 'import.import_incompatible_attachments', False
        )
        self.attachment_folder = (get_nested(config, 'import.attachment_folder') or '').strip('/')
        self.page_batch_size = max(1, int(get_nested(config, 'advanced.page_batch_size', 50)))
        self.page_batch_pause = float(get_nested(config, 'advanced.page_batch_pause', 5.0))

        self.transformer = transformer or ContentTransformer(
            frontmatter=get_nested(config, 'import.frontmatter', False)
        )
        self.attachment_fetcher = attachment_fetcher or AttachmentFetcher(
            client,
            vault,
            reporter=reporter,
            state=state,
            batch_size=int(get_nested(config, 'advanced.attachment_batch_size', 7)),
            batch_pause=float(get_nested(config, 'advanced.attachment_batch_pause', 7.5)),
            sleep=sleep
        )

        self.pages_fetched = 0

    def import_sections(self, section_ids: Iterable[str]) -> Dict[str, Any]:
        """
        Import every page of the given sections.

        Args:
            section_ids: IDs of sections in the discovered forest

        Returns:
            The reporter's run summary
        """
        unique_ids = list(dict.fromkeys(section_ids))
        sections = self.indexer.find_sections(unique_ids)

        log_section("Import")
        self.logger.info(f"Importing {len(sections)} section(s)")

        try:
            for section in sections:
                self._import_section(section)
        except (ImportAbortedError, UnauthenticatedError) as e:
            self.logger.error(f"Import aborted: {e}")
        finally:
            self.reporter.close()

        summary = self.reporter.summary()
        self.logger.info(
            f"Import finished: {summary['pages']['succeeded']} imported, "
            f"{summary['pages']['skipped']} skipped, {summary['pages']['failed']} failed"
        )
        return summary

    def _import_section(self, section: TreeNode) -> None:
        self.reporter.status(f"Fetching pages of section '{section.display_name}'")
        try:
            pages = self.indexer.load_pages(section)
        except (ImportAbortedError, UnauthenticatedError) as e:
            self._abort(e, [], 0)
            raise
        except MigrationError as e:
            self.logger.debug(f"Listing pages of section {section.id} failed", exc_info=True)
            self.reporter.report_section_failed(section.id, section.display_name, str(e))
            try:
                self.health.record_page_failure()
            except ImportAbortedError as abort:
                self._abort(abort, [], 0)
                raise
            return

        total = len(pages)
        self.reporter.status(f"Importing section '{section.display_name}'")
        self.reporter.report_progress(0, total)

        with ProgressTracker(total, f"pages in '{section.display_name}'") as tracker:
            for index, page in enumerate(pages):
                try:
                    if self.reporter.is_cancelled():
                        raise ImportCancelledError()
                    imported = self._import_page(page)
                except (ImportAbortedError, UnauthenticatedError) as e:
                    self._abort(e, pages[index:], total)
                    raise
                except Exception as e:
                    self.logger.debug(f"Page {page.id} failed", exc_info=True)
                    self.reporter.report_note_failed(page.id, str(e))
                    tracker.increment(success=False)
                    try:
                        self.health.record_page_failure()
                    except ImportAbortedError as abort:
                        self._abort(abort, pages[index + 1:], total)
                        raise
                else:
                    if imported:
                        tracker.increment(success=True)

                self.reporter.report_progress(index + 1, total)

    def _import_page(self, page: PageRef) -> bool:
        """
        Import one page.

        Returns:
            True if the page was written, False if it was skipped

        Raises:
            PathResolutionError: If the page has no place in the forest
        """
        if self.skip_previously_imported and self.state.has(page.id):
            self.reporter.report_note_skipped(page.id, PREVIOUSLY_IMPORTED)
            return False

        folder = self.indexer.resolve_path(page.id)
        if folder is None:
            raise PathResolutionError(page.id)

        self._pace_pages()
        self.pages_fetched += 1
        self.reporter.status(f"Importing '{page.title}'")
        self.vault.create_folder(folder)

        content = self.client.fetch(
            self.client.url(f"/me/onenote/pages/{page.id}/content"),
            FetchKind.TEXT,
            params=PAGE_CONTENT_PARAMS
        )

        ctx = TransformContext(
            page=page,
            attachment_fetcher=self.attachment_fetcher,
            attachment_folder=self.attachment_folder or folder,
            indexer=self.indexer,
            import_incompatible_attachments=self.import_incompatible_attachments,
        )
        result = self.transformer.transform(content, page, ctx)
        for warning in result.warnings:
            self.logger.warning(f"{page.title}: {warning}")

        path = self.vault.available_path(folder, sanitize_file_name(page.title))
        self.vault.create(path, result.markdown, result.write_options)

        self.state.mark_imported(page.id)
        self.health.record_page_success()
        self.reporter.report_note_success(page.id, page.title)
        self.logger.info(f"Imported '{page.title}' to {path}")
        return True

    def _pace_pages(self) -> None:
        if self.pages_fetched and self.pages_fetched % self.page_batch_size == 0:
            self.logger.info(f"Pausing {self.page_batch_pause}s after {self.pages_fetched} pages")
            self.sleep(self.page_batch_pause)

    def _abort(self, error: Exception, remaining: List[PageRef], total: int) -> None:
        """Explain the abort and mark the pages that will not be processed."""
        reason = str(error)
        self.reporter.status(reason)
        self.reporter.report_aborted(reason)
        for page in remaining:
            self.reporter.report_note_skipped(page.id, reason)
        self.reporter.report_progress(total, total)
