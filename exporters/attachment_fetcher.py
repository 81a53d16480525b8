"""Paced download of page attachments into the vault."""

import logging
import posixpath
import time
from typing import Callable, Dict, Optional, Tuple

from models import FetchKind
from fetchers.errors import ImportAbortedError, MigrationError, UnauthenticatedError
from .vault import sanitize_file_name


class AttachmentFetcher:
    """
    Downloads attachments referenced by page content.

    This fetcher:
    1. Assigns each attachment an output name unique within its folder
    2. Skips the download when its own file already exists (re-runs are idempotent)
    3. Pauses after every batch of downloads to stay under the service's rate limit
    4. Reports each attachment as saved or failed without failing the page
    """

    def __init__(
        self,
        client,
        vault,
        reporter=None,
        state=None,
        batch_size: int = 7,
        batch_pause: float = 7.5,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the attachment fetcher.

        Args:
            client: GraphClient used for the binary downloads
            vault: FileVault the files are written into
            reporter: Progress reporter for per-attachment results
            state: ImportStateStore recording which location owns each saved path
            batch_size: Downloads between pauses
            batch_pause: Pause length in seconds
            sleep: Sleep function used for the pause
            logger: Logger instance
        """
        self.client = client
        self.vault = vault
        self.reporter = reporter
        self.state = state
        self.batch_size = max(1, batch_size)
        self.batch_pause = batch_pause
        self.sleep = sleep
        self.logger = logger or logging.getLogger('onenote_markdown_migrator.exporters.attachment_fetcher')

        self.download_count = 0
        # {(folder, output_name): content_location} for names handed out this session
        self.assigned_names: Dict[Tuple[str, str], str] = {}

        self.stats = {
            'total_attachments': 0,
            'downloaded': 0,
            'skipped': 0,
            'failed': 0,
            'total_size_bytes': 0
        }

    def fetch(self, name: str, content_location: str, folder: str = '') -> Optional[str]:
        """
        Download one attachment unless it is already in the vault.

        Args:
            name: Display name of the attachment
            content_location: URL of the attachment's binary content
            folder: Vault-relative destination folder

        Returns:
            Vault-relative output path, or None if the download failed
        """
        self.stats['total_attachments'] += 1
        folder = folder.strip('/')
        output_name = self._assign_name(folder, name, content_location)
        output_path = posixpath.join(folder, output_name) if folder else output_name

        if self.vault.exists(output_path):
            self.logger.debug(f"Attachment already exists, skipping download: {output_path}")
            self.stats['skipped'] += 1
            return output_path

        self._pace()

        try:
            data = self.client.fetch(content_location, FetchKind.BINARY)
            if folder:
                self.vault.create_folder(folder)
            self.vault.create_binary(output_path, data)
        except (ImportAbortedError, UnauthenticatedError):
            raise
        except (MigrationError, OSError) as e:
            self.stats['failed'] += 1
            self.logger.warning(f"Failed to download attachment '{name}': {e}")
            if self.reporter:
                self.reporter.report_failed(name, str(e))
            return None

        self.stats['downloaded'] += 1
        self.stats['total_size_bytes'] += len(data)
        self.logger.debug(f"Saved attachment: {output_path} ({len(data)} bytes)")
        if self.reporter:
            self.reporter.report_attachment_success(output_name)
        return output_path

    def _pace(self) -> None:
        if self.download_count and self.download_count % self.batch_size == 0:
            self.logger.info(f"Downloaded {self.download_count} attachments, "
                             f"pausing {self.batch_pause}s to respect rate limits")
            self.sleep(self.batch_pause)
        self.download_count += 1

    def _assign_name(self, folder: str, name: str, content_location: str) -> str:
        """
        Output name for an attachment, suffixed _1, _2, ... when the name is taken by another file.

        A name belongs to a content location once handed out, in this run or
        (through the import state) an earlier one. An existing file with no
        known owner counts as taken.
        """
        name = sanitize_file_name(name)
        stem, suffix = posixpath.splitext(name)

        candidate = name
        counter = 1
        while True:
            path = posixpath.join(folder, candidate) if folder else candidate
            owner = self.assigned_names.get((folder, candidate))
            if owner is None and self.state is not None:
                owner = self.state.attachment_owner(path)

            if owner == content_location or (owner is None and not self.vault.exists(path)):
                self.assigned_names[(folder, candidate)] = content_location
                if self.state is not None:
                    self.state.record_attachment(path, content_location)
                return candidate

            candidate = f"{stem}_{counter}{suffix}"
            counter += 1
