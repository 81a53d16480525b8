"""Vault export package for the OneNote to Markdown migration pipeline.

This package writes converted OneNote content into a local vault folder.

Package Structure:
- vault: File-system vault operations, file name sanitization, front matter
- attachment_fetcher: Paced, idempotent download of page attachments

Configuration Referenced:
- import.vault_path: Root folder of the vault
- import.attachment_folder: Optional shared folder for attachments
- advanced.attachment_batch_size / attachment_batch_pause: Download pacing
"""

from .vault import FileVault, render_frontmatter, sanitize_file_name
from .attachment_fetcher import AttachmentFetcher

__all__ = [
    'AttachmentFetcher',
    'FileVault',
    'render_frontmatter',
    'sanitize_file_name'
]
