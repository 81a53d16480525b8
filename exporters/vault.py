"""File-system vault: the folder of markdown notes the import writes into."""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from models import WriteOptions

ILLEGAL_NAME_CHARS = re.compile(r'[*"\\/<>:|?#^\[\]\x00-\x1f\x7f]')


def sanitize_file_name(name: str) -> str:
    """
    Strip characters that are illegal in vault file names.

    Args:
        name: Page, section or attachment title

    Returns:
        Sanitized name (never empty)
    """
    if not name:
        return "Untitled"

    sanitized = ILLEGAL_NAME_CHARS.sub('', name)
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()

    # A trailing dot or a leading dot would hide or break the file on some systems
    sanitized = sanitized.strip('.').strip()

    if not sanitized:
        sanitized = "Untitled"

    return sanitized


def render_frontmatter(metadata: Dict[str, Any]) -> str:
    """Render a YAML front matter block."""
    body = yaml.safe_dump(metadata, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{body}---\n\n"


class FileVault:
    """
    Vault operations over a local directory.

    All paths are vault-relative and use forward slashes. None of the
    operations are assumed idempotent by callers; existence is checked
    explicitly where it matters.
    """

    def __init__(self, root: str, logger: Optional[logging.Logger] = None):
        self.root = Path(root)
        self.logger = logger or logging.getLogger('onenote_markdown_migrator.exporter.vault')
        self.root.mkdir(parents=True, exist_ok=True)

    def _full_path(self, path: str) -> Path:
        return self.root / path.strip('/')

    def exists(self, path: str) -> bool:
        return self._full_path(path).exists()

    def get_abstract_file_by_path(self, path: str) -> Optional[Path]:
        """Absolute path of a vault file or folder, or None if absent."""
        full_path = self._full_path(path)
        return full_path if full_path.exists() else None

    def create_folder(self, path: str) -> None:
        full_path = self._full_path(path)
        if not full_path.is_dir():
            self.logger.debug(f"Creating folder: {path}")
            full_path.mkdir(parents=True, exist_ok=True)

    def create(self, path: str, content: str, write_options: Optional[WriteOptions] = None) -> Path:
        """
        Write a markdown note.

        Args:
            path: Vault-relative file path
            content: Markdown text
            write_options: Timestamps applied to the written file

        Returns:
            Absolute path of the written file
        """
        full_path = self._full_path(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)

        with open(full_path, 'w', encoding='utf-8') as f:
            f.write(content)

        if write_options:
            # Only access/modification times can be set portably
            os.utime(full_path, (write_options.mtime, write_options.mtime))

        self.logger.debug(f"Wrote {path} ({len(content)} chars)")
        return full_path

    def create_binary(self, path: str, data: bytes) -> Path:
        full_path = self._full_path(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)

        with open(full_path, 'wb') as f:
            f.write(data)

        self.logger.debug(f"Wrote {path} ({len(data)} bytes)")
        return full_path

    def available_path(self, folder: str, name: str, extension: str = '.md') -> str:
        """
        First free vault path for name in folder, adding _1, _2, ... on collision.

        Args:
            folder: Vault-relative folder
            name: Base file name without extension
            extension: File extension including the dot

        Returns:
            Vault-relative path that does not exist yet
        """
        base = f"{folder}/{name}" if folder else name
        candidate = f"{base}{extension}"
        counter = 1
        while self.exists(candidate):
            candidate = f"{base}_{counter}{extension}"
            counter += 1
        return candidate
