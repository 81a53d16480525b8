"""Data models for the OneNote to Markdown migration pipeline."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime

from dateutil.parser import isoparse

logger = logging.getLogger('onenote_markdown_migrator')


class NodeKind(Enum):
    """Kinds of entities in the notebook hierarchy."""
    NOTEBOOK = "notebook"
    SECTION_GROUP = "section_group"
    SECTION = "section"


class FetchKind(Enum):
    """Response parsing strategies for the Graph fetch client."""
    TEXT = "text"
    BINARY = "binary"
    JSON = "json"
    PAGINATED_JSON = "paginated_json"


@dataclass
class PageRef:
    """A page entry of a section, as returned by the pages listing."""

    id: str
    title: str
    level: int = 0
    order: int = 0
    created: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    content_url: Optional[str] = None
    client_url: Optional[str] = None

    @property
    def content_id(self) -> Optional[str]:
        """The page-id GUID embedded in the page links, used by internal links."""
        for url in (self.client_url, self.content_url):
            if url and 'page-id=' in url:
                return url.split('page-id=', 1)[1].split('&', 1)[0].strip('{}')
        return None

    def matches(self, entity_id: str) -> bool:
        if entity_id == self.id:
            return True
        content_id = self.content_id
        return bool(content_id) and content_id.lower() == entity_id.strip('{}').lower()

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'PageRef':
        """Build a PageRef from a Graph onenotePage resource."""
        created = _parse_timestamp(data.get('createdDateTime'))
        title = (data.get('title') or '').strip()
        if not title:
            stamp = (created or datetime.now()).strftime('%Y%m%d%H%M%S')
            title = f"Untitled-{stamp}"

        return cls(
            id=data['id'],
            title=title,
            level=int(data.get('level') or 0),
            order=int(data.get('order') or 0),
            created=created,
            last_modified=_parse_timestamp(data.get('lastModifiedDateTime')),
            content_url=data.get('contentUrl'),
            client_url=((data.get('links') or {}).get('oneNoteClientUrl') or {}).get('href'),
        )


@dataclass
class TreeNode:
    """A notebook, section group or section in the hierarchy forest."""

    id: str
    display_name: str
    kind: NodeKind
    children: List['TreeNode'] = field(default_factory=list)
    pages: List[PageRef] = field(default_factory=list)
    created: Optional[datetime] = None
    children_url: Optional[str] = None

    def add_child(self, child: 'TreeNode') -> None:
        self.children.append(child)

    def iter_sections(self) -> List['TreeNode']:
        """All sections at or below this node, in tree order."""
        if self.kind == NodeKind.SECTION:
            return [self]
        sections = []
        for child in self.children:
            sections.extend(child.iter_sections())
        return sections

    def find(self, node_id: str) -> Optional['TreeNode']:
        """Find a node by ID at or below this node."""
        if self.id == node_id:
            return self
        for child in self.children:
            found = child.find(node_id)
            if found:
                return found
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize node to dictionary."""
        return {
            'id': self.id,
            'display_name': self.display_name,
            'kind': self.kind.value,
            'children': [child.to_dict() for child in self.children],
            'pages': [{'id': p.id, 'title': p.title, 'level': p.level, 'order': p.order}
                      for p in self.pages]
        }


@dataclass
class AttachmentRef:
    """An attachment referenced from page content."""

    name: str
    content_location: str
    output_name: Optional[str] = None


@dataclass
class WriteOptions:
    """File timestamps applied when a page is written, in epoch seconds."""

    ctime: float
    mtime: float

    @classmethod
    def for_page(cls, page: PageRef) -> 'WriteOptions':
        stamp = page.last_modified or page.created
        seconds = stamp.timestamp() if stamp else datetime.now().timestamp()
        return cls(ctime=seconds, mtime=seconds)


@dataclass
class TransformResult:
    """Output of the content transformer for one page."""

    markdown: str
    write_options: WriteOptions
    inkml: str = ''
    attachments: List[AttachmentRef] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return isoparse(value)
    except ValueError:
        logger.warning(f"Unparseable timestamp: {value}")
        return None


__all__ = [
    'AttachmentRef',
    'FetchKind',
    'NodeKind',
    'PageRef',
    'TransformResult',
    'TreeNode',
    'WriteOptions'
]
