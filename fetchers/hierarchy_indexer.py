"""Discovery of the notebook hierarchy and resolution of entity IDs to output folders."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from models import FetchKind, NodeKind, PageRef, TreeNode
from exporters.vault import sanitize_file_name

NOTEBOOKS_PATH = '/me/onenote/notebooks'
NOTEBOOK_PARAMS = {
    '$expand': 'sections($select=id,displayName),sectionGroups($expand=sections,sectionGroups)',
    '$select': 'id,displayName,createdDateTime',
    '$orderby': 'createdDateTime',
}
SECTION_GROUP_PARAMS = {
    '$expand': 'sectionGroups($expand=sections),sections',
}
PAGE_PARAMS = {
    '$select': 'id,title,createdDateTime,lastModifiedDateTime,level,order,contentUrl,links',
    '$orderby': 'order',
    'pagelevel': 'true',
}


class HierarchyIndexer:
    """
    Builds the notebook forest and maps entities onto deterministic vault folders.

    Output paths depend only on the forest snapshot and the position of each
    page in its section, so re-running discovery on an unchanged remote tree
    reproduces the same paths.
    """

    def __init__(self, client, output_folder: str = 'OneNote', logger: Optional[logging.Logger] = None):
        """
        Initialize the indexer.

        Args:
            client: GraphClient used for every request
            output_folder: Vault folder that holds all imported notebooks
            logger: Logger instance
        """
        self.client = client
        self.output_folder = output_folder.strip('/')
        self.logger = logger or logging.getLogger('onenote_markdown_migrator.fetcher.hierarchy')
        self.notebooks: List[TreeNode] = []

    def discover(self) -> List[TreeNode]:
        """
        Fetch every notebook and materialize its section groups recursively.

        Returns:
            The notebook forest, in creation order
        """
        self.logger.info("Discovering notebooks")
        data = self.client.fetch(
            self.client.url(NOTEBOOKS_PATH),
            FetchKind.PAGINATED_JSON,
            params=NOTEBOOK_PARAMS
        )

        self.notebooks = [self._build_container(item, NodeKind.NOTEBOOK) for item in data]

        section_count = sum(len(nb.iter_sections()) for nb in self.notebooks)
        self.logger.info(f"Found {len(self.notebooks)} notebooks with {section_count} sections")
        return self.notebooks

    def _build_container(self, data: Dict[str, Any], kind: NodeKind) -> TreeNode:
        node = TreeNode(
            id=data['id'],
            display_name=data.get('displayName') or data['id'],
            kind=kind,
            children_url=data.get('sectionGroupsUrl'),
        )

        # Groups come before sections, matching the order the service lists them
        for group in self._section_groups(data):
            node.add_child(self._build_container(group, NodeKind.SECTION_GROUP))

        for section in data.get('sections') or []:
            node.add_child(TreeNode(
                id=section['id'],
                display_name=section.get('displayName') or section['id'],
                kind=NodeKind.SECTION,
            ))

        return node

    def _section_groups(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        groups_url = data.get('sectionGroupsUrl')
        groups = data.get('sectionGroups')

        # The expansion only reaches a fixed depth; a missing key means the children are unknown
        if groups is None:
            needs_fetch = True
        else:
            needs_fetch = any('sections' not in group for group in groups)

        if needs_fetch and groups_url:
            self.logger.debug(f"Fetching nested section groups of {data.get('displayName')}")
            return self.client.fetch(groups_url, FetchKind.PAGINATED_JSON, params=SECTION_GROUP_PARAMS)

        return groups or []

    def load_pages(self, section: TreeNode) -> List[PageRef]:
        """
        Fetch the page metadata of a section, in document order.

        Args:
            section: Section node; its pages list is replaced

        Returns:
            The section's pages sorted by order
        """
        url = self.client.url(f"/me/onenote/sections/{section.id}/pages")
        data = self.client.fetch(url, FetchKind.PAGINATED_JSON, params=PAGE_PARAMS)

        pages = [PageRef.from_api(item) for item in data]
        pages.sort(key=lambda p: p.order)
        section.pages = pages

        self.logger.debug(f"Section '{section.display_name}': {len(pages)} pages")
        return pages

    def find_node(self, node_id: str) -> Optional[TreeNode]:
        for notebook in self.notebooks:
            found = notebook.find(node_id)
            if found:
                return found
        return None

    def find_sections(self, section_ids: Iterable[str]) -> List[TreeNode]:
        """Section nodes for the given IDs, in the order given; unknown IDs are logged."""
        sections = []
        for section_id in section_ids:
            node = self.find_node(section_id)
            if node is None or node.kind != NodeKind.SECTION:
                self.logger.warning(f"Section {section_id} not found in the notebook hierarchy")
                continue
            sections.append(node)
        return sections

    def find_page(self, entity_id: str) -> Optional[PageRef]:
        """Look up a loaded page by page ID or by the ID embedded in its content URL."""
        for notebook in self.notebooks:
            for section in notebook.iter_sections():
                for page in section.pages:
                    if page.matches(entity_id):
                        return page
        return None

    def resolve_path(self, entity_id: str) -> Optional[str]:
        """
        Resolve an entity ID to its vault folder.

        Notebooks, section groups and sections map to their chain of display
        names below the output folder. Pages map to the folder their file is
        written into, following the outline nesting within the section.

        Returns:
            Vault-relative folder path, or None if the entity is not in the forest
        """
        for notebook in self.notebooks:
            path = self._resolve_in(notebook, entity_id, self.output_folder)
            if path is not None:
                return path
        return None

    def _resolve_in(self, node: TreeNode, entity_id: str, parent_path: str) -> Optional[str]:
        path = self._join(parent_path, node.display_name)
        if node.id == entity_id:
            return path

        if node.kind == NodeKind.SECTION:
            for index, page in enumerate(node.pages):
                if page.matches(entity_id):
                    return self._page_folder(node.pages, index, path)
            return None

        for child in node.children:
            found = self._resolve_in(child, entity_id, path)
            if found is not None:
                return found
        return None

    def _page_folder(self, pages: List[PageRef], index: int, section_path: str) -> str:
        page = pages[index]

        if page.level == 0:
            has_children = index + 1 < len(pages) and pages[index + 1].level > 0
            if has_children:
                return self._group_folder(pages, index, section_path)
            return section_path

        parent_index = self._parent_index(pages, index)
        if parent_index is None:
            self.logger.warning(f"Page '{page.title}' has no parent at level {page.level - 1}; "
                                f"placing it in the section folder")
            return section_path
        return self._group_folder(pages, parent_index, section_path)

    def _group_folder(self, pages: List[PageRef], index: int, section_path: str) -> str:
        """Folder named after the page at index, holding its nested pages."""
        page = pages[index]
        parent_index = self._parent_index(pages, index) if page.level > 0 else None
        if parent_index is None:
            base = section_path
        else:
            base = self._group_folder(pages, parent_index, section_path)
        return self._join(base, page.title)

    @staticmethod
    def _parent_index(pages: List[PageRef], index: int) -> Optional[int]:
        """Nearest preceding page exactly one level up."""
        target_level = pages[index].level - 1
        for candidate in range(index - 1, -1, -1):
            if pages[candidate].level == target_level:
                return candidate
        return None

    @staticmethod
    def _join(base: str, name: str) -> str:
        segment = sanitize_file_name(name)
        return f"{base}/{segment}" if base else segment
