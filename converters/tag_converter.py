"""Conversion of OneNote note tags (data-tag) into checklists and hashtags."""

import logging

from bs4 import BeautifulSoup

from .markdown_converter import raw_markdown

logger = logging.getLogger('onenote_markdown_migrator.converters.tags')

TODO_TAG = 'to-do'
TODO_COMPLETED_TAG = 'to-do:completed'


def convert_tags(soup: BeautifulSoup, ctx) -> BeautifulSoup:
    """
    Turn tagged elements into markdown checklist items or inline hashtags.

    A to-do tag prefixes the element with an unchecked or checked box; every
    other tag value is appended as a #hashtag, with ':' replaced by '-'.
    """
    for element in soup.find_all(attrs={'data-tag': True}):
        values = [v.strip() for v in element['data-tag'].split(',') if v.strip()]
        todo_values = [v for v in values if TODO_TAG in v]
        other_values = [v for v in values if TODO_TAG not in v]

        if todo_values:
            checked = TODO_COMPLETED_TAG in todo_values
            box = '[x] ' if checked else '[ ] '
            # A list item already renders its own bullet
            prefix = box if element.name == 'li' else f'- {box}'
            element.insert(0, raw_markdown(soup, prefix))

        for value in other_values:
            element.append(raw_markdown(soup, f" #{value.replace(':', '-')}"))

        del element['data-tag']

    return soup
