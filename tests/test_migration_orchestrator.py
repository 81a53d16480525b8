"""End-to-end import runs over a scripted Graph session and a temporary vault."""

from unittest.mock import call

import pytest

from config_loader import ConfigLoader
from conftest import GRAPH, RoutedSession, graph_error, make_response
from exporters import FileVault
from fetchers import HierarchyIndexer, UnauthenticatedError
from orchestrator import ImportStateStore, MigrationOrchestrator, ProgressReporter, SettingsStore

IMAGE_URL = f'{GRAPH}/me/onenote/resources/img1/$value'

NOTEBOOKS = {'value': [{
    'id': 'nb1',
    'displayName': 'NB',
    'sectionGroups': [],
    'sections': [{'id': 's1', 'displayName': 'Sec'}],
}]}


def page_json(page_id, title, level=0, order=0):
    return {
        'id': page_id,
        'title': title,
        'level': level,
        'order': order,
        'createdDateTime': '2024-03-05T10:20:30Z',
        'lastModifiedDateTime': '2024-04-01T08:00:00Z',
    }


def page_html(title, body):
    return (f'<html><head><title>{title}</title></head>'
            f'<body><div>{body}</div></body></html>').encode('utf-8')


def content_url(page_id):
    return f'{GRAPH}/me/onenote/pages/{page_id}/content'


def notebook_session(pages, contents=None, extra_routes=None):
    routes = {
        f'{GRAPH}/me/onenote/notebooks': make_response(200, NOTEBOOKS),
        f'{GRAPH}/me/onenote/sections/s1/pages': make_response(200, {'value': pages}),
    }
    for page_id, body in (contents or {}).items():
        routes[content_url(page_id)] = body if not isinstance(body, bytes) else make_response(200, content=body)
    routes.update(extra_routes or {})
    return RoutedSession(routes)


class CancelAfterFirstPage(ProgressReporter):
    def report_note_success(self, page_id, title=None):
        super().report_note_success(page_id, title)
        self.cancel()


@pytest.fixture
def vault(tmp_path):
    return FileVault(str(tmp_path / 'vault'))


@pytest.fixture
def state(tmp_path):
    return ImportStateStore(SettingsStore(str(tmp_path / 'state.json')))


@pytest.fixture
def build(make_client, vault, state, sleep, tmp_path):
    """Wire an orchestrator the way the CLI does, over the given session."""

    def factory(session, reporter=None, import_options=None, **advanced):
        config = ConfigLoader.with_defaults({
            'graph': {'client_id': 'abc'},
            'import': dict(import_options or {}, vault_path=str(tmp_path / 'vault')),
            'advanced': advanced,
        })
        client = make_client(session)
        indexer = HierarchyIndexer(client, output_folder='OneNote')
        indexer.discover()
        reporter = reporter or ProgressReporter(show_progress=False)
        return MigrationOrchestrator(config, client, indexer, vault, state, reporter, sleep=sleep)

    return factory


class TestImportRun:
    def test_two_level_section_with_image(self, build, vault):
        session = notebook_session(
            [page_json('p1', 'Top', 0, 0), page_json('p2', 'Child', 1, 1)],
            {
                'p1': page_html('Top', f'<p>Hello</p><img alt="Chart" src="{IMAGE_URL}" data-src-type="image/png"/>'),
                'p2': page_html('Child', '<p>Nested page</p>'),
            },
            {IMAGE_URL: make_response(200, content=b'\x89PNG')},
        )
        orchestrator = build(session)

        summary = orchestrator.import_sections(['s1'])

        folder = vault.root / 'OneNote/NB/Sec/Top'
        top = (folder / 'Top.md').read_text(encoding='utf-8')
        assert 'Hello' in top
        assert '![[Exported image 2024-03-05-102030-0.png]]' in top
        assert 'Nested page' in (folder / 'Child.md').read_text(encoding='utf-8')
        assert (folder / 'Exported image 2024-03-05-102030-0.png').read_bytes() == b'\x89PNG'
        assert summary['pages'] == {'succeeded': 2, 'skipped': 0, 'failed': 0}
        assert summary['attachments'] == {'succeeded': 1, 'failed': 0}
        assert summary['aborted'] is False
        assert orchestrator.reporter.progress == (2, 2)

    def test_shared_attachment_folder(self, build, vault):
        session = notebook_session(
            [page_json('p1', 'Top')],
            {'p1': page_html('Top', f'<img src="{IMAGE_URL}" data-src-type="image/png"/>')},
            {IMAGE_URL: make_response(200, content=b'\x89PNG')},
        )

        build(session, import_options={'attachment_folder': 'OneNote/Attachments'}).import_sections(['s1'])

        top = (vault.root / 'OneNote/NB/Sec/Top.md').read_text(encoding='utf-8')
        assert '![[Exported image 2024-03-05-102030-0.png]]' in top
        assert (vault.root / 'OneNote/Attachments/Exported image 2024-03-05-102030-0.png').exists()
        assert not (vault.root / 'OneNote/NB/Sec/Exported image 2024-03-05-102030-0.png').exists()

    def test_content_requested_with_ink(self, build):
        session = notebook_session([page_json('p1', 'Only')], {'p1': page_html('Only', '<p>x</p>')})
        build(session).import_sections(['s1'])

        content_call = next(c for c in session.calls if c['url'] == content_url('p1'))
        assert content_call['params'] == {'includeInkML': 'true'}

    def test_duplicate_section_ids_import_once(self, build):
        session = notebook_session([page_json('p1', 'Only')], {'p1': page_html('Only', '<p>x</p>')})

        summary = build(session).import_sections(['s1', 's1'])

        assert summary['pages']['succeeded'] == 1
        assert session.urls().count(content_url('p1')) == 1

    def test_title_collision_gets_counter(self, build, vault):
        session = notebook_session(
            [page_json('p1', 'Same', 0, 0), page_json('p2', 'Same', 0, 1)],
            {'p1': page_html('Same', '<p>one</p>'), 'p2': page_html('Same', '<p>two</p>')},
        )
        build(session).import_sections(['s1'])

        section = vault.root / 'OneNote/NB/Sec'
        assert 'one' in (section / 'Same.md').read_text(encoding='utf-8')
        assert 'two' in (section / 'Same_1.md').read_text(encoding='utf-8')


class TestSectionFailures:
    def test_unlistable_section_does_not_stop_the_run(self, build, vault):
        notebooks = {'value': [{
            'id': 'nb1',
            'displayName': 'NB',
            'sectionGroups': [],
            'sections': [{'id': 's1', 'displayName': 'Shared'}, {'id': 's2', 'displayName': 'Mine'}],
        }]}
        session = RoutedSession({
            f'{GRAPH}/me/onenote/notebooks': make_response(200, notebooks),
            f'{GRAPH}/me/onenote/sections/s1/pages': graph_error(403, 'forbidden', 'Access denied'),
            f'{GRAPH}/me/onenote/sections/s2/pages': make_response(200, {'value': [page_json('p9', 'Kept')]}),
            content_url('p9'): make_response(200, content=page_html('Kept', '<p>still here</p>')),
        })
        orchestrator = build(session)

        summary = orchestrator.import_sections(['s1', 's2'])

        assert summary['sections_failed'] == 1
        assert summary['pages'] == {'succeeded': 1, 'skipped': 0, 'failed': 0}
        assert summary['aborted'] is False
        assert orchestrator.reporter.failed_sections[0]['id'] == 's1'
        assert 'still here' in (vault.root / 'OneNote/NB/Mine/Kept.md').read_text(encoding='utf-8')


class TestResume:
    def test_previously_imported_page_is_skipped(self, build, state):
        state.mark_imported('p1')
        session = notebook_session(
            [page_json('p1', 'Top', 0, 0), page_json('p2', 'Child', 1, 1)],
            {'p2': page_html('Child', '<p>Nested</p>')},
        )

        summary = build(session).import_sections(['s1'])

        assert summary['pages'] == {'succeeded': 1, 'skipped': 1, 'failed': 0}
        assert content_url('p1') not in session.urls()
        assert state.has('p2')

    def test_skip_can_be_disabled(self, build, state):
        state.mark_imported('p1')
        session = notebook_session([page_json('p1', 'Top')], {'p1': page_html('Top', '<p>again</p>')})
        orchestrator = build(session)
        orchestrator.skip_previously_imported = False

        summary = orchestrator.import_sections(['s1'])

        assert summary['pages']['succeeded'] == 1
        assert content_url('p1') in session.urls()


class TestAbortConditions:
    def test_consecutive_failures_abort_the_run(self, build):
        pages = [page_json(f'p{i}', f'Page {i}', 0, i) for i in range(1, 7)]
        failing = {f'p{i}': graph_error(500, 'generalException') for i in range(1, 7)}

        summary = build(notebook_session(pages, failing)).import_sections(['s1'])

        assert summary['pages'] == {'succeeded': 0, 'skipped': 1, 'failed': 5}
        assert summary['aborted'] is True
        assert 'failure threshold' in summary['abort_reason']

    def test_success_resets_failure_count(self, build):
        pages = [page_json(f'p{i}', f'Page {i}', 0, i) for i in range(1, 9)]
        contents = {f'p{i}': graph_error(500, 'generalException') for i in range(1, 9)}
        contents['p4'] = page_html('Page 4', '<p>ok</p>')

        summary = build(notebook_session(pages, contents)).import_sections(['s1'])

        assert summary['pages'] == {'succeeded': 1, 'skipped': 0, 'failed': 7}
        assert summary['aborted'] is False

    def test_cancellation_skips_remaining_pages(self, build):
        pages = [page_json(f'p{i}', f'Page {i}', 0, i) for i in range(1, 4)]
        contents = {f'p{i}': page_html(f'Page {i}', '<p>x</p>') for i in range(1, 4)}
        reporter = CancelAfterFirstPage(show_progress=False)

        summary = build(notebook_session(pages, contents), reporter=reporter).import_sections(['s1'])

        assert summary['pages'] == {'succeeded': 1, 'skipped': 2, 'failed': 0}
        assert summary['cancelled'] is True
        assert {n['reason'] for n in reporter.notes['skipped']} == {'Import cancelled by user'}
        assert reporter.progress == (3, 3)

    def test_lost_sign_in_aborts(self, build, auth):
        session = notebook_session([page_json('p1', 'Top')], {'p1': page_html('Top', '<p>x</p>')})
        orchestrator = build(session)
        auth.current_token.side_effect = UnauthenticatedError()

        summary = orchestrator.import_sections(['s1'])

        assert summary['aborted'] is True
        assert summary['abort_reason'].startswith('Not signed in')

    def test_unresolvable_page_fails_and_run_continues(self, build, monkeypatch):
        pages = [page_json('p1', 'Lost', 0, 0), page_json('p2', 'Found', 0, 1)]
        orchestrator = build(notebook_session(pages, {'p2': page_html('Found', '<p>x</p>')}))
        original = orchestrator.indexer.resolve_path
        monkeypatch.setattr(orchestrator.indexer, 'resolve_path',
                            lambda entity_id: None if entity_id == 'p1' else original(entity_id))

        summary = orchestrator.import_sections(['s1'])

        assert summary['pages'] == {'succeeded': 1, 'skipped': 0, 'failed': 1}
        assert 'Could not resolve' in orchestrator.reporter.notes['failed'][0]['reason']


class TestPacing:
    def test_pause_between_page_batches(self, build, sleep):
        pages = [page_json(f'p{i}', f'Page {i}', 0, i) for i in range(1, 6)]
        contents = {f'p{i}': page_html(f'Page {i}', '<p>x</p>') for i in range(1, 6)}

        build(notebook_session(pages, contents), page_batch_size=2, page_batch_pause=3.0).import_sections(['s1'])

        assert sleep.call_args_list == [call(3.0), call(3.0)]

    def test_skipped_pages_do_not_count(self, build, state, sleep):
        for i in range(1, 4):
            state.mark_imported(f'p{i}')
        pages = [page_json(f'p{i}', f'Page {i}', 0, i) for i in range(1, 5)]

        build(notebook_session(pages, {'p4': page_html('Page 4', '<p>x</p>')}),
              page_batch_size=2).import_sections(['s1'])

        sleep.assert_not_called()
