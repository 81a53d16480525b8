"""Tests for the OAuth sign-in and token refresh lifecycle."""

from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from conftest import make_response
from fetchers import AuthSession, TransientNetworkError, UnauthenticatedError
from orchestrator import SettingsStore


def token_session(*responses):
    session = MagicMock()
    session.post.side_effect = list(responses)
    return session


@pytest.fixture
def store(tmp_path):
    return SettingsStore(str(tmp_path / 'state.json'))


class TestAuthorization:
    def test_authorization_url(self):
        auth = AuthSession('client-1', scopes=['notes.read'])
        query = parse_qs(urlparse(auth.authorization_url()).query)

        assert query['client_id'] == ['client-1']
        assert query['response_type'] == ['code']
        assert query['scope'] == ['notes.read offline_access']
        assert query['state'] == [auth.state]

    def test_authorize_exchanges_code_and_persists_refresh_token(self, store):
        session = token_session(make_response(200, {'access_token': 'at-1', 'refresh_token': 'rt-1'}))
        auth = AuthSession('client-1', store=store, session=session)

        assert auth.authorize('the-code', auth.state) == 'at-1'
        assert store.get('refresh_token') == 'rt-1'
        form = session.post.call_args.kwargs['data']
        assert form['grant_type'] == 'authorization_code'
        assert form['code'] == 'the-code'

    def test_state_mismatch_rejected(self):
        session = token_session()
        auth = AuthSession('client-1', session=session)

        with pytest.raises(UnauthenticatedError, match='incorrect state'):
            auth.authorize('the-code', 'forged')
        session.post.assert_not_called()

    def test_refresh_token_not_persisted_when_not_remembered(self, store):
        session = token_session(make_response(200, {'access_token': 'at', 'refresh_token': 'rt'}))
        auth = AuthSession('client-1', store=store, remember_sign_in=False, session=session)
        auth.authorize('code')

        assert auth.refresh_token == 'rt'
        assert store.get('refresh_token') is None


class TestRefresh:
    def test_current_token_refreshes_with_stored_token(self, store):
        store.set('refresh_token', 'stored')
        session = token_session(make_response(200, {'access_token': 'fresh', 'refresh_token': 'rotated'}))
        auth = AuthSession('client-1', store=store, session=session)

        assert auth.current_token() == 'fresh'
        assert session.post.call_args.kwargs['data']['refresh_token'] == 'stored'
        assert store.get('refresh_token') == 'rotated'

    def test_current_token_reuses_access_token(self):
        session = token_session(make_response(200, {'access_token': 'at'}))
        auth = AuthSession('client-1', session=session)
        auth.authorize('code')

        assert auth.current_token() == 'at'
        assert session.post.call_count == 1

    def test_no_refresh_token(self):
        with pytest.raises(UnauthenticatedError):
            AuthSession('client-1').refresh()

    def test_rejected_refresh(self, store):
        store.set('refresh_token', 'expired')
        session = token_session(make_response(400, {'error': 'invalid_grant',
                                                    'error_description': 'AADSTS70008 expired'}))
        auth = AuthSession('client-1', store=store, session=session)

        with pytest.raises(UnauthenticatedError, match='AADSTS70008'):
            auth.refresh()

    def test_network_failure(self, store):
        store.set('refresh_token', 'rt')
        session = token_session(requests.exceptions.ConnectionError('offline'))
        auth = AuthSession('client-1', store=store, session=session)

        with pytest.raises(TransientNetworkError):
            auth.refresh()

    def test_sign_out_forgets_tokens(self, store):
        store.set('refresh_token', 'rt')
        auth = AuthSession('client-1', store=store)
        auth.sign_out()

        assert auth.refresh_token is None
        assert store.get('refresh_token') is None

    def test_client_id_required(self):
        with pytest.raises(ValueError):
            AuthSession('')
