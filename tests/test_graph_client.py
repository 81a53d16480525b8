"""Tests for the resilient Graph fetch client."""

from unittest.mock import MagicMock, call

import pytest
import requests

from conftest import GRAPH, FakeClock, graph_error, make_response
from fetchers import (
    ConsecutiveFailureError,
    GraphClient,
    ImportCancelledError,
    OtherApiError,
    RateLimitedError,
    RetryPolicy,
    SessionHealth,
    StallTimeoutError,
    TransientNetworkError,
    UnauthenticatedError,
)
from models import FetchKind


def scripted_session(*responses):
    session = MagicMock()
    session.get.side_effect = list(responses)
    return session


class TestSuccessfulFetch:
    """Responses are parsed according to the requested kind."""

    def test_json(self, make_client):
        session = scripted_session(make_response(200, {'displayName': 'Ada'}))
        client = make_client(session)

        assert client.fetch(f'{GRAPH}/me') == {'displayName': 'Ada'}
        _, kwargs = session.get.call_args
        assert kwargs['headers'] == {'Authorization': 'Bearer access-token'}

    def test_text_is_decoded_as_utf8(self, make_client):
        body = '<p>Größe</p>'.encode('utf-8')
        client = make_client(scripted_session(make_response(200, content=body)))

        assert client.fetch(f'{GRAPH}/page', FetchKind.TEXT) == '<p>Größe</p>'

    def test_binary(self, make_client):
        client = make_client(scripted_session(make_response(200, content=b'\x89PNG')))

        assert client.fetch(f'{GRAPH}/resource', FetchKind.BINARY) == b'\x89PNG'

    def test_paginated_json_follows_next_link(self, make_client):
        session = scripted_session(
            make_response(200, {'value': [{'id': 1}], '@odata.nextLink': f'{GRAPH}/items?skip=1'}),
            make_response(200, {'value': [{'id': 2}, {'id': 3}]}),
        )
        client = make_client(session)

        items = client.fetch(f'{GRAPH}/items', FetchKind.PAGINATED_JSON, params={'$top': '1'})

        assert [item['id'] for item in items] == [1, 2, 3]
        first, second = session.get.call_args_list
        assert first.kwargs['params'] == {'$top': '1'}
        assert second.args[0] == f'{GRAPH}/items?skip=1'
        assert second.kwargs['params'] is None

    def test_invalid_json_is_an_api_error(self, make_client):
        policy = RetryPolicy(max_retries=0)
        client = make_client(scripted_session(make_response(200, content=b'not json')), policy=policy)

        with pytest.raises(OtherApiError):
            client.fetch(f'{GRAPH}/me')

    def test_url_joins_api_paths(self):
        assert GraphClient.url('/me/onenote/notebooks') == f'{GRAPH}/me/onenote/notebooks'
        assert GraphClient.url(f'{GRAPH}/already/absolute') == f'{GRAPH}/already/absolute'


class TestRateLimiting:
    """Throttled requests sleep and retry without spending the retry budget."""

    def test_retry_after_header_is_honored(self, make_client, sleep):
        session = scripted_session(
            graph_error(429, 'TooManyRequests', headers={'Retry-After': '2'}),
            make_response(200, {'ok': True}),
        )
        client = make_client(session)

        assert client.fetch(f'{GRAPH}/me') == {'ok': True}
        sleep.assert_called_once_with(2.0)
        assert client.stats['rate_limited'] == 1

    def test_default_wait_without_header(self, make_client, sleep):
        session = scripted_session(graph_error(429, 'TooManyRequests'), make_response(200, {}))
        make_client(session).fetch(f'{GRAPH}/me')

        sleep.assert_called_once_with(5.0)

    def test_onenote_throttling_code_counts_as_rate_limit(self, make_client, sleep):
        session = scripted_session(graph_error(400, '20166'), make_response(200, {}))
        make_client(session).fetch(f'{GRAPH}/me')

        sleep.assert_called_once_with(5.0)

    def test_rate_limits_do_not_consume_retries(self, make_client, sleep):
        # One retry in the budget: it is still available after three throttles
        session = scripted_session(
            graph_error(429, 'TooManyRequests'),
            graph_error(429, 'TooManyRequests'),
            graph_error(429, 'TooManyRequests'),
            graph_error(500, 'generalException'),
            make_response(200, {'ok': True}),
        )
        client = make_client(session, policy=RetryPolicy(max_retries=1, backoff_factor=1.0))

        assert client.fetch(f'{GRAPH}/me') == {'ok': True}
        assert sleep.call_args_list == [call(5.0), call(5.0), call(5.0), call(1.0)]
        requested = [c.args[0] for c in session.get.call_args_list]
        assert requested == [f'{GRAPH}/me'] * 5

    def test_optional_rate_limit_bound(self, make_client):
        session = scripted_session(
            graph_error(429, 'TooManyRequests'),
            graph_error(429, 'TooManyRequests'),
        )
        client = make_client(session, policy=RetryPolicy(max_rate_limit_retries=1))

        with pytest.raises(RateLimitedError):
            client.fetch(f'{GRAPH}/me')

    def test_stall_timeout_bounds_unlimited_rate_limiting(self, auth, sleep):
        clock = FakeClock()
        health = SessionHealth(stall_timeout=10, clock=clock)
        session = MagicMock()
        session.get.return_value = graph_error(429, 'TooManyRequests', headers={'Retry-After': '4'})
        sleep.side_effect = clock.advance
        client = GraphClient(auth, health=health, session=session, sleep=sleep)

        with pytest.raises(StallTimeoutError):
            client.fetch(f'{GRAPH}/me')
        assert session.get.call_count == 3


class TestErrorRecovery:
    """Unauthorized responses refresh, other errors back off, both within the budget."""

    def test_unauthorized_refreshes_token(self, make_client, auth, sleep):
        session = scripted_session(
            graph_error(401, 'InvalidAuthenticationToken'),
            make_response(200, {'ok': True}),
        )
        client = make_client(session)

        assert client.fetch(f'{GRAPH}/me') == {'ok': True}
        auth.refresh.assert_called_once_with()
        sleep.assert_not_called()

    def test_refresh_failure_propagates(self, make_client, auth):
        auth.refresh.side_effect = UnauthenticatedError()
        client = make_client(scripted_session(graph_error(401, 'InvalidAuthenticationToken')))

        with pytest.raises(UnauthenticatedError):
            client.fetch(f'{GRAPH}/me')

    def test_other_errors_back_off_exponentially_then_raise(self, make_client, sleep):
        session = MagicMock()
        session.get.return_value = graph_error(503, 'serviceNotAvailable', 'busy')
        client = make_client(session, policy=RetryPolicy(max_retries=2, backoff_factor=1.0))

        with pytest.raises(OtherApiError) as exc_info:
            client.fetch(f'{GRAPH}/me')

        assert exc_info.value.status_code == 503
        assert session.get.call_count == 3
        assert sleep.call_args_list == [call(1.0), call(2.0)]

    def test_network_errors_are_retried(self, make_client, sleep):
        session = scripted_session(requests.exceptions.ConnectionError('reset'), make_response(200, {}))

        assert make_client(session).fetch(f'{GRAPH}/me') == {}
        sleep.assert_called_once_with(1.0)

    def test_network_errors_raise_after_budget(self, make_client):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.Timeout('slow')
        client = make_client(session, policy=RetryPolicy(max_retries=1))

        with pytest.raises(TransientNetworkError):
            client.fetch(f'{GRAPH}/me')
        assert session.get.call_count == 2

    def test_initial_retry_count_reduces_budget(self, make_client):
        session = MagicMock()
        session.get.return_value = graph_error(500, 'generalException')
        client = make_client(session, policy=RetryPolicy(max_retries=3))

        with pytest.raises(OtherApiError):
            client.fetch(f'{GRAPH}/me', retry_count=3)
        assert session.get.call_count == 1


class TestAbortConditions:
    """Cancellation and the stall guard stop a fetch before it is sent."""

    def test_cancelled_before_request(self, make_client):
        session = MagicMock()
        client = make_client(session, is_cancelled=lambda: True)

        with pytest.raises(ImportCancelledError):
            client.fetch(f'{GRAPH}/me')
        session.get.assert_not_called()

    def test_stalled_session(self, make_client, clock):
        session = MagicMock()
        client = make_client(session)
        clock.advance(601)

        with pytest.raises(StallTimeoutError):
            client.fetch(f'{GRAPH}/me')
        session.get.assert_not_called()

    def test_success_resets_stall_clock(self, make_client, clock):
        session = MagicMock()
        session.get.return_value = make_response(200, {})
        client = make_client(session)

        clock.advance(500)
        client.fetch(f'{GRAPH}/me')
        clock.advance(500)
        client.fetch(f'{GRAPH}/me')

        assert session.get.call_count == 2


class TestSessionHealth:
    """Consecutive page failures trip the breaker; a success resets it."""

    def test_threshold(self):
        health = SessionHealth(failure_threshold=3)
        health.record_page_failure()
        health.record_page_failure()

        with pytest.raises(ConsecutiveFailureError) as exc_info:
            health.record_page_failure()
        assert 'failure threshold' in str(exc_info.value)

    def test_success_resets_count(self):
        health = SessionHealth(failure_threshold=2)
        health.record_page_failure()
        health.record_page_success()
        health.record_page_failure()

        assert health.consecutive_failures == 1

    def test_retry_policy_from_config(self):
        policy = RetryPolicy.from_config({'max_retries': 2, 'max_rate_limit_retries': 4})

        assert policy.max_retries == 2
        assert policy.max_rate_limit_retries == 4
        assert policy.backoff_delay(3) == 8.0

    def test_retry_policy_coerces_rate_limit_bound(self):
        assert RetryPolicy.from_config({'max_rate_limit_retries': '3'}).max_rate_limit_retries == 3
        assert RetryPolicy.from_config({'max_rate_limit_retries': None}).max_rate_limit_retries is None
