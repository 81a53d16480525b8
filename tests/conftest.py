"""Shared fixtures: canned HTTP responses, a fake clock and a scripted Graph session."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from fetchers import GraphClient, RetryPolicy, SessionHealth

GRAPH = 'https://graph.microsoft.com/v1.0'


def make_response(status_code=200, json_body=None, content=None, headers=None, url=GRAPH):
    """Build a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status_code
    response.url = url
    if json_body is not None:
        response._content = json.dumps(json_body).encode('utf-8')
        response.headers['Content-Type'] = 'application/json'
    else:
        response._content = content if content is not None else b''
    response.headers.update(headers or {})
    return response


def graph_error(status_code, code, message='error', headers=None):
    return make_response(status_code, {'error': {'code': code, 'message': message}}, headers=headers)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RoutedSession:
    """
    Stand-in for requests.Session answering GETs from a URL routing table.

    Routes map a URL prefix to a response or to a list of responses served
    in order (the last one repeats). Every call is recorded.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.verify = True

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({'url': url, 'params': params, 'headers': headers})
        # Longest prefix wins so '/pages/p1/content' beats '/pages/p1'
        for prefix in sorted(self.routes, key=len, reverse=True):
            if url.startswith(prefix):
                answer = self.routes[prefix]
                if isinstance(answer, list):
                    return answer.pop(0) if len(answer) > 1 else answer[0]
                return answer
        return graph_error(404, 'itemNotFound', f'No route for {url}')

    def urls(self):
        return [call['url'] for call in self.calls]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def auth():
    fake = MagicMock()
    fake.current_token.return_value = 'access-token'
    fake.refresh.return_value = 'refreshed-token'
    return fake


@pytest.fixture
def make_client(auth, sleep, clock):
    """Factory for a GraphClient over a scripted session."""

    def factory(session, policy=None, health=None, is_cancelled=None):
        return GraphClient(
            auth,
            health=health or SessionHealth(stall_timeout=600, failure_threshold=5, clock=clock),
            policy=policy or RetryPolicy(max_retries=3, backoff_factor=1.0, rate_limit_default_wait=5.0),
            session=session,
            sleep=sleep,
            is_cancelled=is_cancelled,
        )

    return factory
