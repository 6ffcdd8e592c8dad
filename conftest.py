import json

import httpx
import pytest

from motorconnect.utils.api_client import MarketplaceAPI
from motorconnect.utils.token_store import TokenStore


class FakeMarketplace:
    """
    Routes requests to canned responses keyed by (method, path) and records
    every request it receives.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, *responses):
        self.routes[(method, path)] = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": f"No route for {request.method} {request.url.path}"})
        response = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        status_code, body = response
        return httpx.Response(status_code, json=body)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def body(request: httpx.Request):
        return json.loads(request.content) if request.content else None


@pytest.fixture
def marketplace():
    return FakeMarketplace()


@pytest.fixture
def token_store(tmp_path):
    return TokenStore(str(tmp_path / "auth_token.json"))


@pytest.fixture
def make_api(marketplace, token_store):
    def factory():
        return MarketplaceAPI(
            base_url="http://marketplace.test",
            token_store=token_store,
            transport=httpx.MockTransport(marketplace),
        )
    return factory
