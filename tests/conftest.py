import json

import httpx
import pytest

from medipay.gateway import GatewayClient


class FakeGateway:
    """Scripted stand-in for the gateway's HTTP API, mounted as an httpx transport.

    ``respond`` queues answers per (method, path); the last one repeats. An
    answer is a JSON-able dict, an ``httpx.Response`` or an exception to raise.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def respond(self, method, path, *answers):
        self.routes[(method, "/v1" + path)] = list(answers)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == "/v1" + path]

    def last_json(self, method, path):
        return json.loads(self.calls(method, path)[-1].content)

    def handler(self, request):
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(400, json={"error": {
                "code": "BAD_REQUEST_ERROR",
                "description": "The id provided does not exist",
            }})
        answer = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json=answer)

    @staticmethod
    def error(status_code, description, **fields):
        return httpx.Response(status_code, json={"error": {
            "code": "BAD_REQUEST_ERROR" if status_code < 500 else "SERVER_ERROR",
            "description": description,
            **fields,
        }})

    def client(self, key_id="rzp_test_ABCDEFGH1234", key_secret="test_key_secret", timeout=5.0):
        return GatewayClient(
            key_id, key_secret, timeout=timeout, transport=httpx.MockTransport(self.handler)
        )


@pytest.fixture
def fake_gateway():
    return FakeGateway()
