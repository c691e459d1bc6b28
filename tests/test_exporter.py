"""Tests for the Metric API and Insights clients."""

import gzip
import json

import httpx

from flex_agent.context import Metrics
from flex_agent.exporter import USER_AGENT, InsightsClient, MetricAPIClient


def recording_transport(status: int = 202):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status)

    return httpx.MockTransport(handler), requests


def body(request: httpx.Request):
    return json.loads(gzip.decompress(request.content))


class TestMetricAPIClient:
    """Test batch export."""

    async def test_send_batches(self):
        transport, requests = recording_transport()
        client = MetricAPIClient("https://metrics.test/v1", api_key="secret", transport=transport)
        batch = Metrics(timestamp_ms=1000, interval_ms=60000, metrics=[{"name": "m", "type": "gauge", "value": 1}])

        assert await client.send_batches([batch])
        await client.close()

        request = requests[0]
        assert request.headers["Api-Key"] == "secret"
        assert request.headers["Content-Encoding"] == "gzip"
        assert request.headers["User-Agent"] == USER_AGENT
        assert body(request) == [batch.to_dict()]

    async def test_empty_is_noop(self):
        transport, requests = recording_transport()
        client = MetricAPIClient("https://metrics.test/v1", transport=transport)
        assert await client.send_batches([])
        assert requests == []

    async def test_rejected(self, caplog):
        transport, _ = recording_transport(status=403)
        client = MetricAPIClient("https://metrics.test/v1", api_key="bad", transport=transport)

        assert not await client.send_batches([Metrics(timestamp_ms=1)])
        assert "Authentication failed" in caplog.text

    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = MetricAPIClient("https://metrics.test/v1", transport=httpx.MockTransport(handler))
        assert not await client.send_batches([Metrics(timestamp_ms=1)])


class TestInsightsClient:
    """Test event export."""

    async def test_send_events(self):
        transport, requests = recording_transport(status=200)
        client = InsightsClient("https://insights.test/events", api_key="insert", transport=transport)

        assert await client.send_events([{"a": 1, "event_type": "redisSample"}, {"b": 2}])

        assert requests[0].headers["X-Insert-Key"] == "insert"
        assert body(requests[0]) == [
            {"a": 1, "eventType": "redisSample"},
            {"b": 2, "eventType": "FlexSample"},
        ]
