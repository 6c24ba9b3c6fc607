"""Tests for docpredict.predictors.watsonx using httpx.MockTransport."""

import json

import httpx
import pytest

from docpredict.core.errors import MissingConfigError, ModelNotFoundError, TransientPredictionError
from docpredict.core.models import DocumentRow
from docpredict.predictors.watsonx import (
    WatsonxPredictionClient,
    build_payload,
    calculate_confidence,
    parse_predictions,
)

IDENTITY_URL = "https://iam.example.com/identity/token"
ENDPOINT = "https://wml.example.com"


def _rows(*values) -> list[DocumentRow]:
    return [
        DocumentRow.from_record("d1", {"MCO_NO": f"M{n}", "NEC_DESCRIPTION": f"item {n}", "WHT_PER": v}, n, "WHT_PER")
        for n, v in enumerate(values, start=1)
    ]


class FakeWatsonML:
    """Serves the IAM token endpoint and the deployment predictions endpoint."""

    def __init__(self, *, status: int = 200, predictions=None):
        self.status = status
        self.predictions = predictions
        self.token_requests = 0
        self.prediction_requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == IDENTITY_URL:
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": f"token-{self.token_requests}", "expires_in": 3600})

        self.prediction_requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, json={"errors": [{"message": "nope"}]})
        body = json.loads(request.content)
        n = len(body["input_data"][0]["values"])
        values = self.predictions if self.predictions is not None else [["15%", [0.1, 0.9]]] * n
        return httpx.Response(200, json={"predictions": [{"fields": ["prediction", "probability"], "values": values}]})


@pytest.fixture
def fake():
    return FakeWatsonML()


@pytest.fixture
async def client(registry, fake):
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    client = WatsonxPredictionClient(
        registry, api_key="key", endpoint=ENDPOINT + "/", identity_url=IDENTITY_URL, client=http
    )
    yield client
    await client.close()
    await http.aclose()


class TestHelpers:
    def test_confidence_is_max_probability(self):
        assert calculate_confidence([0.2, 0.7, 0.1]) == 0.7
        assert calculate_confidence(None) == 0.0
        assert calculate_confidence([]) == 0.0

    def test_parse_predictions(self):
        body = {"predictions": [{"values": [["A", [0.3, 0.7]], ["B"]]}]}
        assert parse_predictions(body) == [("A", 0.7), ("B", 0.0)]

    def test_build_payload(self, model):
        payload = build_payload([{"MCO_NO": "M1", "NEC_DESCRIPTION": "Dividend"}], model.inputs)
        assert payload == {
            "input_data": [{
                "fields": ["MCO_NO", "NEC_DESCRIPTION_Cleaned"],
                "values": [["M1", "Dividend"]],
            }]
        }


class TestWatsonxPredictionClient:
    def test_requires_credentials(self, registry):
        with pytest.raises(MissingConfigError):
            WatsonxPredictionClient(registry, api_key="", endpoint=ENDPOINT)
        with pytest.raises(MissingConfigError):
            WatsonxPredictionClient(registry, api_key="key", endpoint="")

    @pytest.mark.asyncio
    async def test_predict(self, client, fake):
        result = await client.predict(_rows("15%", "30%"), "wht_v4")

        assert result.model == "wht_v4"
        assert result.prediction_field == "WHT_PER"
        assert [v.prediction_value for v in result.results] == ["15%", "15%"]
        assert [v.confidence for v in result.results] == [0.9, 0.9]
        assert [v.provided_value for v in result.results] == ["15%", "30%"]

        request = fake.prediction_requests[0]
        assert request.url.path == "/ml/v4/deployments/tax_withholding_v4/predictions"
        assert request.url.params["version"] == "2021-05-01"
        assert request.headers["Authorization"] == "Bearer token-1"

    @pytest.mark.asyncio
    async def test_token_is_cached(self, client, fake):
        await client.predict(_rows("A"), "wht_v4")
        await client.predict(_rows("B"), "tax_withholding_v4")
        assert fake.token_requests == 1

    @pytest.mark.asyncio
    async def test_empty_rows_make_no_request(self, client, fake):
        result = await client.predict([], "wht_v4")
        assert result.results == []
        assert fake.prediction_requests == []

    @pytest.mark.asyncio
    async def test_unknown_model(self, client):
        with pytest.raises(ModelNotFoundError):
            await client.predict(_rows("A"), "nope")

    @pytest.mark.asyncio
    async def test_http_error_is_transient(self, client, fake):
        fake.status = 503
        with pytest.raises(TransientPredictionError) as exc_info:
            await client.predict(_rows("A"), "wht_v4")
        assert exc_info.value.context.http_status == 503
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_unauthorized_drops_token(self, client, fake):
        fake.status = 401
        with pytest.raises(TransientPredictionError):
            await client.predict(_rows("A"), "wht_v4")

        fake.status = 200
        await client.predict(_rows("A"), "wht_v4")
        assert fake.token_requests == 2

    @pytest.mark.asyncio
    async def test_count_mismatch_is_transient(self, client, fake):
        fake.predictions = [["A", [1.0]]]
        with pytest.raises(TransientPredictionError, match="1 predictions for 2 rows"):
            await client.predict(_rows("A", "B"), "wht_v4")

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, registry):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        client = WatsonxPredictionClient(registry, api_key="key", endpoint=ENDPOINT, client=http)
        try:
            with pytest.raises(TransientPredictionError):
                await client.predict(_rows("A"), "wht_v4")
        finally:
            await http.aclose()
