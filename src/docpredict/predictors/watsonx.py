"""
Watson Machine Learning prediction client.

Manifesto:
    The deployed classifier is the slowest and least reliable collaborator
    in the pipeline. This adapter turns one page of document rows into one
    scoring request and either returns a value for every row or raises a
    single :class:`TransientPredictionError`, leaving retry policy to the
    orchestrator.

Architecture:
    ::

        predict(rows, model_id)
            │
            ├── registry.find_model(model_id)         ModelNotFoundError propagates
            ├── _access_token()                       IAM apikey exchange, cached
            ├── POST {endpoint}/ml/v4/deployments/{deployment_id}/predictions?version=...
            │       {"input_data": [{"fields": [...], "values": [[...], ...]}]}
            └── predictions[*].values -> [label, probabilities]
                    confidence = max(probabilities), 0 when absent

Tags:
    watsonx, httpx, prediction-client, iam, batch
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from docpredict.core.errors import MissingConfigError, TransientPredictionError
from docpredict.core.logging import get_logger
from docpredict.core.models import BatchPredictionResult, BatchPredictionValue, DocumentRow, utcnow
from docpredict.core.protocols import ModelRegistry
from docpredict.registry import InputField, ModelDescriptor, build_input_values

log = get_logger(__name__)

IAM_GRANT_TYPE = "urn:ibm:params:oauth:grant-type:apikey"

# Refresh this many seconds before the token says it expires
TOKEN_EXPIRY_MARGIN = 60


def build_payload(records: Sequence[Mapping[str, Any]], fields: Sequence[InputField]) -> dict[str, Any]:
    return {
        "input_data": [{
            "fields": [f.name for f in fields],
            "values": [build_input_values(record, fields) for record in records],
        }]
    }


def calculate_confidence(probabilities: Any) -> float:
    if not probabilities:
        return 0.0
    return float(max(probabilities))


def parse_predictions(body: Mapping[str, Any]) -> list[tuple[Any, float]]:
    """Flatten ``predictions[*].values`` into ``(label, confidence)`` pairs."""
    pairs: list[tuple[Any, float]] = []
    for prediction in body.get("predictions") or []:
        for value in prediction.get("values") or []:
            label = value[0] if value else None
            probabilities = value[1] if len(value) > 1 else None
            pairs.append((label, calculate_confidence(probabilities)))
    return pairs


class WatsonxPredictionClient:
    """Scores document rows against Watson ML deployments.

    Example::

        client = WatsonxPredictionClient(
            registry,
            api_key=settings.wml_api_key,
            endpoint=settings.wml_endpoint,
        )
        result = await client.predict(rows, "wht_v4")
    """

    def __init__(
        self,
        registry: ModelRegistry,
        *,
        api_key: str,
        endpoint: str,
        identity_url: str = "https://iam.cloud.ibm.com/identity/token",
        version: str = "2021-05-01",
        timeout: float = 300.0,
        client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            raise MissingConfigError("wml_api_key")
        if not endpoint:
            raise MissingConfigError("wml_endpoint")

        self._registry = registry
        self._api_key = api_key
        self._endpoint = endpoint.rstrip("/")
        self._identity_url = identity_url
        self._version = version
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    def prediction_url(self, deployment_id: str) -> str:
        return f"{self._endpoint}/ml/v4/deployments/{deployment_id}/predictions?version={self._version}"

    async def _access_token(self) -> str:
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            response = await self._client.post(
                self._identity_url,
                data={"grant_type": IAM_GRANT_TYPE, "apikey": self._api_key},
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            body = response.json()

            self._token = body["access_token"]
            expires_in = float(body.get("expires_in", 3600))
            self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
            log.debug("wml_token_refreshed", expires_in=expires_in)
            return self._token

    async def predict(self, rows: Sequence[DocumentRow], model_id: str) -> BatchPredictionResult:
        model = self._registry.find_model(model_id)
        if not rows:
            return BatchPredictionResult(model=model.name, date=utcnow(), prediction_field=model.label)

        records = [row.record for row in rows]
        url = self.prediction_url(model.deployment_id)
        payload = build_payload(records, model.inputs)

        log.debug(
            "wml_predict_request",
            model=model.name,
            deployment_id=model.deployment_id,
            rows=len(rows),
            fields=payload["input_data"][0]["fields"],
        )

        try:
            token = await self._access_token()
            response = await self._client.post(
                url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 401:
                self._token = None
            raise TransientPredictionError(
                f"Watson ML returned HTTP {status}", cause=e
            ).with_context(model=model.name, url=str(e.request.url), http_status=status)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise TransientPredictionError(
                f"Watson ML request failed: {e}", cause=e
            ).with_context(model=model.name, url=url)

        pairs = parse_predictions(body)
        if len(pairs) != len(rows):
            raise TransientPredictionError(
                f"Watson ML returned {len(pairs)} predictions for {len(rows)} rows"
            ).with_context(model=model.name, url=url)

        return BatchPredictionResult(
            model=model.name,
            date=utcnow(),
            prediction_field=model.label,
            results=[
                BatchPredictionValue(
                    row_id=row.id,
                    provided_value=_provided_value(row, record, model),
                    prediction_value=label,
                    confidence=confidence,
                )
                for row, record, (label, confidence) in zip(rows, records, pairs)
            ],
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _provided_value(row: DocumentRow, record: Mapping[str, Any], model: ModelDescriptor) -> Any:
    if row.provided_value is not None:
        return row.provided_value
    return record.get(model.label)


__all__ = [
    "WatsonxPredictionClient",
    "build_payload",
    "calculate_confidence",
    "parse_predictions",
]
