"""
Tests for the correlation middleware: request ids, Shopify delivery fields in
the log context, quiet health checks.
"""
import logging

import pytest
import structlog
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.log_middleware import CorrelationMiddleware
from app.core.structured_logging import request_id_var


@pytest.fixture
def client():
    app = FastAPI()
    app.add_middleware(CorrelationMiddleware)

    @app.post("/webhooks/{topic:path}")
    async def webhook(topic: str):
        return {"context": structlog.contextvars.get_contextvars(), "requestId": request_id_var.get()}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return TestClient(app)


class TestCorrelation:

    def test_request_id_is_echoed(self, client):
        response = client.post("/webhooks/orders/fulfilled", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"
        assert response.json()["requestId"] == "abc123"

    def test_request_id_generated(self, client):
        response = client.post("/webhooks/orders/fulfilled")
        assert len(response.headers["X-Request-ID"]) == 32

    def test_webhook_headers_bound_while_handling(self, client):
        response = client.post("/webhooks/orders/fulfilled", headers={
            "X-Shopify-Topic": "orders/fulfilled",
            "X-Shopify-Shop-Domain": "test-shop.myshopify.com",
            "X-Shopify-Webhook-Id": "b54557e4-bdd9-4b37-8a5f-bf7d70bcd043",
        })
        assert response.json()["context"] == {
            "webhook_topic": "orders/fulfilled",
            "shop": "test-shop.myshopify.com",
            "webhook_id": "b54557e4-bdd9-4b37-8a5f-bf7d70bcd043",
        }

    def test_plain_request_binds_nothing(self, client):
        assert client.post("/webhooks/orders/fulfilled").json()["context"] == {}

    def test_health_logged_at_debug(self, client, caplog):
        with caplog.at_level(logging.DEBUG, logger="app.core.log_middleware"):
            client.get("/health")
            client.post("/webhooks/orders/fulfilled")

        levels = {r.__dict__["http.path"]: r.levelno for r in caplog.records if r.getMessage() == "request_completed"}
        assert levels == {"/health": logging.DEBUG, "/webhooks/orders/fulfilled": logging.INFO}
