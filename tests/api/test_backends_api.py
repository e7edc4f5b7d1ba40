"""API tests for the backend listing, capability and model refresh endpoints."""

import unittest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from api.dependencies import ServiceContainer
from backends.registry import BackendRegistry
from conftest import FakeBackend
from main import create_app
from services.config_store import ConfigStore
from shared.errors import AuthenticationError, ConfigurationError


class TestBackendEndpoints(unittest.TestCase):
    def setUp(self):
        self.config_store = ConfigStore({"fake_service_enabled": "1"})
        self.registry = BackendRegistry(self.config_store, adapters={"fake": FakeBackend})
        services = ServiceContainer(
            config_store=self.config_store,
            chat_store=MagicMock(),
            attachment_store=MagicMock(),
            blob_store=MagicMock(),
            registry=self.registry,
            orchestrator=MagicMock(),
            attachments=MagicMock(),
        )
        self.client = TestClient(create_app(services))

    def test_list_backends(self):
        body = self.client.get("/api/backends").json()
        self.assertEqual(body, {
            "available": ["fake"], "enabled": ["fake"], "options": {"fake": "Fake"}, "models": {"fake": {}},
        })

    def test_capabilities(self):
        body = self.client.get("/api/backends/fake/capabilities").json()
        self.assertTrue(body["rag"])
        self.assertEqual(body["rag_file_types"], ["txt", "md", "csv", "pdf"])
        self.assertEqual(self.client.get("/api/backends/nope/capabilities").status_code, 404)

    def test_refresh_models_caches_list(self):
        response = self.client.post("/api/backends/fake/models/refresh")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["models"], {"fake-model": "Fake Model"})
        self.assertEqual(self.config_store.get("fake_cached_models"), {"fake-model": "Fake Model"})
        listed = self.client.get("/api/backends").json()
        self.assertEqual(listed["models"], {"fake": {"fake-model": "Fake Model"}})

    def test_list_backends_without_token_has_no_models(self):
        self.registry.create = MagicMock(side_effect=ConfigurationError("token missing"))

        body = self.client.get("/api/backends").json()

        self.assertEqual(body["enabled"], ["fake"])
        self.assertEqual(body["models"], {})

    def test_metrics_endpoint_counts_requests(self):
        self.client.get("/api/backends")

        response = self.client.get("/metrics/")

        self.assertEqual(response.status_code, 200)
        self.assertIn("http_requests_total", response.text)

    def test_refresh_models_unknown_backend(self):
        self.assertEqual(self.client.post("/api/backends/nope/models/refresh").status_code, 404)

    def test_refresh_models_backend_failure(self):
        self.registry.create = MagicMock(return_value=MagicMock(refresh_models=MagicMock(
            side_effect=AuthenticationError("invalid token")
        )))

        response = self.client.post("/api/backends/fake/models/refresh")

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json(), {"error": "invalid token"})


if __name__ == "__main__":
    unittest.main()
