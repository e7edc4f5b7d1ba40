"""
Unit tests for `backends/openai_backend.py`.

Strategy:
- Inject a MagicMock OpenAI client into the adapter, so no network traffic happens.
- Verify request parameters per model family and the mapping of SDK exceptions to the
  service's error taxonomy.
"""

import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai

from backends.openai_backend import OpenAIBackend
from services.config_store import ConfigStore
from shared.errors import (
    AuthenticationError,
    BackendConnectionError,
    BackendError,
    ConfigurationError,
    ParseError,
)
from shared.models import ContextResource, OutboundMessage, ResourceKind

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def completion(content):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=None)


class TestOpenAIBackend(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.client.chat.completions.create.return_value = completion("Hi")
        self.store = ConfigStore({"openai_temperature": 0.3})
        self.backend = OpenAIBackend(self.store, model="gpt-4o", api_key="k", client=self.client)
        self.history = [OutboundMessage(role="user", content="Hello")]

    def test_send_completion_returns_content_with_temperature(self):
        self.assertEqual(self.backend.send_completion(self.history), "Hi")
        kwargs = self.client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-4o")
        self.assertEqual(kwargs["temperature"], 0.3)
        self.assertFalse(kwargs["stream"])

    def test_reasoning_models_omit_temperature(self):
        backend = OpenAIBackend(self.store, model="o1-mini", api_key="k", client=self.client)
        backend.send_completion(self.history)
        self.assertNotIn("temperature", self.client.chat.completions.create.call_args.kwargs)

    def test_streaming_never_enabled(self):
        backend = OpenAIBackend(self.store, api_key="k", streaming=True, client=self.client)
        backend.set_streaming(True)
        self.assertFalse(backend.streaming)

    def test_context_resources_are_rendered_as_leading_turn(self):
        resources = [
            ContextResource(id="page-context", kind=ResourceKind.PAGE_CONTEXT, title="Page Context",
                            mime_type="text/plain", content="Lesson text"),
            ContextResource(id="bg-img-1", kind=ResourceKind.IMAGE_FILE, title="chart.png",
                            mime_type="image/png", url="data:image/png;base64,AAAA"),
        ]
        self.backend.set_prompt("System prompt")
        self.backend.send_completion(self.history, resources)

        messages = self.client.chat.completions.create.call_args.kwargs["messages"]
        self.assertEqual([m["role"] for m in messages], ["system", "user", "user"])
        context = messages[1]["content"]
        self.assertEqual(context[0], {"type": "text", "text": "**Page Context**\nLesson text"})
        self.assertEqual(context[1], {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}})

    def test_authentication_error_is_mapped(self):
        response = httpx.Response(401, request=REQUEST)
        self.client.chat.completions.create.side_effect = openai.AuthenticationError(
            "Incorrect API key", response=response, body=None
        )
        with self.assertRaises(AuthenticationError):
            self.backend.send_completion(self.history)

    def test_status_error_keeps_status_code(self):
        response = httpx.Response(429, request=REQUEST)
        self.client.chat.completions.create.side_effect = openai.RateLimitError(
            "Rate limited", response=response, body=None
        )
        with self.assertRaises(BackendError) as ctx:
            self.backend.send_completion(self.history)
        self.assertEqual(ctx.exception.status_code, 429)

    def test_connection_error_is_mapped(self):
        self.client.chat.completions.create.side_effect = openai.APIConnectionError(request=REQUEST)
        with self.assertRaises(BackendConnectionError):
            self.backend.send_completion(self.history)

    def test_empty_choices_raise_parse_error(self):
        self.client.chat.completions.create.return_value = SimpleNamespace(choices=[], usage=None)
        with self.assertRaises(ParseError):
            self.backend.send_completion(self.history)

    def test_list_models(self):
        self.client.models.list.return_value = [SimpleNamespace(id="gpt-4o"), SimpleNamespace(id="o1")]
        self.assertEqual(self.backend.list_models(), {"gpt-4o": "gpt-4o", "o1": "o1"})

    def test_no_rag_capability(self):
        self.assertFalse(self.backend.supports_rag())
        self.assertTrue(self.backend.supports_multimodal())

    def test_from_config_requires_token(self):
        with self.assertRaises(ConfigurationError):
            OpenAIBackend.from_config(ConfigStore())


if __name__ == "__main__":
    unittest.main()
