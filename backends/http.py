"""
Shared HTTP transport for AI backends (requests-based).

Every backend that speaks the OpenAI-style chat protocol over plain HTTPS composes one
`BackendHttpClient` instead of re-implementing transport details. The client owns the bearer
token, the `requests.Session`, and the error taxonomy: transport failures become
BackendConnectionError, a 401 becomes AuthenticationError, other non-200 responses become
BackendError carrying the status code and the backend's own error message, and a 200 response
that lacks the promised fields becomes ParseError. Streaming responses are decoded
incrementally with `backends.streaming` so the caller's sink sees each delta as soon as its
frame is complete.

Timeouts follow the operation: chat completions rely on transport defaults (answers can take
minutes), uploads use (30s connect, 120s total), model listing 30s and deletion 60s.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional, Tuple, Union

import requests

from shared.errors import (
    AuthenticationError,
    BackendConnectionError,
    BackendError,
    ParseError,
    UploadError,
)
from .streaming import StreamAccumulator, StreamSink, forward_to_sink

logger = logging.getLogger(__name__)

Timeout = Optional[Union[float, Tuple[float, float]]]

UPLOAD_TIMEOUT = (30, 120)
MODELS_TIMEOUT = 30
DELETE_TIMEOUT = 60


def extract_error_message(response: requests.Response) -> str:
    """
    Pull a human-readable error message out of a non-200 response.

    Backends report errors as `{"error": {"message": "..."}}`; anything else falls back to
    "HTTP Error: <status>".
    """
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return f"HTTP Error: {response.status_code}"


def raise_for_backend_status(response: requests.Response) -> None:
    """
    Classify a non-200 response into the error taxonomy.

    Raises:
        AuthenticationError: For HTTP 401.
        BackendError: For every other non-200 status, with the status code attached.
    """
    if response.status_code == 200:
        return
    message = extract_error_message(response)
    if response.status_code == 401:
        raise AuthenticationError(message)
    raise BackendError(message, status_code=response.status_code)


class BackendHttpClient:
    """
    Thin requests wrapper bound to one backend's base URL and token.

    Args:
        base_url (str): Backend root URL, e.g. "https://api.example.org"
        api_key (str): Bearer token sent with every request
        session (requests.Session, optional): Injected session, mainly for tests
    """

    def __init__(self, base_url: str, api_key: str, session: Optional[requests.Session] = None):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.session = session or requests.Session()

    def endpoint_url(self, endpoint: str) -> str:
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return self.base_url + endpoint

    def _headers(self, json_body: bool = True) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def execute_request(
        self,
        url: str,
        payload: Dict[str, Any],
        sink: Optional[StreamSink] = None,
        timeout: Timeout = None,
    ) -> str:
        """
        POST a chat payload and return the completion text.

        When `payload["stream"]` is true the response is read incrementally: every complete
        `data:` frame is decoded, its delta appended to the answer and forwarded to `sink`.
        Otherwise the JSON body must contain `choices[0].message.content`.

        Args:
            url (str): Full endpoint URL
            payload (Dict[str, Any]): JSON body including `model`, `messages` and `stream`
            sink (StreamSink, optional): Receives `chunk` events while streaming
            timeout: requests timeout; None keeps the transport default

        Returns:
            str: The assistant's answer.

        Raises:
            BackendConnectionError: On transport failures.
            AuthenticationError: On HTTP 401.
            BackendError: On any other non-200 status.
            ParseError: When a non-streaming body is not JSON or lacks the content field.
        """
        streaming = bool(payload.get("stream"))
        try:
            response = self.session.post(
                url,
                data=json.dumps(payload),
                headers=self._headers(),
                stream=streaming,
                timeout=timeout,
            )
        except requests.RequestException as exc:
            raise BackendConnectionError(f"Connection to {url} failed: {exc}") from exc

        try:
            raise_for_backend_status(response)
            if streaming:
                return self._read_stream(response, sink)
            return self._read_completion(response)
        finally:
            response.close()

    def _read_completion(self, response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError as exc:
            raise ParseError(f"Invalid JSON in completion response: {exc}") from exc

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ParseError("Unexpected API response format: missing choices[0].message.content") from exc
        if content is None:
            raise ParseError("Unexpected API response format: empty message content")

        usage = body.get("usage") if isinstance(body, dict) else None
        if usage:
            logger.info(
                "Completion usage: prompt=%s completion=%s total=%s",
                usage.get("prompt_tokens"),
                usage.get("completion_tokens"),
                usage.get("total_tokens"),
            )
        return content

    def _read_stream(self, response: requests.Response, sink: Optional[StreamSink]) -> str:
        # SSE responses rarely declare a charset; frames are always UTF-8 JSON
        response.encoding = response.encoding or "utf-8"
        accumulator = StreamAccumulator()
        try:
            for chunk in response.iter_content(chunk_size=None, decode_unicode=True):
                forward_to_sink(accumulator.feed(chunk), sink)
                if accumulator.done:
                    break
        except requests.RequestException as exc:
            raise BackendConnectionError(f"Stream interrupted: {exc}") from exc
        forward_to_sink(accumulator.finish(), sink)
        logger.debug("Stream finished with %d characters", len(accumulator.text))
        return accumulator.text

    def post_json(self, url: str, payload: Dict[str, Any], timeout: Timeout = DELETE_TIMEOUT) -> requests.Response:
        """POST a JSON body and hand back the raw response; transport errors propagate as requests exceptions."""
        return self.session.post(url, data=json.dumps(payload), headers=self._headers(), timeout=timeout)

    def upload_file(
        self,
        url: str,
        file_path: str,
        fields: Dict[str, Any],
        timeout: Timeout = UPLOAD_TIMEOUT,
    ) -> Dict[str, Any]:
        """
        Submit a multipart upload with the file under the `file` field.

        Returns:
            Dict[str, Any]: Parsed JSON response body.

        Raises:
            UploadError: If the local file is missing or the remote side answers non-200.
            BackendConnectionError: On transport failures.
            ParseError: If the response is not a JSON object.
        """
        if not os.path.isfile(file_path):
            raise UploadError(f"File not found: {file_path}")

        form = {key: str(value) for key, value in fields.items()}
        try:
            with open(file_path, "rb") as handle:
                response = self.session.post(
                    url,
                    files={"file": (os.path.basename(file_path), handle)},
                    data=form,
                    headers=self._headers(json_body=False),
                    timeout=timeout,
                )
        except requests.RequestException as exc:
            raise BackendConnectionError(f"Upload to {url} failed: {exc}") from exc

        if response.status_code != 200:
            raise UploadError(
                f"Upload failed with HTTP {response.status_code}: {extract_error_message(response)}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise ParseError(f"Invalid JSON in upload response: {exc}") from exc
        if not isinstance(body, dict):
            raise ParseError("Upload response is not a JSON object")
        return body

    def get_json(self, url: str, timeout: Timeout = MODELS_TIMEOUT) -> Any:
        """
        GET a JSON document.

        Raises:
            BackendConnectionError: On transport failures.
            AuthenticationError / BackendError: On non-200 statuses.
            ParseError: On invalid JSON.
        """
        try:
            response = self.session.get(url, headers=self._headers(json_body=False), timeout=timeout)
        except requests.RequestException as exc:
            raise BackendConnectionError(f"Request to {url} failed: {exc}") from exc
        raise_for_backend_status(response)
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(f"Invalid JSON from {url}: {exc}") from exc
