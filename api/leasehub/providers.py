"""HTTP clients for the eKYC collaborators (ID card OCR and face matching)."""

import logging
import os
from contextlib import ExitStack
from typing import List, Optional, Tuple
import requests

from .config import FACE_MATCH_API_URL, IDENTITY_API_KEY, OCR_API_URL, PROVIDER_TIMEOUT_SECONDS
from .errors import ProviderRejected, ProviderUnavailable

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (requests.ConnectionError, requests.Timeout)


def provider_message(payload) -> Optional[str]:
    """Human readable error text from a provider answer, if it carries one."""
    if not isinstance(payload, dict):
        return None
    for key in ("errorMessage", "message"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class ProviderClient:
    name = "provider"

    def __init__(
        self,
        url: str,
        api_key: str = IDENTITY_API_KEY,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        retries: int = 1,
        http: Optional[requests.Session] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.retries = retries
        self.http = http or requests.Session()

    def _send(self, files: List[Tuple[str, str]]) -> requests.Response:
        with ExitStack() as stack:
            multipart = []
            for field, path in files:
                handle = stack.enter_context(open(path, "rb"))
                multipart.append((field, (os.path.basename(path), handle)))
            return self.http.post(
                self.url,
                files=multipart,
                headers={"api-key": self.api_key},
                timeout=self.timeout,
            )

    def post_images(self, files: List[Tuple[str, str]]) -> dict:
        """POST local image files as multipart; retries once on transport errors and 5xx.

        A 4xx answer is final and raised as ``ProviderRejected`` with the
        provider's own message.
        """
        for attempt in range(self.retries + 1):
            try:
                response = self._send(files)
            except TRANSIENT_ERRORS as exc:
                logger.warning("%s call failed (attempt %s): %s", self.name, attempt + 1, exc)
                continue
            if response.status_code >= 500:
                logger.warning("%s returned HTTP %s (attempt %s)", self.name, response.status_code, attempt + 1)
                continue
            try:
                payload = response.json()
            except ValueError:
                payload = None
            if response.status_code >= 400:
                logger.info("%s rejected the request with HTTP %s", self.name, response.status_code)
                raise ProviderRejected(
                    provider_message(payload) or f"{self.name} rejected the request (HTTP {response.status_code})",
                    provider=self.name,
                    httpStatus=response.status_code,
                )
            if not isinstance(payload, dict):
                raise ProviderUnavailable(f"{self.name} returned an unreadable response", provider=self.name)
            return payload
        raise ProviderUnavailable(f"{self.name} is unreachable, please try again later", provider=self.name)


class OcrClient(ProviderClient):
    name = "OCR provider"

    def __init__(self, url: str = OCR_API_URL, **kwargs):
        super().__init__(url, **kwargs)

    def recognize(self, front_path: str, back_path: str) -> dict:
        return self.post_images([("image", front_path), ("image_back", back_path)])


class FaceMatchClient(ProviderClient):
    name = "face-match provider"

    def __init__(self, url: str = FACE_MATCH_API_URL, **kwargs):
        super().__init__(url, **kwargs)

    def compare(self, id_path: str, selfie_path: str) -> dict:
        return self.post_images([("file[]", id_path), ("file[]", selfie_path)])
