#!/usr/bin/env python3
"""
NFT Market Client — Token metadata resolution

Turns a token URI into display metadata (name, description, image).
Supported encodings:
- inline JSON (data:application/json;base64,...)
- IPFS references (ipfs://<cid>), fetched through an HTTP gateway
- plain http(s) URLs

Anything else, and any failure along the way, resolves to default metadata.
resolve() never raises.
"""

import json
import base64
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Callable, Dict, Optional

import requests

from common import (
    DEFAULT_DESCRIPTION,
    DEFAULT_IPFS_GATEWAY,
    INLINE_JSON_PREFIX,
    IPFS_SCHEME,
    PLACEHOLDER_IMAGE,
    UNKNOWN_TOKEN_LABEL,
)
from errors import MetadataFetchFailure
from utils import create_http_session, load_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Metadata:
    name: str
    description: str
    image: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class UriScheme(Enum):
    INLINE_JSON = "inline-json"
    CONTENT_ADDRESSED = "content-addressed"
    HTTP = "http"
    UNKNOWN = "unknown"


def classify_uri(token_uri: Any) -> UriScheme:
    if not isinstance(token_uri, str) or not token_uri:
        return UriScheme.UNKNOWN
    if token_uri.startswith(INLINE_JSON_PREFIX):
        return UriScheme.INLINE_JSON
    if token_uri.startswith(IPFS_SCHEME):
        return UriScheme.CONTENT_ADDRESSED
    if token_uri.startswith(("http://", "https://")):
        return UriScheme.HTTP
    return UriScheme.UNKNOWN


def token_label(token_uri: Any) -> str:
    """Trailing path segment of the URI without its extension."""
    if not isinstance(token_uri, str):
        return UNKNOWN_TOKEN_LABEL
    tail = token_uri.rstrip("/").split("/")[-1].split(".")[0]
    return tail or UNKNOWN_TOKEN_LABEL


def default_metadata(token_uri: Any = None) -> Metadata:
    return Metadata(
        name=f"NFT #{token_label(token_uri)}",
        description=DEFAULT_DESCRIPTION,
        image=PLACEHOLDER_IMAGE,
    )


def gateway_url(uri: str, gateway: str = DEFAULT_IPFS_GATEWAY) -> str:
    """Rewrite ipfs://<cid>[/path] to an HTTP gateway URL; other strings pass through."""
    if isinstance(uri, str) and uri.startswith(IPFS_SCHEME):
        return gateway.rstrip("/") + "/" + uri[len(IPFS_SCHEME):]
    return uri


# =============================================================================
# Resolver
# =============================================================================


class MetadataResolver:
    """
    Resolves token URIs to Metadata.

    Concurrent calls for the same URI share one fetch: the first caller does
    the work and every waiter receives its result. Completed results are kept
    until clear_cache().
    """

    def __init__(
        self,
        gateway: str = DEFAULT_IPFS_GATEWAY,
        session: Optional[requests.Session] = None,
        timeout: int = 10,
        retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        self.gateway = gateway
        self.timeout = timeout
        self.session = session or create_http_session(
            retries=retries, backoff_factor=backoff_factor, timeout=timeout
        )
        self._lock = threading.Lock()
        self._inflight: Dict[str, Future] = {}
        self._cache: Dict[str, Metadata] = {}
        self._handlers: Dict[UriScheme, Callable[[str], Metadata]] = {
            UriScheme.INLINE_JSON: self._resolve_inline,
            UriScheme.CONTENT_ADDRESSED: self._resolve_ipfs,
            UriScheme.HTTP: self._resolve_http,
        }

    def resolve(self, token_uri: Any) -> Metadata:
        scheme = classify_uri(token_uri)
        if scheme is UriScheme.UNKNOWN:
            return default_metadata(token_uri)

        with self._lock:
            cached = self._cache.get(token_uri)
            if cached is not None:
                return cached
            future = self._inflight.get(token_uri)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[token_uri] = future

        if not owner:
            return future.result()

        resolved = False
        try:
            metadata = self._handlers[scheme](token_uri)
            resolved = True
        except MetadataFetchFailure as e:
            logger.warning("Metadata fallback for %s: %s", token_uri, e)
            metadata = default_metadata(token_uri)
        except Exception as e:
            logger.warning("Metadata fallback for %s: %s", token_uri, e, exc_info=True)
            metadata = default_metadata(token_uri)

        # Fallbacks reach in-flight waiters but are not memoized
        with self._lock:
            if resolved:
                self._cache[token_uri] = metadata
            self._inflight.pop(token_uri, None)
        future.set_result(metadata)
        return metadata

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    # --- scheme handlers ---

    def _resolve_inline(self, token_uri: str) -> Metadata:
        payload = "".join(token_uri[len(INLINE_JSON_PREFIX):].split())
        payload += "=" * (-len(payload) % 4)
        try:
            document = json.loads(base64.b64decode(payload, validate=True).decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
            raise MetadataFetchFailure(f"Invalid inline metadata: {e}")
        return self._build(token_uri, document)

    def _resolve_ipfs(self, token_uri: str) -> Metadata:
        return self._build(token_uri, self._fetch(gateway_url(token_uri, self.gateway)))

    def _resolve_http(self, token_uri: str) -> Metadata:
        return self._build(token_uri, self._fetch(token_uri))

    def _fetch(self, url: str) -> Any:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise MetadataFetchFailure(f"Request failed: {e}")

        if not response.ok:
            raise MetadataFetchFailure(f"HTTP error! status: {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise MetadataFetchFailure(f"Invalid JSON: {e}")

    def _build(self, token_uri: str, document: Any) -> Metadata:
        if not isinstance(document, dict):
            raise MetadataFetchFailure("Metadata document is not a JSON object")

        image = document.get("image")
        image = gateway_url(image, self.gateway) if isinstance(image, str) else None

        return Metadata(
            name=_text(document.get("name")) or f"NFT #{token_label(token_uri)}",
            description=_text(document.get("description")) or DEFAULT_DESCRIPTION,
            image=image or PLACEHOLDER_IMAGE,
        )


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def resolver_from_config(config: Optional[dict] = None) -> MetadataResolver:
    config = config or load_config()
    settings = config.get("metadata", {})
    return MetadataResolver(
        gateway=config.get("ipfs_gateway") or DEFAULT_IPFS_GATEWAY,
        timeout=int(settings.get("timeout", 10)),
        retries=int(settings.get("retries", 3)),
        backoff_factor=float(settings.get("backoff_factor", 0.5)),
    )
