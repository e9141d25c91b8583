"""
Etcd v3 client using the JSON gRPC gateway over httpx.

Keys and values travel base64 encoded:
    POST /v3/kv/range        get / list by prefix
    POST /v3/kv/put          put
    POST /v3/kv/deleterange  delete
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod

import httpx

from flannelregistrar.exceptions import InvalidRegistryKeyError, RegistryUnavailableError
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.retry import RetryPolicy

logger = get_logger(__name__)


def _b64(value: str | bytes) -> str:
    if isinstance(value, str):
        value = value.encode()
    return base64.b64encode(value).decode("ascii")


def _unb64(value: str) -> str:
    return base64.b64decode(value).decode("utf-8", errors="replace")


def prefix_range_end(prefix: str) -> bytes:
    """
    Compute the etcd ``range_end`` that selects every key under ``prefix``.

    The last byte below 0xff is incremented and everything after it dropped.
    """
    end = bytearray(prefix.encode())
    for i in range(len(end) - 1, -1, -1):
        if end[i] < 0xFF:
            end[i] += 1
            return bytes(end[: i + 1])
    return b"\x00"


def check_key(key: str) -> str:
    """
    Reject keys built by concatenating two absolute keys.

    ``/coreos.com/network/subnets/x/coreos.com/network/subnets/y`` is the
    typical symptom of a broken key join and must never be written.
    """
    parts = key.split("/")
    if len(parts) > 2 and parts[1]:
        root = f"/{parts[1]}/"
        if key.find(root, 1) != -1:
            raise InvalidRegistryKeyError(key)
    return key


# =============================================================================
# Key-Value Store Interface
# =============================================================================


class KeyValueStore(ABC):
    """Minimal versioned key-value store contract consumed by the registrar."""

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def put(self, key: str, value: str) -> bool: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def list_keys(self, prefix: str) -> list[str]: ...

    def is_healthy(self) -> bool:
        return True


# =============================================================================
# EtcdClient Class
# =============================================================================


class EtcdClient(KeyValueStore):
    """
    Etcd v3 client with bounded retries around every request.

    Transport and HTTP status failures that persist past the retry policy
    are raised as ``RegistryUnavailableError``.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 5.0,
        retry: RetryPolicy | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.retry = retry or RetryPolicy(max_attempts=3, delay=2.0)
        self._client = httpx.Client(
            base_url=self.endpoint, timeout=timeout, transport=transport
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> EtcdClient:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _post(self, path: str, payload: dict) -> dict:
        def do_request() -> dict:
            response = self._client.post(path, json=payload)
            response.raise_for_status()
            return response.json()

        try:
            return self.retry.call(
                do_request,
                retry_on=(httpx.RequestError, httpx.HTTPStatusError),
                description=f"etcd {path}",
            )
        except httpx.HTTPStatusError as e:
            raise RegistryUnavailableError(
                self.endpoint, f"HTTP {e.response.status_code} on {path}"
            ) from e
        except httpx.RequestError as e:
            raise RegistryUnavailableError(self.endpoint, str(e)) from e
        except ValueError as e:
            raise RegistryUnavailableError(
                self.endpoint, f"invalid JSON from {path}: {e}"
            ) from e

    # =========================================================================
    # CRUD
    # =========================================================================

    def get(self, key: str) -> str | None:
        """Get a value, or None when the key does not exist."""
        check_key(key)
        data = self._post("/v3/kv/range", {"key": _b64(key)})
        kvs = data.get("kvs") or []
        if not kvs:
            return None
        return _unb64(kvs[0].get("value", ""))

    def put(self, key: str, value: str) -> bool:
        check_key(key)
        self._post("/v3/kv/put", {"key": _b64(key), "value": _b64(value)})
        logger.debug(f"etcd put {key}")
        return True

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if something was deleted."""
        check_key(key)
        data = self._post("/v3/kv/deleterange", {"key": _b64(key)})
        deleted = int(data.get("deleted", 0) or 0)
        logger.debug(f"etcd delete {key}: {deleted} removed")
        return deleted > 0

    def list_keys(self, prefix: str) -> list[str]:
        """List keys under a prefix (keys only, unordered)."""
        data = self._post(
            "/v3/kv/range",
            {
                "key": _b64(prefix),
                "range_end": _b64(prefix_range_end(prefix)),
                "keys_only": True,
            },
        )
        return [_unb64(kv["key"]) for kv in data.get("kvs") or [] if "key" in kv]

    def is_healthy(self) -> bool:
        """Check etcd's /health endpoint."""
        try:
            response = self._client.get("/health")
            response.raise_for_status()
            return str(response.json().get("health", "")).lower() == "true"
        except (httpx.RequestError, httpx.HTTPStatusError, ValueError) as e:
            logger.debug(f"etcd health check failed: {e}")
            return False
