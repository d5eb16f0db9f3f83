"""Kubernetes client handle shared by all analyzers.

Analyzers run on worker threads, while kubernetes-asyncio is coroutine
based. ``ClusterClient`` holds only the loaded ``Configuration``; every
``request`` opens a short-lived ``ApiClient`` inside a private event loop on
the calling thread, so concurrent analyzers never share a session.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from kubernetes_asyncio import config as k8s_config
from kubernetes_asyncio.client import ApiClient, Configuration

from kubediag.errors import ClusterClientError
from kubediag.observability.logging import get_logger

_logger = get_logger("kube_client")

T = TypeVar("T")


class ClusterClient:
    """Borrowed by an AnalysisRun; must outlive it."""

    def __init__(self, configuration: Configuration) -> None:
        self._configuration = configuration

    @property
    def host(self) -> str:
        return str(self._configuration.host)

    @property
    def configuration(self) -> Configuration:
        return self._configuration

    def request(self, call: Callable[[ApiClient], Awaitable[T]]) -> T:
        """Run ``call(api_client)`` to completion on the current thread.

        Must not be called from a thread that already runs an event loop.
        """

        async def _run() -> T:
            async with ApiClient(configuration=self._configuration) as api:
                return await call(api)

        return asyncio.run(_run())

    def fetch_openapi_schema(self) -> dict[str, Any]:
        """Return the server's OpenAPI v2 document as a dict."""

        async def _fetch(api: ApiClient) -> dict[str, Any]:
            response = await api.call_api(
                "/openapi/v2",
                "GET",
                auth_settings=["BearerToken"],
                _preload_content=False,
                _return_http_data_only=True,
            )
            document = await response.json()
            if not isinstance(document, dict):
                raise ValueError("OpenAPI document is not a JSON object")
            return document

        return self.request(_fetch)


async def connect(kubeconfig: str = "", context: str = "") -> ClusterClient:
    """Load cluster credentials and return a ClusterClient.

    An explicit kubeconfig path or context selects kubeconfig loading;
    otherwise the in-cluster service account is tried first. Any failure
    is fatal for the run and surfaces as ClusterClientError.
    """
    configuration = Configuration()
    try:
        if not kubeconfig and not context:
            try:
                # load_incluster_config() is synchronous in kubernetes-asyncio
                k8s_config.load_incluster_config(client_configuration=configuration)  # type: ignore[no-untyped-call]
                _logger.debug("kube_client_configured", source="incluster", host=configuration.host)
                return ClusterClient(configuration)
            except k8s_config.ConfigException:
                pass
        await k8s_config.load_kube_config(
            config_file=kubeconfig or None,
            context=context or None,
            client_configuration=configuration,
        )
    except Exception as exc:
        raise ClusterClientError(f"initialising kubernetes client: {exc}") from exc

    _logger.debug("kube_client_configured", source="kubeconfig", host=configuration.host)
    return ClusterClient(configuration)
