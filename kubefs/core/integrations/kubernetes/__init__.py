import logging
from typing import Any, Callable, Optional, TypeVar

import urllib3
from kubernetes import client  # type: ignore
from kubernetes.client import ApiException
from kubernetes.client.api_client import ApiClient  # type: ignore
from tenacity import Retrying, retry_if_exception_type, retry_if_not_exception_type, stop_after_attempt, wait_random

from kubefs.core.abstract.fetcher import BaseResourceFetcher
from kubefs.core.exceptions import (
    FetchAuthenticationError,
    FetchConnectionError,
    NamespaceNotFound,
    RemoteFetchError,
)
from kubefs.core.models.config import settings

logger = logging.getLogger("kubefs")

T = TypeVar("T")

AUTH_ERROR_STATUSES = (401, 403)


class KubernetesFetcher(BaseResourceFetcher):
    """Lists namespaces and pods through the Kubernetes API.

    The kubernetes client is synchronous, so every call blocks the calling FUSE worker until the
    API answers or `request_timeout` expires.
    """

    def __init__(
        self,
        api_client: Optional[ApiClient] = None,
        request_timeout: Optional[float] = None,
        attempts: Optional[int] = None,
    ) -> None:
        self.api_client = api_client if api_client is not None else settings.get_kube_client()
        self.core = client.CoreV1Api(api_client=self.api_client)
        self.request_timeout = request_timeout if request_timeout is not None else settings.request_timeout
        self.attempts = attempts if attempts is not None else settings.fetch_attempts
        self.wait = wait_random(min=1, max=3)

    def list_namespaces(self) -> list[str]:
        logger.debug("Listing namespaces")
        ret = self._request(
            "namespaces",
            lambda: self.core.list_namespace(_request_timeout=self.request_timeout),
        )
        return [item.metadata.name for item in ret.items]

    def list_pods(self, namespace: str) -> list[str]:
        logger.debug(f"Listing pods in namespace {namespace}")
        ret = self._request(
            f"pods in namespace {namespace}",
            lambda: self.core.list_namespaced_pod(namespace=namespace, _request_timeout=self.request_timeout),
        )
        return [item.metadata.name for item in ret.items]

    def _request(self, what: str, request: Callable[[], T]) -> T:
        # NOTE: only transport errors are worth retrying, the API answered in every other case
        retrying = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=self.wait,
            retry=retry_if_exception_type(FetchConnectionError)
            & retry_if_not_exception_type(FetchAuthenticationError),
            reraise=True,
        )
        return retrying(self._translate_errors, what, request)

    @staticmethod
    def _translate_errors(what: str, request: Callable[[], Any]) -> Any:
        try:
            return request()
        except ApiException as e:
            if e.status in AUTH_ERROR_STATUSES:
                raise FetchAuthenticationError(f"Not authorized to list {what}: {e.status} {e.reason}") from e
            elif e.status == 404:
                raise NamespaceNotFound(f"Error {e.status} listing {what}: {e.reason}") from e
            raise RemoteFetchError(f"Error {e.status} listing {what}: {e.reason}") from e
        except urllib3.exceptions.HTTPError as e:
            raise FetchConnectionError(f"Unable to reach the cluster while listing {what}: {e}") from e
        except Exception as e:
            raise RemoteFetchError(f"Unexpected error listing {what}: {e}") from e


__all__ = ["KubernetesFetcher"]
