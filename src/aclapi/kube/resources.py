"""
Clients for the resources the strategies annotate.

Each client reads a resource as a plain dict and applies JSON merge
patches to it. A missing resource reads as None; any other API failure
becomes a TargetResourceError.
"""

from abc import ABC, abstractmethod
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from aclapi.errors import TargetResourceError

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


class ResourceClient(ABC):
    """Read and merge-patch one kind of namespaced resource."""

    kind: str = ""

    @abstractmethod
    def get(self, namespace: str, name: str) -> dict[str, Any] | None:
        """
        Read a resource.

        Returns:
            The resource as a dict, or None if it doesn't exist

        Raises:
            TargetResourceError: On any other API failure
        """
        ...

    @abstractmethod
    def patch(self, namespace: str, name: str, patch: dict[str, Any]) -> dict[str, Any]:
        """
        Apply a JSON merge patch to a resource.

        Returns:
            The patched resource

        Raises:
            TargetResourceError: If the API rejects the patch
        """
        ...

    def _error(self, namespace: str, name: str, e: ApiException) -> TargetResourceError:
        return TargetResourceError(
            kind=self.kind,
            namespace=namespace,
            name=name,
            status=e.status,
            message=f"{self.kind} {namespace}/{name}: {e.status} {e.reason}",
        )


class TsuruAppClient(ResourceClient):
    """tsuru App custom resources (tsuru.io/v1, apps)."""

    kind = "App"
    group = "tsuru.io"
    version = "v1"
    plural = "apps"

    def __init__(self, api_client: client.ApiClient, request_timeout: float | None = None) -> None:
        self.api = client.CustomObjectsApi(api_client)
        self.request_timeout = request_timeout

    def get(self, namespace: str, name: str) -> dict[str, Any] | None:
        try:
            return self.api.get_namespaced_custom_object(
                self.group,
                self.version,
                namespace,
                self.plural,
                name,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._error(namespace, name, e) from e

    def patch(self, namespace: str, name: str, patch: dict[str, Any]) -> dict[str, Any]:
        try:
            return self.api.patch_namespaced_custom_object(
                self.group,
                self.version,
                namespace,
                self.plural,
                name,
                patch,
                _content_type=MERGE_PATCH_CONTENT_TYPE,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise self._error(namespace, name, e) from e


class CronJobClient(ResourceClient):
    """batch/v1 CronJobs backing tsuru jobs."""

    kind = "CronJob"

    def __init__(self, api_client: client.ApiClient, request_timeout: float | None = None) -> None:
        self.api_client = api_client
        self.api = client.BatchV1Api(api_client)
        self.request_timeout = request_timeout

    def get(self, namespace: str, name: str) -> dict[str, Any] | None:
        try:
            cron_job = self.api.read_namespaced_cron_job(
                name,
                namespace,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._error(namespace, name, e) from e
        return self.api_client.sanitize_for_serialization(cron_job)

    def patch(self, namespace: str, name: str, patch: dict[str, Any]) -> dict[str, Any]:
        try:
            cron_job = self.api.patch_namespaced_cron_job(
                name,
                namespace,
                patch,
                _content_type=MERGE_PATCH_CONTENT_TYPE,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise self._error(namespace, name, e) from e
        return self.api_client.sanitize_for_serialization(cron_job)
