"""
tsuru API client.

The endpoint directory answers "which pool does this app/job live in" and
"which cluster serves this pool". Lookups are memoized per client instance:
the cluster list is fetched once, and app, job and pool details once per
name. A 404 for an app or job is remembered too, so a rule pointing at a
deleted app does not cost a request per strategy.

Usage:
    from aclapi.directory import TsuruClient

    with TsuruClient("https://tsuru.example.com", token="...") as client:
        app = client.app_info("myapp")
        pool = client.pool_info(app.pool)
        cluster = client.pool_cluster(pool)
"""

import threading
import time
from typing import Any, Callable, TypeVar

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from aclapi.errors import (
    ClusterNotFoundError,
    DirectoryHTTPError,
    DirectoryResponseError,
    NotKubernetesPoolError,
    ResolutionError,
)
from aclapi.log import get_logger
from aclapi.metrics import EXTERNAL_REQUEST_DURATION

USER_AGENT = "acl-api-http-client/1.0"
KUBERNETES_PROVISIONER = "kubernetes"
REQUEST_ID_HEADERS = ("X-Request-ID", "X-RID", "X-Requestid")

logger = get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# Response Models
# =============================================================================


class AppInfo(BaseModel):
    """The parts of a tsuru app the resolver needs."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(default="", validation_alias=AliasChoices("name", "Name"))
    pool: str = Field(default="", validation_alias=AliasChoices("pool", "Pool"))


class JobInfo(BaseModel):
    """The parts of a tsuru job the resolver needs."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(default="", validation_alias=AliasChoices("name", "Name"))
    pool: str = Field(default="", validation_alias=AliasChoices("pool", "Pool"))


class PoolInfo(BaseModel):
    """A tsuru pool and the provisioner backing it."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(default="", validation_alias=AliasChoices("name", "Name"))
    provisioner: str = Field(default="", validation_alias=AliasChoices("provisioner", "Provisioner"))


class ClusterKubeConfig(BaseModel):
    """Embedded kubeconfig sections of a cluster."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    cluster: dict[str, Any] = Field(default_factory=dict)
    user: dict[str, Any] = Field(default_factory=dict)


class ClusterInfo(BaseModel):
    """
    A cluster registered in tsuru.

    Certificate fields hold base64 data as served by the API.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str = ""
    provisioner: str = ""
    default: bool = False
    pools: list[str] = Field(default_factory=list)
    addresses: list[str] = Field(default_factory=list)
    ca_cert: str = Field(default="", alias="cacert")
    client_cert: str = Field(default="", alias="clientcert")
    client_key: str = Field(default="", alias="clientkey")
    custom_data: dict[str, str] = Field(default_factory=dict, alias="customData")
    kube_config: ClusterKubeConfig | None = Field(default=None, alias="kubeConfig")


# =============================================================================
# Client
# =============================================================================


class TsuruClient:
    """
    Memoizing tsuru API client.

    The underlying httpx.Client is created lazily and can be replaced in
    tests by passing a transport.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 60.0,
        insecure: bool = False,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: tsuru API address
            token: Bearer token, sent when non-empty
            timeout: Request timeout in seconds
            insecure: Skip TLS certificate verification
            transport: Optional httpx transport (e.g. httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.insecure = insecure
        self._transport = transport
        self._client: httpx.Client | None = None

        self._lock = threading.Lock()
        self._entry_locks: dict[tuple[str, str], threading.Lock] = {}
        self._clusters: list[ClusterInfo] | None = None
        self._apps: dict[str, AppInfo] = {}
        self._jobs: dict[str, JobInfo] = {}
        self._pools: dict[str, PoolInfo] = {}
        self._not_found: dict[tuple[str, str], DirectoryHTTPError] = {}

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.Client(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                verify=not self.insecure,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "TsuruClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # =========================================================================
    # Lookups
    # =========================================================================

    def app_info(self, app_name: str) -> AppInfo:
        """
        Get an app by name.

        Raises:
            DirectoryHTTPError: On a non 2xx/3xx answer (404s are remembered)
            DirectoryResponseError: If the app has no name or pool
        """

        def fetch() -> AppInfo:
            app = self._get_json(f"/apps/{app_name}", AppInfo)
            if not app.name or not app.pool:
                raise DirectoryResponseError(
                    endpoint=app_name,
                    message=f"empty data for app {app_name!r}",
                )
            return app

        return self._cached("app", app_name, self._apps, fetch, remember_not_found=True)

    def job_info(self, job_name: str) -> JobInfo:
        """
        Get a job by name. The API wraps the job in a {"job": ...} envelope.

        Raises:
            DirectoryHTTPError: On a non 2xx/3xx answer (404s are remembered)
            DirectoryResponseError: If the envelope is empty
        """

        def fetch() -> JobInfo:
            data = self._get_json(f"/jobs/{job_name}")
            job = data.get("job") if isinstance(data, dict) else None
            if not job:
                raise DirectoryResponseError(
                    endpoint=job_name,
                    message=f"empty data for job {job_name!r}",
                )
            return _decode(JobInfo, job, job_name)

        return self._cached("job", job_name, self._jobs, fetch, remember_not_found=True)

    def pool_info(self, pool_name: str) -> PoolInfo:
        """
        Get a pool by name.

        Raises:
            DirectoryHTTPError: On a non 2xx/3xx answer
            DirectoryResponseError: If the pool has no name
        """

        def fetch() -> PoolInfo:
            pool = self._get_json(f"/pools/{pool_name}", PoolInfo)
            if not pool.name:
                raise DirectoryResponseError(
                    endpoint=pool_name,
                    message=f"pool {pool_name!r} not found",
                )
            return pool

        return self._cached("pool", pool_name, self._pools, fetch, remember_not_found=False)

    def clusters(self) -> list[ClusterInfo]:
        """Get every cluster registered in tsuru. Fetched once per client."""
        with self._lock:
            if self._clusters is None:
                data = self._get_json("/provisioner/clusters")
                self._clusters = [_decode(ClusterInfo, item, "clusters") for item in data or []]
            return self._clusters

    def cluster(self, cluster_name: str) -> ClusterInfo:
        """
        Get a kubernetes cluster by name.

        Raises:
            ClusterNotFoundError: If no kubernetes cluster has that name
        """
        for c in self.clusters():
            if c.provisioner == KUBERNETES_PROVISIONER and c.name == cluster_name:
                return c
        raise ClusterNotFoundError(endpoint=cluster_name)

    def pool_cluster(self, pool: PoolInfo) -> ClusterInfo:
        """
        Find the kubernetes cluster serving a pool.

        A cluster listing the pool wins; otherwise the cluster flagged as
        default is used.

        Raises:
            NotKubernetesPoolError: If the pool isn't provisioned by kubernetes
            ClusterNotFoundError: If no cluster lists the pool and none is default
        """
        if pool.provisioner != KUBERNETES_PROVISIONER:
            raise NotKubernetesPoolError(endpoint=pool.name, pool=pool.name)
        chosen: ClusterInfo | None = None
        for c in self.clusters():
            if c.provisioner != KUBERNETES_PROVISIONER:
                continue
            if c.default:
                chosen = c
            if pool.name in c.pools:
                return c
        if chosen is None:
            raise ClusterNotFoundError(endpoint=pool.name, pool=pool.name)
        return chosen

    # =========================================================================
    # Internals
    # =========================================================================

    def _cached(
        self,
        kind: str,
        name: str,
        cache: dict[str, T],
        fetch: Callable[[], T],
        remember_not_found: bool,
    ) -> T:
        key = (kind, name)
        with self._lock:
            entry_lock = self._entry_locks.setdefault(key, threading.Lock())
        # one fetch per name, concurrent callers for other names don't wait
        with entry_lock:
            if name in cache:
                return cache[name]
            if key in self._not_found:
                raise self._not_found[key]
            try:
                result = fetch()
            except DirectoryHTTPError as e:
                if remember_not_found and e.not_found:
                    self._not_found[key] = e
                raise
            cache[name] = result
            return result

    def _get_json(self, path: str, model: type[BaseModel] | None = None) -> Any:
        """
        GET path and decode the JSON body.

        Raises:
            ResolutionError: If the request could not be sent
            DirectoryHTTPError: If the status is outside 200-399
            DirectoryResponseError: If the body can't be decoded
        """
        client = self._get_client()
        start = time.monotonic()
        code = "error"
        try:
            response = client.get(path)
            code = str(response.status_code)
        except httpx.HTTPError as e:
            raise ResolutionError(
                endpoint=path,
                message=f"request to {self.base_url}{path} failed: {e}",
            ) from e
        finally:
            elapsed = time.monotonic() - start
            host = httpx.URL(self.base_url).host
            EXTERNAL_REQUEST_DURATION.labels(host=host, method="GET", code=code).observe(elapsed)

        valid = 200 <= response.status_code < 400
        logger.debug(
            "client request",
            method="GET",
            url=str(response.request.url),
            duration=round(elapsed, 4),
            status_code=response.status_code,
            rsp_body=None if valid else response.text,
        )
        if not valid:
            raise DirectoryHTTPError(
                endpoint=path,
                status_code=response.status_code,
                body=response.text,
                request_id=_request_id(response.headers),
            )

        try:
            data = response.json()
        except ValueError as e:
            raise DirectoryResponseError(
                endpoint=path,
                underlying_error=f"unable to unmarshal data {response.text!r}: {e}",
            ) from e
        if model is None:
            return data
        return _decode(model, data, path)


def _decode(model: type[T], data: Any, endpoint: str) -> T:
    try:
        return model.model_validate(data)  # type: ignore[attr-defined]
    except ValidationError as e:
        raise DirectoryResponseError(endpoint=endpoint, underlying_error=str(e)) from e


def _request_id(headers: httpx.Headers) -> str:
    for name in REQUEST_ID_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return ""
