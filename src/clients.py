"""
Control-plane clients: Docker Engine, Kubernetes and the Nomad HTTP API.
"""

import logging
import time
from typing import Dict, List, Optional

import docker
import requests
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.config.config_exception import ConfigException

from config import NomadSettings, stage_nomad_tls

logger = logging.getLogger(__name__)


def docker_api_client(timeout: int = 120):
    """Low-level Docker API client configured from the DOCKER_* environment."""
    return docker.from_env(timeout=timeout).api


def kubernetes_apps_api():
    """AppsV1 client using the in-cluster service account, else the kubeconfig."""
    try:
        k8s_config.load_incluster_config()
    except ConfigException:
        logger.debug("Not running in a cluster, loading kubeconfig")
        k8s_config.load_kube_config()
    return k8s_client.AppsV1Api()


class NomadRestClient:
    """REST client for the Nomad HTTP API (v1)."""

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        settings: NomadSettings,
        timeout_s: int = 30,
        max_retries: int = 3,
        base_delay: float = 2.0,
    ):
        """
        Initialize the Nomad REST client.

        Args:
            settings: Nomad connection settings
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
        """
        self.address = settings.address.rstrip("/")
        self.namespace = settings.namespace
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay

        self.session = requests.Session()
        if settings.token:
            self.session.headers["X-Nomad-Token"] = settings.token

        tls = stage_nomad_tls(settings)
        if tls:
            ca_path, cert_path, key_path = tls
            self.session.verify = ca_path
            self.session.cert = (cert_path, key_path)

    def _url(self, path: str) -> str:
        """Construct full API URL from path."""
        return f"{self.address}/v1/{path.lstrip('/')}"

    def _params(self, extra: Optional[Dict] = None) -> Dict:
        params = dict(extra or {})
        if self.namespace:
            params["namespace"] = self.namespace
        return params

    def _request_with_retry(
        self, method: str, url: str, retry: bool = True, **kwargs
    ) -> requests.Response:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Args:
            method: HTTP method (GET, POST)
            url: Request URL
            retry: Retry transient errors; when False the first response is returned
            **kwargs: Additional request parameters

        Returns:
            The HTTP response

        Raises:
            RuntimeError: If max retries exceeded
        """
        attempts = self.max_retries + 1 if retry else 1
        last_error = None

        for attempt in range(attempts):
            try:
                if method.upper() == "GET":
                    resp = self.session.get(url, timeout=self.timeout_s, **kwargs)
                elif method.upper() == "POST":
                    resp = self.session.post(url, timeout=self.timeout_s, **kwargs)
                else:
                    raise ValueError(f"Unsupported method: {method}")
            except requests.RequestException as e:
                last_error = str(e)
                if attempt + 1 >= attempts:
                    break
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{attempts}, waiting {delay:.1f}s..."
                )
                time.sleep(delay)
                continue

            if retry and resp.status_code in self.RETRYABLE_STATUS_CODES and attempt + 1 < attempts:
                delay = self._calculate_delay(attempt, resp)
                logger.warning(
                    f"Retryable error {resp.status_code} ({resp.text[:200]}), attempt {attempt + 1}/{attempts}, waiting {delay:.1f}s..."
                )
                last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"
                time.sleep(delay)
                continue

            return resp

        raise RuntimeError(f"Max retries exceeded. Last error: {last_error}")

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 60.0)

    def _get_json(self, path: str, what: str, params: Optional[Dict] = None):
        resp = self._request_with_retry("GET", self._url(path), params=self._params(params))
        if resp.status_code != 200:
            raise RuntimeError(f"{what} failed ({resp.status_code}): {resp.text}")
        return resp.json()

    def list_jobs(self) -> List[Dict]:
        """List job stubs (ID, Type, Status, ...)."""
        return self._get_json("jobs", "List jobs")

    def get_job(self, job_id: str) -> Dict:
        """Get the full job specification."""
        return self._get_json(f"job/{job_id}", "Get job")

    def register_job(self, job: Dict, modify_index: int) -> Dict:
        """
        Register a job, enforcing the index it was read at.

        A conflicting concurrent edit fails the call; it is not retried.

        Args:
            job: Job specification
            modify_index: JobModifyIndex the job was read at

        Returns:
            Registration response (EvalID, JobModifyIndex, Warnings)

        Raises:
            RuntimeError: If the registration is rejected
        """
        body = {"Job": job, "EnforceIndex": True, "JobModifyIndex": modify_index}
        resp = self._request_with_retry(
            "POST",
            self._url(f"job/{job['ID']}"),
            retry=False,
            params=self._params(),
            json=body,
        )
        if resp.status_code != 200:
            raise RuntimeError(f"Register job failed ({resp.status_code}): {resp.text}")
        return resp.json()

    def job_allocations(self, job_id: str) -> List[Dict]:
        """List allocation stubs of a job."""
        return self._get_json(f"job/{job_id}/allocations", "List allocations")

    def allocation_logs(self, alloc_id: str, task: str, tail_bytes: int = 4096) -> str:
        """
        Read the end of a task's stderr log.

        Args:
            alloc_id: Allocation ID
            task: Task name
            tail_bytes: Number of bytes to read from the end of the log

        Returns:
            Log text
        """
        params = {
            "task": task,
            "type": "stderr",
            "origin": "end",
            "offset": tail_bytes,
            "plain": "true",
        }
        resp = self._request_with_retry(
            "GET", self._url(f"client/fs/logs/{alloc_id}"), params=self._params(params)
        )
        if resp.status_code != 200:
            raise RuntimeError(f"Read logs failed ({resp.status_code}): {resp.text}")
        return resp.text

    def revert_job(self, job_id: str, version: int) -> Dict:
        """
        Revert a job to a previous version.

        Args:
            job_id: Job ID
            version: Version to revert to

        Returns:
            Revert response (EvalID, JobModifyIndex)
        """
        body = {"JobID": job_id, "JobVersion": version}
        resp = self._request_with_retry(
            "POST",
            self._url(f"job/{job_id}/revert"),
            params=self._params(),
            json=body,
        )
        if resp.status_code != 200:
            raise RuntimeError(f"Revert job failed ({resp.status_code}): {resp.text}")
        return resp.json()
