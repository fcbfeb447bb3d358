"""Kubernetes API access for JobSets and their child Jobs.

This is the only module that talks to the API server. It converts between
the kubernetes client's wire objects and the controller's models, and maps
``ApiException`` to the controller's error types.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from pydantic import ValidationError

from jobset_controller.core.config import Settings, get_settings
from jobset_controller.core.errors import ConflictError, StoreError
from jobset_controller.models.jobset import JobSet
from jobset_controller.models.k8s import JOBSET_NAME_KEY
from jobset_controller.services.job_builder import get_subdomain, owner_reference

if TYPE_CHECKING:
    from kubernetes.client import BatchV1Api, CoreV1Api, CustomObjectsApi, V1Job

logger = logging.getLogger(__name__)

CONTROLLER_NAME = "jobset-controller"


class K8sJobSetStore:
    """Reads and writes JobSets, their child Jobs and related objects.

    Example:
        ```python
        store = K8sJobSetStore()
        js = store.get_jobset("default", "trainer")
        if js is not None:
            jobs = store.list_child_jobs(js)
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the store with lazy-loaded clients."""
        self.settings = settings or get_settings()
        self._batch_api: BatchV1Api | None = None
        self._core_api: CoreV1Api | None = None
        self._custom_api: CustomObjectsApi | None = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        """Initialize Kubernetes clients if not already done."""
        if self._initialized:
            return

        try:
            # Try in-cluster config first (when running in K8s)
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        except config.ConfigException:
            # Fall back to kubeconfig (for local development)
            try:
                config.load_kube_config()
                logger.info("Loaded kubeconfig Kubernetes configuration")
            except config.ConfigException as e:
                logger.warning("Failed to load Kubernetes configuration: %s", e)
                raise RuntimeError("No Kubernetes configuration available") from e

        self._batch_api = client.BatchV1Api()
        self._core_api = client.CoreV1Api()
        self._custom_api = client.CustomObjectsApi()
        self._initialized = True

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def batch_api(self) -> BatchV1Api:
        """Get the BatchV1 API client."""
        self._ensure_initialized()
        assert self._batch_api is not None
        return self._batch_api

    @property
    def core_api(self) -> CoreV1Api:
        """Get the CoreV1 API client."""
        self._ensure_initialized()
        assert self._core_api is not None
        return self._core_api

    @property
    def custom_api(self) -> CustomObjectsApi:
        """Get the CustomObjects API client."""
        self._ensure_initialized()
        assert self._custom_api is not None
        return self._custom_api

    def _crd_args(self) -> dict[str, str]:
        return {
            "group": self.settings.jobset_group,
            "version": self.settings.jobset_version,
            "plural": self.settings.jobset_plural,
        }

    # JobSets

    def get_jobset(self, namespace: str, name: str) -> JobSet | None:
        """Get a JobSet, or None if it does not exist.

        Raises:
            StoreError: If the JobSet cannot be read
        """
        try:
            obj = self.custom_api.get_namespaced_custom_object(
                namespace=namespace, name=name, **self._crd_args()
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise StoreError(f"Failed to get JobSet {namespace}/{name}: {e.reason}") from e
        try:
            return JobSet.model_validate(obj)
        except ValidationError as e:
            raise StoreError(f"JobSet {namespace}/{name} is malformed: {e}") from e

    def list_jobsets(self, namespace: str | None = None) -> list[JobSet]:
        """List JobSets in a namespace, or in all namespaces.

        Raises:
            StoreError: If the JobSets cannot be listed
        """
        namespace = namespace or self.settings.watch_namespace
        try:
            if namespace:
                result = self.custom_api.list_namespaced_custom_object(
                    namespace=namespace, **self._crd_args()
                )
            else:
                result = self.custom_api.list_cluster_custom_object(**self._crd_args())
        except ApiException as e:
            raise StoreError(f"Failed to list JobSets: {e.reason}") from e
        jobsets = []
        for item in result.get("items", []):
            try:
                jobsets.append(JobSet.model_validate(item))
            except ValidationError as e:
                metadata = item.get("metadata", {})
                logger.warning(
                    "Skipping malformed JobSet %s/%s: %s",
                    metadata.get("namespace"),
                    metadata.get("name"),
                    e,
                )
        return jobsets

    def update_jobset_status(self, js: JobSet) -> None:
        """Write the JobSet's status subresource.

        The body carries the resource version read at the start of the pass,
        so a concurrent change is rejected.

        Raises:
            ConflictError: If the JobSet changed since it was read
            StoreError: If the update fails otherwise
        """
        body = js.model_dump(by_alias=True, mode="json", exclude_none=True)
        try:
            updated = self.custom_api.replace_namespaced_custom_object_status(
                namespace=js.namespace, name=js.name, body=body, **self._crd_args()
            )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(f"JobSet {js.namespace}/{js.name} was modified") from e
            raise StoreError(
                f"Failed to update JobSet {js.namespace}/{js.name} status: {e.reason}"
            ) from e
        if isinstance(updated, dict):
            js.metadata.resource_version = updated.get("metadata", {}).get("resourceVersion")
        logger.debug("Updated status of JobSet %s/%s", js.namespace, js.name)

    def delete_jobset(self, js: JobSet) -> None:
        """Delete a JobSet and, in the foreground, everything it owns.

        Raises:
            StoreError: If deletion fails
        """
        try:
            self.custom_api.delete_namespaced_custom_object(
                namespace=js.namespace,
                name=js.name,
                body=client.V1DeleteOptions(propagation_policy="Foreground"),
                **self._crd_args(),
            )
            logger.info("Deleted JobSet %s/%s", js.namespace, js.name)
        except ApiException as e:
            if e.status == 404:
                logger.debug("JobSet %s/%s already deleted", js.namespace, js.name)
                return
            raise StoreError(
                f"Failed to delete JobSet {js.namespace}/{js.name}: {e.reason}"
            ) from e

    # Child Jobs

    def list_child_jobs(self, js: JobSet) -> list[V1Job]:
        """List the Jobs owned by a JobSet.

        Jobs are selected by the JobSet name label and, when the JobSet has a
        UID, filtered to those whose controller owner reference points at it.

        Raises:
            StoreError: If the Jobs cannot be listed
        """
        try:
            jobs = self.batch_api.list_namespaced_job(
                namespace=js.namespace,
                label_selector=f"{JOBSET_NAME_KEY}={js.name}",
            )
        except ApiException as e:
            raise StoreError(
                f"Failed to list jobs of JobSet {js.namespace}/{js.name}: {e.reason}"
            ) from e

        if not js.metadata.uid:
            return list(jobs.items)
        return [
            job
            for job in jobs.items
            if any(
                ref.uid == js.metadata.uid and ref.controller
                for ref in (job.metadata.owner_references or [])
            )
        ]

    def create_job(self, job: V1Job) -> bool:
        """Create a Job.

        Names are deterministic, so a Job that already exists was created by
        an earlier pass and counts as success.

        Returns:
            True if the Job was created, False if it already existed

        Raises:
            StoreError: If creation fails
        """
        try:
            self.batch_api.create_namespaced_job(namespace=job.metadata.namespace, body=job)
        except ApiException as e:
            if e.status == 409:
                logger.debug("Job %s already exists", job.metadata.name)
                return False
            raise StoreError(f"Failed to create job {job.metadata.name}: {e.reason}") from e
        logger.info("Created job %s/%s", job.metadata.namespace, job.metadata.name)
        return True

    def delete_job(self, job: V1Job, propagation_policy: str = "Background") -> None:
        """Delete a Job and its pods.

        Raises:
            StoreError: If deletion fails
        """
        try:
            self.batch_api.delete_namespaced_job(
                name=job.metadata.name,
                namespace=job.metadata.namespace,
                body=client.V1DeleteOptions(propagation_policy=propagation_policy),
            )
            logger.info("Deleted job %s/%s", job.metadata.namespace, job.metadata.name)
        except ApiException as e:
            if e.status == 404:
                logger.debug("Job %s not found, already deleted?", job.metadata.name)
                return
            raise StoreError(f"Failed to delete job {job.metadata.name}: {e.reason}") from e

    def set_job_suspend(self, job: V1Job, suspend: bool) -> None:
        """Suspend or resume a Job.

        Raises:
            StoreError: If the patch fails
        """
        try:
            self.batch_api.patch_namespaced_job(
                name=job.metadata.name,
                namespace=job.metadata.namespace,
                body={"spec": {"suspend": suspend}},
            )
        except ApiException as e:
            raise StoreError(
                f"Failed to set suspend={suspend} on job {job.metadata.name}: {e.reason}"
            ) from e
        logger.info(
            "%s job %s/%s",
            "Suspended" if suspend else "Resumed",
            job.metadata.namespace,
            job.metadata.name,
        )

    # Network identity and events

    def ensure_headless_service(self, js: JobSet) -> None:
        """Create the headless Service that gives the JobSet's pods DNS names.

        Idempotent: an existing Service is left alone.

        Raises:
            StoreError: If creation fails
        """
        name = get_subdomain(js)
        service = client.V1Service(
            api_version="v1",
            kind="Service",
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=js.namespace,
                owner_references=[owner_reference(js)] if js.metadata.uid else None,
            ),
            spec=client.V1ServiceSpec(
                cluster_ip="None",
                selector={JOBSET_NAME_KEY: js.name},
                publish_not_ready_addresses=True,
            ),
        )
        try:
            self.core_api.create_namespaced_service(namespace=js.namespace, body=service)
        except ApiException as e:
            if e.status == 409:
                return
            raise StoreError(f"Failed to create headless service {name}: {e.reason}") from e
        logger.info("Created headless service %s/%s", js.namespace, name)

    def record_event(self, js: JobSet, event_type: str, reason: str, message: str) -> None:
        """Record a Kubernetes Event on the JobSet.

        Events are best-effort: failures are logged, never raised.
        """
        now = datetime.now(UTC)
        event = client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                generate_name=f"{js.name}.",
                namespace=js.namespace,
            ),
            involved_object=client.V1ObjectReference(
                api_version=js.api_version,
                kind=js.kind,
                name=js.name,
                namespace=js.namespace,
                uid=js.metadata.uid,
                resource_version=js.metadata.resource_version,
            ),
            type=event_type,
            reason=reason,
            message=message,
            first_timestamp=now,
            last_timestamp=now,
            count=1,
            source=client.V1EventSource(component=CONTROLLER_NAME),
        )
        try:
            self.core_api.create_namespaced_event(namespace=js.namespace, body=event)
        except ApiException as e:
            logger.warning("Failed to record event %s on JobSet %s: %s", reason, js.name, e)


# Global singleton instance
_k8s_jobset_store: K8sJobSetStore | None = None


def get_k8s_jobset_store() -> K8sJobSetStore:
    """Get the global K8sJobSetStore instance."""
    global _k8s_jobset_store
    if _k8s_jobset_store is None:
        _k8s_jobset_store = K8sJobSetStore()
    return _k8s_jobset_store
