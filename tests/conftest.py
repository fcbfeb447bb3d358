"""Pytest configuration and shared fixtures for jobset-controller tests."""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from kubernetes.client import (
    V1Container,
    V1Job,
    V1JobCondition,
    V1JobSpec,
    V1JobStatus,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
)

from jobset_controller.core.clock import FakeClock
from jobset_controller.models.jobset import (
    JobSet,
    JobSetSpec,
    JobTemplate,
    ObjectMeta,
    ReplicatedJob,
    TemplateMetadata,
)
from jobset_controller.models.k8s import JobIdentity, job_hash_key
from jobset_controller.services.job_builder import gen_job_name
from jobset_controller.services.k8s_store import K8sJobSetStore

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)


def build_replicated_job(
    name: str = "workers",
    replicas: int = 1,
    parallelism: int | None = None,
    completions: int | None = None,
    annotations: dict[str, str] | None = None,
    pod_labels: dict[str, str] | None = None,
    containers: bool = True,
) -> ReplicatedJob:
    """Build a ReplicatedJob with a minimal runnable pod template."""
    pod_spec = V1PodSpec(
        containers=[V1Container(name="main", image="busybox")] if containers else [],
        restart_policy="Never",
    )
    return ReplicatedJob(
        name=name,
        replicas=replicas,
        template=JobTemplate(
            metadata=TemplateMetadata(annotations=annotations or {}),
            spec=V1JobSpec(
                parallelism=parallelism,
                completions=completions,
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels=pod_labels),
                    spec=pod_spec,
                ),
            ),
        ),
    )


def build_jobset(
    name: str = "test-js",
    namespace: str = "default",
    replicated_jobs: list[ReplicatedJob] | None = None,
    annotations: dict[str, str] | None = None,
    uid: str | None = "js-uid-1",
    **spec_fields,
) -> JobSet:
    """Build a JobSet with the given ReplicatedJobs and spec fields."""
    return JobSet(
        metadata=ObjectMeta(
            name=name,
            namespace=namespace,
            uid=uid,
            resource_version="1",
            annotations=annotations or {},
        ),
        spec=JobSetSpec(
            replicated_jobs=replicated_jobs if replicated_jobs is not None else [],
            **spec_fields,
        ),
    )


def build_job(
    jobset_name: str,
    replicated_job_name: str,
    job_index: int,
    namespace: str = "default",
    replicas: int = 1,
    restarts: int = 0,
    parallelism: int | None = None,
    completions: int | None = None,
    suspend: bool | None = None,
    active: int | None = None,
    ready: int | None = None,
    succeeded: int | None = None,
    condition: str | None = None,
    condition_time: datetime | None = None,
    deletion_timestamp: datetime | None = None,
) -> V1Job:
    """Build a child Job as the API server would return it."""
    name = gen_job_name(jobset_name, replicated_job_name, job_index)
    labels = JobIdentity(
        jobset_name=jobset_name,
        replicated_job_name=replicated_job_name,
        replicas=replicas,
        job_index=job_index,
        restarts=restarts,
        job_key=job_hash_key(namespace, name),
    ).to_labels()
    conditions = None
    if condition is not None:
        conditions = [
            V1JobCondition(
                type=condition,
                status="True",
                last_transition_time=condition_time,
            )
        ]
    return V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels,
            deletion_timestamp=deletion_timestamp,
        ),
        spec=V1JobSpec(
            parallelism=parallelism,
            completions=completions,
            suspend=suspend,
            template=V1PodTemplateSpec(),
        ),
        status=V1JobStatus(
            active=active,
            ready=ready,
            succeeded=succeeded,
            conditions=conditions,
        ),
    )


@pytest.fixture
def make_replicated_job():
    """Factory fixture for ReplicatedJobs."""
    return build_replicated_job


@pytest.fixture
def make_jobset():
    """Factory fixture for JobSets."""
    return build_jobset


@pytest.fixture
def make_job():
    """Factory fixture for child Jobs."""
    return build_job


@pytest.fixture
def clock() -> FakeClock:
    """A clock pinned to a fixed instant."""
    return FakeClock(NOW)


@pytest.fixture
def mock_store():
    """A K8sJobSetStore stand-in with no JobSets and no Jobs."""
    store = MagicMock(spec=K8sJobSetStore)
    store.list_child_jobs.return_value = []
    store.list_jobsets.return_value = []
    store.create_job.return_value = True
    return store
