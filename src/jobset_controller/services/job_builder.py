"""Construction of child Jobs from ReplicatedJob templates."""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING

from kubernetes import client

from jobset_controller.core.errors import TemplatingError
from jobset_controller.models.k8s import JobIdentity, job_hash_key
from jobset_controller.services.child_jobs import replicated_job_name
from jobset_controller.services.placement import apply_placement, resolve_placement

if TYPE_CHECKING:
    from kubernetes.client import V1Job, V1OwnerReference

    from jobset_controller.models.jobset import JobSet, ReplicatedJob
    from jobset_controller.services.child_jobs import ChildJobs

logger = logging.getLogger(__name__)


def gen_job_name(jobset_name: str, replicated_job_name: str, job_index: int) -> str:
    """Deterministic name of the Job at ``job_index`` of a ReplicatedJob."""
    return f"{jobset_name}-{replicated_job_name}-{job_index}"


def dns_hostnames_enabled(js: JobSet) -> bool:
    return js.spec.network is not None and bool(js.spec.network.enable_dns_hostnames)


def get_subdomain(js: JobSet) -> str:
    """Subdomain of the headless Service fronting the JobSet's pods."""
    if js.spec.network is not None and js.spec.network.subdomain:
        return js.spec.network.subdomain
    return js.name


def owner_reference(js: JobSet) -> V1OwnerReference:
    """Controller owner reference pointing back at the JobSet."""
    return client.V1OwnerReference(
        api_version=js.api_version,
        kind=js.kind,
        name=js.name,
        uid=js.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )


def validate_template(rjob: ReplicatedJob) -> None:
    """Check that a ReplicatedJob template can produce a valid Job.

    Raises:
        TemplatingError: If the pod template has no containers, or the job
            selector does not match the pod template labels
    """
    pod_template = rjob.template.spec.template
    if pod_template.spec is None or not pod_template.spec.containers:
        raise TemplatingError(f"replicatedJob {rjob.name!r}: pod template has no containers")

    selector = rjob.template.spec.selector
    if selector is not None and selector.match_labels:
        pod_labels = (pod_template.metadata.labels if pod_template.metadata else None) or {}
        unmatched = sorted(
            key for key, value in selector.match_labels.items() if pod_labels.get(key) != value
        )
        if unmatched:
            raise TemplatingError(
                f"replicatedJob {rjob.name!r}: selector does not match pod template "
                f"labels {unmatched}"
            )


def existing_job_indices(js: JobSet, rjob: ReplicatedJob, owned: ChildJobs) -> set[int]:
    """Replica indices of ``rjob`` already taken by an owned Job.

    Jobs in every bucket count, including finished Jobs and Jobs being
    deleted: an index is only freed once its Job is gone.
    """
    names = {gen_job_name(js.name, rjob.name, idx): idx for idx in range(rjob.replicas)}
    indices: set[int] = set()
    for job in owned.all():
        idx = names.get(job.metadata.name)
        if idx is not None:
            indices.add(idx)
            continue
        identity = JobIdentity.from_labels(job.metadata.labels)
        if (
            identity is not None
            and identity.jobset_name == js.name
            and replicated_job_name(job) == rjob.name
        ):
            indices.add(identity.job_index)
    return indices


def construct_job(js: JobSet, rjob: ReplicatedJob, job_index: int) -> V1Job:
    """Build the Job for one replica index of a ReplicatedJob.

    The Job gets a copy of the template's JobSpec with the JobSet's suspend
    flag. It carries the JobSet identity labels and annotations, the
    ReplicatedJob's template metadata, the DNS subdomain when DNS hostnames
    are enabled, and any exclusive placement constraints.
    """
    job_name = gen_job_name(js.name, rjob.name, job_index)
    identity = JobIdentity(
        jobset_name=js.name,
        replicated_job_name=rjob.name,
        replicas=rjob.replicas,
        job_index=job_index,
        restarts=js.status.restarts,
        job_key=job_hash_key(js.namespace, job_name),
    )
    identity_keys = identity.to_labels()

    template = rjob.template
    job_spec = copy.deepcopy(template.spec)
    job_spec.suspend = js.suspended
    pod_template = job_spec.template
    if pod_template.metadata is None:
        pod_template.metadata = client.V1ObjectMeta()
    pod_template.metadata.labels = {**(pod_template.metadata.labels or {}), **identity_keys}
    pod_template.metadata.annotations = {
        **(pod_template.metadata.annotations or {}),
        **identity_keys,
    }
    if dns_hostnames_enabled(js):
        pod_template.spec.subdomain = get_subdomain(js)

    job = client.V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=client.V1ObjectMeta(
            name=job_name,
            namespace=js.namespace,
            labels={**template.metadata.labels, **identity_keys},
            annotations={**template.metadata.annotations, **identity_keys},
            owner_references=[owner_reference(js)] if js.metadata.uid else None,
        ),
        spec=job_spec,
    )

    apply_placement(job, resolve_placement(js, rjob), js.name, rjob.name)
    return job


def construct_jobs_from_template(
    js: JobSet, rjob: ReplicatedJob, owned: ChildJobs
) -> list[V1Job]:
    """Build the Jobs still missing for a ReplicatedJob.

    Pure computation: creating the Jobs is up to the caller. Calling it again
    with the same spec and the created Jobs observed yields nothing.

    Args:
        js: The JobSet being reconciled
        rjob: The ReplicatedJob to build Jobs for
        owned: Classified Jobs currently owned by the JobSet

    Returns:
        One Job per index in ``[0, replicas)`` not held by an owned Job,
        in index order

    Raises:
        TemplatingError: If the ReplicatedJob template is invalid
    """
    validate_template(rjob)

    existing = existing_job_indices(js, rjob, owned)
    jobs = [
        construct_job(js, rjob, idx) for idx in range(rjob.replicas) if idx not in existing
    ]
    if jobs:
        logger.debug(
            "Constructed %d jobs for replicatedJob %s of JobSet %s/%s",
            len(jobs),
            rjob.name,
            js.namespace,
            js.name,
        )
    return jobs
