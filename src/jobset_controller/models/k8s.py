"""Kubernetes label and annotation keys, and the typed identity of a child Job."""

import hashlib

from pydantic import BaseModel, Field

# Keys stamped on every child Job and its pod template
JOBSET_NAME_KEY = "jobset.sigs.k8s.io/jobset-name"
REPLICATED_JOB_NAME_KEY = "jobset.sigs.k8s.io/replicatedjob-name"
REPLICATED_JOB_REPLICAS_KEY = "jobset.sigs.k8s.io/replicatedjob-replicas"
JOB_INDEX_KEY = "jobset.sigs.k8s.io/job-index"
JOB_KEY = "jobset.sigs.k8s.io/job-key"
RESTARTS_KEY = "jobset.sigs.k8s.io/restart-attempt"

# Exclusive placement
EXCLUSIVE_KEY = "alpha.jobset.sigs.k8s.io/exclusive-topology"
NODE_SELECTOR_STRATEGY_KEY = "alpha.jobset.sigs.k8s.io/node-selector"
NAMESPACED_JOB_KEY = "alpha.jobset.sigs.k8s.io/namespaced-job"
NO_SCHEDULE_TAINT_KEY = "alpha.jobset.sigs.k8s.io/no-schedule"


def job_hash_key(namespace: str, job_name: str) -> str:
    """Return the SHA-1 hex digest of ``namespace/job_name``.

    Label values are limited to 63 characters, so the fully qualified job
    name is hashed to get a stable, short identifier.
    """
    return hashlib.sha1(f"{namespace}/{job_name}".encode()).hexdigest()


def namespaced_job_name(namespace: str, job_name: str) -> str:
    """Return the fully qualified job name used by the node-selector strategy."""
    return f"{namespace}/{job_name}"


class JobIdentity(BaseModel):
    """Typed view of the labels identifying a child Job.

    The wire format is a flat string map; conversion happens only through
    ``to_labels`` and ``from_labels`` so the rest of the controller works on
    typed fields.

    Attributes:
        jobset_name: Name of the owning JobSet
        replicated_job_name: Name of the ReplicatedJob the Job belongs to
        replicas: Replica count of the ReplicatedJob when the Job was created
        job_index: Replica index of the Job within its ReplicatedJob
        restarts: JobSet restart attempt the Job was created for
        job_key: Hash of the Job's namespace and name
    """

    jobset_name: str = Field(alias="jobSetName")
    replicated_job_name: str = Field(alias="replicatedJobName")
    replicas: int
    job_index: int = Field(alias="jobIndex")
    restarts: int = 0
    job_key: str = Field(alias="jobKey")

    class Config:
        populate_by_name = True

    def to_labels(self) -> dict[str, str]:
        """Render the identity as Kubernetes labels/annotations."""
        return {
            JOBSET_NAME_KEY: self.jobset_name,
            REPLICATED_JOB_NAME_KEY: self.replicated_job_name,
            REPLICATED_JOB_REPLICAS_KEY: str(self.replicas),
            JOB_INDEX_KEY: str(self.job_index),
            RESTARTS_KEY: str(self.restarts),
            JOB_KEY: self.job_key,
        }

    @classmethod
    def from_labels(cls, labels: dict[str, str] | None) -> "JobIdentity | None":
        """Parse an identity from a label map.

        Returns:
            The identity, or None if any key is missing or malformed
        """
        if not labels:
            return None
        try:
            return cls(
                jobset_name=labels[JOBSET_NAME_KEY],
                replicated_job_name=labels[REPLICATED_JOB_NAME_KEY],
                replicas=int(labels[REPLICATED_JOB_REPLICAS_KEY]),
                job_index=int(labels[JOB_INDEX_KEY]),
                restarts=int(labels.get(RESTARTS_KEY, "0")),
                job_key=labels[JOB_KEY],
            )
        except (KeyError, ValueError):
            return None
