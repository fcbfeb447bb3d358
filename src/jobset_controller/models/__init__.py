"""Pydantic models for JobSets and their child Jobs."""

from jobset_controller.models.common import (
    ConditionStatus,
    JobConditionType,
    JobSetConditionType,
    StartupPolicyOrder,
    SuccessPolicyOperator,
    TerminalState,
)
from jobset_controller.models.jobset import (
    Condition,
    FailurePolicy,
    JobSet,
    JobSetSpec,
    JobSetStatus,
    JobTemplate,
    Network,
    ObjectMeta,
    ReplicatedJob,
    ReplicatedJobStatus,
    StartupPolicy,
    SuccessPolicy,
    TemplateMetadata,
)
from jobset_controller.models.k8s import JobIdentity

__all__ = [
    "Condition",
    "ConditionStatus",
    "FailurePolicy",
    "JobConditionType",
    "JobIdentity",
    "JobSet",
    "JobSetConditionType",
    "JobSetSpec",
    "JobSetStatus",
    "JobTemplate",
    "Network",
    "ObjectMeta",
    "ReplicatedJob",
    "ReplicatedJobStatus",
    "StartupPolicy",
    "StartupPolicyOrder",
    "SuccessPolicy",
    "SuccessPolicyOperator",
    "TemplateMetadata",
    "TerminalState",
]
