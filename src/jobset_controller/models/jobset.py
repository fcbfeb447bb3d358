"""JobSet custom resource models.

The models follow the ``jobset.x-k8s.io/v1alpha2`` wire format: fields are
snake_case in Python and camelCase on the wire (via aliases), so a custom
object returned by the Kubernetes API can be validated directly with
``JobSet.model_validate(obj)`` and written back with
``job_set.model_dump(by_alias=True, mode="json", exclude_none=True)``.

Job templates are held as kubernetes client models (``V1JobSpec``) so every
batch/v1 field a user sets reaches the constructed Jobs.
"""

import re
from datetime import date, datetime
from functools import lru_cache
from typing import Any

from kubernetes import client
from kubernetes.client import ApiClient, V1JobSpec, V1PodTemplateSpec
from pydantic import BaseModel, Field, TypeAdapter, field_serializer, field_validator

from jobset_controller.models.common import (
    ConditionStatus,
    JobSetConditionType,
    StartupPolicyOrder,
    SuccessPolicyOperator,
)

API_VERSION = "jobset.x-k8s.io/v1alpha2"
KIND = "JobSet"

_LIST_TYPE = re.compile(r"^list\[(.+)\]$")
_DICT_TYPE = re.compile(r"^dict\(([^,]+), (.+)\)$")
_NATIVE_TYPES = {"str": str, "int": int, "float": float, "bool": bool}
_TEMPORAL_TYPES = {"datetime": TypeAdapter(datetime), "date": TypeAdapter(date)}


@lru_cache
def _api_client() -> ApiClient:
    return ApiClient()


def from_wire(data: Any, type_name: str) -> Any:
    """Build a kubernetes client value from its camelCase wire form.

    ``type_name`` is written the way the generated models declare their
    ``openapi_types``: ``"V1PodSpec"``, ``"list[V1Container]"``,
    ``"dict(str, str)"``, ``"datetime"`` or ``"object"``. Unknown keys are
    dropped.

    Raises:
        ValueError: If the payload does not fit the type
    """
    if data is None:
        return None

    list_match = _LIST_TYPE.match(type_name)
    if list_match:
        if not isinstance(data, list):
            raise ValueError(f"expected a list for {type_name}, got {type(data).__name__}")
        return [from_wire(item, list_match.group(1)) for item in data]

    dict_match = _DICT_TYPE.match(type_name)
    if dict_match:
        if not isinstance(data, dict):
            raise ValueError(f"expected a map for {type_name}, got {type(data).__name__}")
        return {key: from_wire(value, dict_match.group(2)) for key, value in data.items()}

    if type_name == "object":
        return data
    if type_name in _NATIVE_TYPES:
        return _NATIVE_TYPES[type_name](data)
    if type_name in _TEMPORAL_TYPES:
        return _TEMPORAL_TYPES[type_name].validate_python(data)

    klass = getattr(client, type_name, None)
    if klass is None:
        raise ValueError(f"unknown kubernetes model {type_name}")
    if not isinstance(data, dict):
        raise ValueError(f"expected an object for {type_name}, got {type(data).__name__}")
    kwargs = {}
    for attr, attr_type in klass.openapi_types.items():
        key = klass.attribute_map[attr]
        if key in data:
            kwargs[attr] = from_wire(data[key], attr_type)
    return klass(**kwargs)


def to_wire(obj: Any) -> Any:
    """Serialize a kubernetes client model into its camelCase wire form."""
    return _api_client().sanitize_for_serialization(obj)


def default_job_spec() -> V1JobSpec:
    return V1JobSpec(template=V1PodTemplateSpec())


class ObjectMeta(BaseModel):
    """Subset of metav1.ObjectMeta the controller reads and writes."""

    name: str
    namespace: str = "default"
    uid: str | None = None
    resource_version: str | None = Field(default=None, alias="resourceVersion")
    generation: int | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    creation_timestamp: datetime | None = Field(default=None, alias="creationTimestamp")
    deletion_timestamp: datetime | None = Field(default=None, alias="deletionTimestamp")

    class Config:
        populate_by_name = True


class TemplateMetadata(BaseModel):
    """Labels and annotations of a ReplicatedJob's job template."""

    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class JobTemplate(BaseModel):
    """Job template embedded in a ReplicatedJob.

    ``spec`` is a kubernetes client ``V1JobSpec``; constructed Jobs embed a
    deep copy of it.
    """

    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)
    spec: V1JobSpec = Field(default_factory=default_job_spec)

    class Config:
        arbitrary_types_allowed = True

    @field_validator("spec", mode="before")
    @classmethod
    def _parse_spec(cls, value: Any) -> Any:
        if isinstance(value, dict):
            # template is required by V1JobSpec; a bare template is still valid here
            return from_wire({**value, "template": value.get("template") or {}}, "V1JobSpec")
        return value

    @field_serializer("spec")
    def _serialize_spec(self, value: V1JobSpec) -> Any:
        return to_wire(value)


class ReplicatedJob(BaseModel):
    """A named group of identical Jobs within a JobSet.

    Attributes:
        name: Name of the group, unique within the JobSet
        replicas: Number of Jobs to create from the template
        template: Job template each replica is built from
    """

    name: str
    replicas: int = Field(default=1, ge=0)
    template: JobTemplate = Field(default_factory=JobTemplate)


class Network(BaseModel):
    """Network identity options for the pods of a JobSet."""

    enable_dns_hostnames: bool | None = Field(default=None, alias="enableDNSHostnames")
    subdomain: str | None = None

    class Config:
        populate_by_name = True


class SuccessPolicy(BaseModel):
    """Which Jobs must succeed for the JobSet to be marked Completed.

    An empty ``target_replicated_jobs`` list targets every ReplicatedJob.
    """

    operator: SuccessPolicyOperator = SuccessPolicyOperator.ALL
    target_replicated_jobs: list[str] = Field(default_factory=list, alias="targetReplicatedJobs")

    class Config:
        populate_by_name = True


class FailurePolicy(BaseModel):
    """How many times the JobSet is restarted after a child Job fails."""

    max_restarts: int = Field(default=0, ge=0, alias="maxRestarts")

    class Config:
        populate_by_name = True


class StartupPolicy(BaseModel):
    """Order in which ReplicatedJobs are started."""

    startup_policy_order: StartupPolicyOrder = Field(
        default=StartupPolicyOrder.ANY_ORDER, alias="startupPolicyOrder"
    )

    class Config:
        populate_by_name = True


class JobSetSpec(BaseModel):
    """Desired state of a JobSet."""

    replicated_jobs: list[ReplicatedJob] = Field(default_factory=list, alias="replicatedJobs")
    network: Network | None = None
    success_policy: SuccessPolicy | None = Field(default=None, alias="successPolicy")
    failure_policy: FailurePolicy | None = Field(default=None, alias="failurePolicy")
    startup_policy: StartupPolicy | None = Field(default=None, alias="startupPolicy")
    suspend: bool | None = None
    ttl_seconds_after_finished: int | None = Field(
        default=None, ge=0, alias="ttlSecondsAfterFinished"
    )

    class Config:
        populate_by_name = True


class Condition(BaseModel):
    """A typed, timestamped status flag (metav1.Condition).

    ``type`` is a plain string so conditions written by other controllers
    round-trip untouched; the controller's own types are in
    ``JobSetConditionType``.
    """

    type: str = ""
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = Field(default=None, alias="lastTransitionTime")

    class Config:
        populate_by_name = True

    def is_true(self) -> bool:
        return self.status == ConditionStatus.TRUE


class ReplicatedJobStatus(BaseModel):
    """Per-ReplicatedJob counters, recomputed from scratch every pass."""

    name: str
    ready: int = 0
    succeeded: int = 0
    failed: int = 0
    active: int = 0
    suspended: int = 0


class JobSetStatus(BaseModel):
    """Observed state of a JobSet."""

    conditions: list[Condition] = Field(default_factory=list)
    restarts: int = 0
    replicated_jobs_status: list[ReplicatedJobStatus] = Field(
        default_factory=list, alias="replicatedJobsStatus"
    )
    terminal_state: str | None = Field(default=None, alias="terminalState")

    class Config:
        populate_by_name = True


class JobSet(BaseModel):
    """A JobSet custom resource.

    Example:
        ```python
        js = JobSet(
            metadata=ObjectMeta(name="trainer", namespace="default"),
            spec=JobSetSpec(
                replicated_jobs=[ReplicatedJob(name="workers", replicas=4)],
            ),
        )
        ```
    """

    api_version: str = Field(default=API_VERSION, alias="apiVersion")
    kind: str = KIND
    metadata: ObjectMeta
    spec: JobSetSpec = Field(default_factory=JobSetSpec)
    status: JobSetStatus = Field(default_factory=JobSetStatus)

    class Config:
        populate_by_name = True

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def suspended(self) -> bool:
        return bool(self.spec.suspend)

    def find_condition(self, condition_type: str | JobSetConditionType) -> Condition | None:
        """Return the condition of the given type, if recorded."""
        wanted = (
            condition_type.value
            if isinstance(condition_type, JobSetConditionType)
            else condition_type
        )
        for condition in self.status.conditions:
            if condition.type == wanted:
                return condition
        return None

    def has_true_condition(self, condition_type: JobSetConditionType) -> bool:
        condition = self.find_condition(condition_type)
        return condition is not None and condition.is_true()

    @property
    def finished(self) -> bool:
        """Whether a terminal Completed or Failed condition is True."""
        return self.has_true_condition(JobSetConditionType.COMPLETED) or self.has_true_condition(
            JobSetConditionType.FAILED
        )
