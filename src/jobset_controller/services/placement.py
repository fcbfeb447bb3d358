"""Exclusive placement of Jobs on topology domains.

A ReplicatedJob (or a whole JobSet) can ask for each of its Jobs to get a
topology domain (e.g. a rack or node pool) to itself by setting the
``alpha.jobset.sigs.k8s.io/exclusive-topology`` annotation to a node label
key. Group-level annotations, on the ReplicatedJob's job template, override
JobSet-level annotations.

Two mechanisms are supported:

- pod affinity/anti-affinity (default): pods of a Job attract each other and
  repel pods of other Jobs in the same scope, on the topology key;
- node selector (``alpha.jobset.sigs.k8s.io/node-selector: "true"``): pods are
  pinned to nodes an external agent labeled with the Job's namespaced name,
  and tolerate the taint those reserved nodes carry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from kubernetes import client

from jobset_controller.models.k8s import (
    EXCLUSIVE_KEY,
    JOB_KEY,
    JOBSET_NAME_KEY,
    NAMESPACED_JOB_KEY,
    NO_SCHEDULE_TAINT_KEY,
    NODE_SELECTOR_STRATEGY_KEY,
    REPLICATED_JOB_NAME_KEY,
    namespaced_job_name,
)

if TYPE_CHECKING:
    from kubernetes.client import V1Job, V1PodSpec

    from jobset_controller.models.jobset import JobSet, ReplicatedJob

logger = logging.getLogger(__name__)


class PlacementScope(str, Enum):
    """Which Jobs must not share a topology domain with each other."""

    REPLICATED_JOB = "replicated_job"  # only Jobs of the same ReplicatedJob
    JOBSET = "jobset"  # any two Jobs of the JobSet


@dataclass(frozen=True)
class PlacementRequest:
    """Resolved exclusive placement settings for one ReplicatedJob."""

    topology_key: str
    scope: PlacementScope
    node_selector_strategy: bool = False


def resolve_placement(js: JobSet, rjob: ReplicatedJob) -> PlacementRequest | None:
    """Resolve the exclusive placement request for a ReplicatedJob.

    Returns:
        The request, or None when no topology key is set at either level
        (the node-selector flag alone requests nothing)
    """
    group_annotations = rjob.template.metadata.annotations
    jobset_annotations = js.metadata.annotations

    if group_annotations.get(EXCLUSIVE_KEY):
        topology_key = group_annotations[EXCLUSIVE_KEY]
        scope = PlacementScope.REPLICATED_JOB
    elif jobset_annotations.get(EXCLUSIVE_KEY):
        topology_key = jobset_annotations[EXCLUSIVE_KEY]
        scope = PlacementScope.JOBSET
    else:
        return None

    strategy = group_annotations.get(
        NODE_SELECTOR_STRATEGY_KEY, jobset_annotations.get(NODE_SELECTOR_STRATEGY_KEY)
    )
    return PlacementRequest(
        topology_key=topology_key,
        scope=scope,
        node_selector_strategy=strategy == "true",
    )


def apply_placement(
    job: V1Job,
    request: PlacementRequest | None,
    jobset_name: str,
    replicated_job_name: str,
) -> None:
    """Inject the placement constraints of ``request`` into ``job`` in place.

    The placement annotations are copied onto the Job and its pod template so
    the choice is visible on every pod. The Job's pod template must already
    carry its job key label.
    """
    if request is None:
        return

    annotations = {EXCLUSIVE_KEY: request.topology_key}
    if request.node_selector_strategy:
        annotations[NODE_SELECTOR_STRATEGY_KEY] = "true"

    pod_template = job.spec.template
    job.metadata.annotations = {**(job.metadata.annotations or {}), **annotations}
    pod_template.metadata.annotations = {
        **(pod_template.metadata.annotations or {}),
        **annotations,
    }

    if request.node_selector_strategy:
        _add_node_selector(pod_template.spec, job.metadata.namespace, job.metadata.name)
    else:
        job_key = (pod_template.metadata.labels or {})[JOB_KEY]
        _add_exclusive_affinities(
            pod_template.spec, request, job_key, jobset_name, replicated_job_name
        )

    logger.debug(
        "Applied exclusive placement to job %s: topology=%s scope=%s node_selector=%s",
        job.metadata.name,
        request.topology_key,
        request.scope.value,
        request.node_selector_strategy,
    )


def _add_node_selector(pod_spec: V1PodSpec, namespace: str, job_name: str) -> None:
    pod_spec.node_selector = {
        **(pod_spec.node_selector or {}),
        NAMESPACED_JOB_KEY: namespaced_job_name(namespace, job_name),
    }
    tolerations = list(pod_spec.tolerations or [])
    tolerations.append(
        client.V1Toleration(
            key=NO_SCHEDULE_TAINT_KEY,
            operator="Exists",
            effect="NoSchedule",
        )
    )
    pod_spec.tolerations = tolerations


def _add_exclusive_affinities(
    pod_spec: V1PodSpec,
    request: PlacementRequest,
    job_key: str,
    jobset_name: str,
    replicated_job_name: str,
) -> None:
    # Pods of this Job share one domain
    affinity_term = client.V1PodAffinityTerm(
        label_selector=client.V1LabelSelector(
            match_expressions=[
                client.V1LabelSelectorRequirement(key=JOB_KEY, operator="In", values=[job_key]),
            ]
        ),
        topology_key=request.topology_key,
    )

    # ... and keep every other Job in scope out of it
    scope_expressions = [
        client.V1LabelSelectorRequirement(key=JOB_KEY, operator="Exists"),
        client.V1LabelSelectorRequirement(key=JOB_KEY, operator="NotIn", values=[job_key]),
        client.V1LabelSelectorRequirement(
            key=JOBSET_NAME_KEY, operator="In", values=[jobset_name]
        ),
    ]
    if request.scope == PlacementScope.REPLICATED_JOB:
        scope_expressions.append(
            client.V1LabelSelectorRequirement(
                key=REPLICATED_JOB_NAME_KEY, operator="In", values=[replicated_job_name]
            )
        )
    anti_affinity_term = client.V1PodAffinityTerm(
        label_selector=client.V1LabelSelector(match_expressions=scope_expressions),
        topology_key=request.topology_key,
    )

    affinity = pod_spec.affinity or client.V1Affinity()
    if affinity.pod_affinity is None:
        affinity.pod_affinity = client.V1PodAffinity()
    if affinity.pod_anti_affinity is None:
        affinity.pod_anti_affinity = client.V1PodAntiAffinity()

    affinity.pod_affinity.required_during_scheduling_ignored_during_execution = [
        *(affinity.pod_affinity.required_during_scheduling_ignored_during_execution or []),
        affinity_term,
    ]
    affinity.pod_anti_affinity.required_during_scheduling_ignored_during_execution = [
        *(affinity.pod_anti_affinity.required_during_scheduling_ignored_during_execution or []),
        anti_affinity_term,
    ]
    pod_spec.affinity = affinity
