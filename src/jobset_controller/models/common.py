"""Common enums and types used across models."""

from enum import Enum


class ConditionStatus(str, Enum):
    """Status of a condition, mirroring metav1.ConditionStatus."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class JobSetConditionType(str, Enum):
    """Condition types recorded on a JobSet.

    Completed and Failed are terminal and mutually exclusive. Once either is
    True the JobSet is finished and only TTL cleanup applies.
    """

    COMPLETED = "Completed"
    FAILED = "Failed"
    SUSPENDED = "Suspended"
    STARTUP_POLICY_COMPLETED = "StartupPolicyCompleted"


class JobConditionType(str, Enum):
    """Condition types found on batch/v1 Jobs."""

    COMPLETE = "Complete"
    FAILED = "Failed"
    SUSPENDED = "Suspended"
    FAILURE_TARGET = "FailureTarget"


class StartupPolicyOrder(str, Enum):
    """Order in which ReplicatedJobs are started."""

    ANY_ORDER = "AnyOrder"
    IN_ORDER = "InOrder"


class SuccessPolicyOperator(str, Enum):
    """How many target jobs must succeed for the JobSet to complete."""

    ALL = "All"
    ANY = "Any"


class TerminalState(str, Enum):
    """Final state of a finished JobSet."""

    COMPLETED = "Completed"
    FAILED = "Failed"
