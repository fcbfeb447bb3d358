"""Exception hierarchy for the JobSet controller."""


class JobSetError(Exception):
    """Base class for controller errors."""


class TemplatingError(JobSetError):
    """A ReplicatedJob template cannot be turned into a valid Job.

    Not retried until the JobSet spec changes.
    """


class JobSetStateError(JobSetError):
    """An operation was invoked outside its precondition.

    For example, asking for the remaining TTL of a JobSet that has not
    finished.
    """


class StoreError(JobSetError):
    """A call to the Kubernetes API failed; retried on the next pass."""


class ConflictError(StoreError):
    """A write was rejected because the object changed since it was read."""
