from enum import Enum, StrEnum


class Environment(str, Enum):
    """Environment profiles."""

    LOCAL = "local"
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class AdmissionState(StrEnum):
    """Source of an admission decision."""

    FRESH = "fresh"
    UNLIMITED = "unlimited"
    OLD = "old"
    NOTFOUND = "notfound"


UNLIMITED_PARALLELISM = "unlimited"

SECRET_ISSUER = "kubernetes-event-jobs/provisioner"
MANAGED_BY = "kubernetes-event-jobs"
JOB_GROUP = "kubernetes-event-jobs"
