"""CRD schema constants and helpers."""

# CRD Group, Version, and Kind
GROUP = "noobaa.io"
VERSION = "v1alpha1"
PLURAL = "noobaas"
KIND = "NooBaa"

# API version string
API_VERSION = f"{GROUP}/{VERSION}"

# Status phases
PHASE_VERIFYING = "Verifying"
PHASE_CREATING = "Creating"
PHASE_WAITING_TO_CONNECT = "WaitingToConnect"
PHASE_CONFIGURING = "Configuring"
PHASE_READY = "Ready"
PHASE_REJECTED = "Rejected"

# Condition types and statuses
CONDITION_AVAILABLE = "Available"
CONDITION_PROGRESSING = "Progressing"
CONDITION_DEGRADED = "Degraded"
CONDITION_UPGRADEABLE = "Upgradeable"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

# Default core image, split the same way image references are parsed
CONTAINER_IMAGE_ORG = "noobaa"
CONTAINER_IMAGE_REPO = "noobaa-core"
CONTAINER_IMAGE_TAG = "5"
CONTAINER_IMAGE_NAME = f"{CONTAINER_IMAGE_ORG}/{CONTAINER_IMAGE_REPO}"
CONTAINER_IMAGE = f"{CONTAINER_IMAGE_NAME}:{CONTAINER_IMAGE_TAG}"

# Supported core versions: >= MIN and < MAX (major versions)
CONTAINER_IMAGE_MIN_VERSION = (5,)
CONTAINER_IMAGE_MAX_VERSION = (6,)
CONTAINER_IMAGE_CONSTRAINT = ">=5, <6"

MONGO_IMAGE = "centos/mongodb-36-centos7"

# Placeholders in the baseline workload, replaced during reconcile
NOOBAA_IMAGE_PLACEHOLDER = "NOOBAA_IMAGE"
MONGO_IMAGE_PLACEHOLDER = "MONGO_IMAGE"

# Default email used for the operator and admin accounts
ADMIN_ACCOUNT_EMAIL = "admin@noobaa.io"

# Named service ports used for address discovery
MGMT_HTTPS_PORT = "mgmt-https"
S3_HTTPS_PORT = "s3-https"

# Event reasons
EVENT_BAD_IMAGE = "BadImage"
EVENT_CUSTOM_IMAGE = "CustomImage"
EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

# Fixed delay before a transient failure is retried (seconds)
RETRY_DELAY = 2
