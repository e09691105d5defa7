"""InfraGraph constants and configuration values.

This module centralizes defaults and vocabularies shared by the
discovery adapters, the recorder and the monitor.
"""

import re

# Scheduling presets, in seconds
SCHEDULE_PRESETS = {
    "5min": 5 * 60,
    "15min": 15 * 60,
    "hourly": 60 * 60,
    "daily": 24 * 60 * 60,
}

DEFAULT_SYNC_INTERVAL = SCHEDULE_PRESETS["hourly"]
DEFAULT_ALERT_COOLDOWN = 30 * 60  # 30 minutes
DEFAULT_MAX_ALERTS_PER_CYCLE = 50
DEFAULT_ALERT_HISTORY_SIZE = 1000

# Relationship inference
DEFAULT_EDGE_CONFIDENCE = 0.95

# Fields compared when a known node is re-observed
DIFFED_NODE_FIELDS = ("name", "status", "region", "owner", "cost_monthly", "tags", "metadata")

# Tag keys that name the owner of a resource, in priority order
OWNER_TAG_KEYS = ("Owner", "owner", "Team", "team")

# Workload classification
GPU_INSTANCE_PATTERN = re.compile(r"^(p[3-5]|g[4-6]|inf[12]|trn[12]|dl[12])")
AI_SERVICE_PREFIXES = ("sagemaker", "bedrock", "comprehend", "rekognition", "textract", "forecast")

# Cost sources recorded in node metadata
COST_SOURCE_PRICING_TABLE = "pricing-table"
COST_SOURCE_STATIC = "static-estimate"

# Names of the reverse relationship emitted for bidirectional rules
REVERSE_RELATIONSHIPS = {
    "runs-in": "contains",
    "contains": "runs-in",
    "secured-by": "secures",
    "secures": "secured-by",
    "uses": "used-by",
    "used-by": "uses",
    "routes-to": "receives-from",
    "receives-from": "routes-to",
    "triggers": "triggered-by",
    "triggered-by": "triggers",
    "publishes-to": "subscribes-to",
    "subscribes-to": "publishes-to",
    "depends-on": "depended-on-by",
    "depended-on-by": "depends-on",
    "replicates": "replicated-by",
    "replicated-by": "replicates",
    "backs-up": "backed-up-by",
    "backed-up-by": "backs-up",
    # symmetric
    "attached-to": "attached-to",
    "connected-to": "connected-to",
    "connects-via": "connects-via",
    "peers-with": "peers-with",
}

# Audit-event verbs used to categorize mutating events
CREATE_VERBS = ("create", "run", "launch", "insert")
DELETE_VERBS = ("delete", "terminate", "remove")
READ_ONLY_VERBS = ("get", "list", "describe", "lookup", "head", "read")

# Actor patterns that identify a service principal rather than a person
SERVICE_PRINCIPAL_PATTERNS = (
    re.compile(r"\.amazonaws\.com$"),
    re.compile(r"\.gserviceaccount\.com$"),
    re.compile(r"^AWSService"),
    re.compile(r"^service-\d+@"),
)
