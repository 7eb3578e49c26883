"""Configuration settings for the node specific sizing webhook."""

# Annotation settings
ANNOTATION_PREFIX = "node-specific-sizing.manomano.tech/"
EXCLUDE_CONTAINERS_ANNOTATION = ANNOTATION_PREFIX + "exclude-containers"
STATUS_ANNOTATION = ANNOTATION_PREFIX + "status"

# Node capacity field used as the sizing base ("allocatable" or "capacity")
DEFAULT_CAPACITY_SOURCE = "allocatable"
CAPACITY_SOURCES = ("allocatable", "capacity")

# Watch settings
WATCH_TIMEOUT_SECONDS = 300
WATCH_RETRY_SECONDS = 5

# Webhook server settings
WEBHOOK_PORT = 8443
TLS_CERT_FILE = "/tmp/k8s-webhook-server/serving-certs/tls.crt"
TLS_KEY_FILE = "/tmp/k8s-webhook-server/serving-certs/tls.key"

# Rendering: quantities at or below this many milli-units are rendered as "<n>m"
MILLI_RENDER_THRESHOLD = 10_000
