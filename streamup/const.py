"""Constants shared across streamup."""

import os

BYTES_PER_MIB = 1024 * 1024
BYTES_PER_GIB = 1024 * BYTES_PER_MIB

# Part sizing aims for this many parts per upload.
TARGET_PARTS = 1000

# S3 multipart limits (also used by R2, B2 and stock MinIO).
S3_MIN_PART_SIZE = 5 * BYTES_PER_MIB
S3_MAX_PART_SIZE = 5 * BYTES_PER_GIB
S3_MAX_PARTS = 10000

DEFAULT_WORKERS = 4
DEFAULT_QUEUE_DEPTH = 10

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_MAX_RETRY_DELAY_MS = 30000
DEFAULT_RETRY_MULTIPLIER = 2

DEFAULT_CHECKSUM_ALGORITHM = "md5"

DEFAULT_DOWNLOAD_READ_SIZE = 1024 * 1024
DEFAULT_LIST_MAX_KEYS = 1000

DEFAULT_REGION = "us-east-1"
R2_REGION = "auto"
R2_ENDPOINT_TEMPLATE = "https://{account_id}.r2.cloudflarestorage.com"

# Log every Nth part at INFO; the rest go to DEBUG.
PART_LOG_INTERVAL = int(os.getenv("STREAMUP_PART_LOG_INTERVAL", "100"))

MAX_OBJECT_KEY_BYTES = 1024
MAX_METADATA_KEY_CHARS = 128
MAX_METADATA_VALUE_CHARS = 256
