"""プロトコル上の制限値と定数"""

DEFAULT_REGION = "us-east-1"

MIN_PART_SIZE = 5 * 1024 * 1024  # 5MiB
MAX_PART_SIZE = 5 * 1024 * 1024 * 1024  # 5GiB
MAX_MULTIPART_COUNT = 10000
MAX_MULTIPART_OBJECT_SIZE = 5 * 1024 * 1024 * 1024 * 1024  # 5TiB

MAX_DELETE_BATCH = 1000
DEFAULT_MAX_KEYS = 1000

MIN_PRESIGN_EXPIRY = 1
MAX_PRESIGN_EXPIRY = 7 * 24 * 3600  # 7日

MAX_BUCKET_POLICY_SIZE = 12 * 1024

UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
UPLOAD_ID = "uploadId"

# サービスエラーコード
NO_SUCH_BUCKET = "NoSuchBucket"
NO_SUCH_BUCKET_MESSAGE = "Bucket does not exist"
NO_SUCH_BUCKET_POLICY = "NoSuchBucketPolicy"
NO_SUCH_OBJECT_LOCK_CONFIGURATION = "NoSuchObjectLockConfiguration"
OBJECT_LOCK_CONFIGURATION_NOT_FOUND = "ObjectLockConfigurationNotFoundError"
NO_SUCH_TAG_SET = "NoSuchTagSet"
SSE_CONFIGURATION_NOT_FOUND = "ServerSideEncryptionConfigurationNotFoundError"
RETRY_HEAD = "RetryHead"

LIBRARY_NAME = "s3-objstore"
LIBRARY_VERSION = "0.1.0"
