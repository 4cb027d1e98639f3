"""
Configuration settings for the staged index shard output.
"""

# Job configuration keys read by the record writer
CORE_PATH_KEY = 'shard_output.index.corePath'
SINK_FIELDS_KEY = 'shard_output.index.sinkFields'
MAX_SEGMENTS_KEY = 'shard_output.index.maxSegments'
DATA_DIR_PROPERTY_NAME_KEY = 'shard_output.index.dataDirPropertyName'
HEARTBEAT_INTERVAL_KEY = 'shard_output.index.heartbeatInterval'
COMMIT_INTERVAL_KEY = 'shard_output.index.commitInterval'

# Job framework keys
OUTPUT_DIR_KEY = 'shard_output.job.outputDir'

# Local staging keys
LOCAL_TMP_DIR_KEY = 'shard_output.local.tmpDir'
KEEP_WORKSPACE_KEY = 'shard_output.local.keepWorkspace'

# AWS keys
AWS_REGION_KEY = 'shard_output.aws.region'
AWS_ENDPOINT_URL_KEY = 'shard_output.aws.endpointUrl'

# Index build settings
DEFAULT_MAX_SEGMENTS = 10
DEFAULT_COMMIT_INTERVAL = 1000  # documents between intermediate commits
DEFAULT_DATA_DIR_PROPERTY_NAME = 'index.data.dir'

# Heartbeat settings
HEARTBEAT_INTERVAL = 10  # seconds between keep-alive calls during stage-out

# AWS region
AWS_REGION = 'us-east-1'

# Directory layout
WORKSPACE_PREFIX = 'shard_output-'
DATA_DIR_NAME = 'data'        # <workspace>/data
INDEX_DIR_NAME = 'index'      # <workspace>/data/index and <task output>/index
SCHEMA_DIR_NAME = 'conf'      # <core>/conf holds the template schema index
CORE_CONFIG_NAME = 'core.json'

# Shared storage markers
CHECKSUM_SUFFIX = '.crc'
SUCCESS_MARKER = '_SUCCESS'

# Index engine files
WRITE_LOCK_SUFFIX = '_WRITELOCK'  # Whoosh writer lock, e.g. MAIN_WRITELOCK
