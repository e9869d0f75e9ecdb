"""System constants and default values."""

# Job lifecycle
STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
# Older rows written by the first sync-worker still use 'running'
LEGACY_STATUS_RUNNING = "running"

JOB_STATUSES = [STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_FAILED]

# Job types
JOB_TYPE_DEEP_SYNC = "deep_sync"
JOB_TYPE_ETORO_PROFILE = "etoro_profile"
DEFAULT_JOB_TYPE = JOB_TYPE_DEEP_SYNC

# Table names
TRADERS_TABLE = "traders"
ASSETS_TABLE = "assets"
HOLDINGS_TABLE = "trader_holdings"
TRADES_TABLE = "trades"
POSTS_TABLE = "posts"
SYNC_JOBS_TABLE = "sync_jobs"
DOMAIN_STATUS_TABLE = "sync_domain_status"
SYNC_LOGS_TABLE = "sync_logs"
JOB_EXECUTIONS_TABLE = "job_executions"

# Domain locks
DISPATCH_LOCK_DOMAIN = "dispatch_sync_jobs"
DEFAULT_LOCK_DOMAINS = ["discussion_feed", "trader_profiles", "stock_data", DISPATCH_LOCK_DOMAIN]
DOMAIN_IDLE = "idle"
DOMAIN_RUNNING = "running"
DOMAIN_ERROR = "error"

# Dispatch (Bullaware allows 10 req/min, so one job every 6 seconds)
DEFAULT_DISPATCH_BATCH_SIZE = 10
DEFAULT_DELAY_BETWEEN_JOBS_SECONDS = 6.0
DEFAULT_MAX_CONCURRENCY = 1
DEFAULT_INVOKE_TIMEOUT_SECONDS = 120
DEFAULT_LOCK_TTL_MINUTES = 5
DEFAULT_STUCK_JOB_MINUTES = 10

# Processing
DEFAULT_MAX_RETRIES = 5
MAX_ERROR_MESSAGE_LENGTH = 500
TRANSIENT_STATUS_CODES = {408, 425, 429}
TRANSIENT_MESSAGE_MARKERS = [
    "timeout",
    "timed out",
    "econnreset",
    "etimedout",
    "network",
    "fetch failed",
    "cloudflare",
]

# Enqueue
DEFAULT_HOURS_STALE = 6
DEFAULT_HOURS_ACTIVE = 7 * 24
DEFAULT_ENQUEUE_BATCH_SIZE = 500
FORCE_MODE_OLD_JOB_HOURS = 24
SUPABASE_PAGE_SIZE = 1000

# Queue maintenance
DEFAULT_FORCE_MAX_ITERATIONS = 100
DEFAULT_FORCE_DELAY_SECONDS = 2.0
FORCE_REQUEUE_MAX_RETRY_COUNT = 3

# External APIs
BULLAWARE_BASE_URL = "https://api.bullaware.com/v1"
DEFAULT_BULLAWARE_RATE_LIMIT_DELAY_SECONDS = 6.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 30
ETORO_PROFILE_TIMEOUT_SECONDS = 15
TRADES_PER_SYNC = 10

# Function names (paths under /functions/v1/)
FUNCTION_ENQUEUE = "enqueue-sync-jobs"
FUNCTION_DISPATCH = "dispatch-sync-jobs"
FUNCTION_PROCESS = "process-sync-job"
FUNCTION_FORCE_PROCESS = "force-process-queue"
FUNCTION_CLEAR_LOCKS = "clear-stale-locks"
FUNCTION_INSPECT = "inspect-sync-jobs"
FUNCTION_SYNC_TRADERS = "sync-traders"

# Logging configuration
LOG_FILE = "logs/app.log"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_TIMEZONE = "America/Vancouver"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Version information
VERSION = "1.0.0"

# Repository configuration
DEFAULT_REPOSITORY_TYPE = "supabase"
