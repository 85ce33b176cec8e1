from .settings import settings

# Basic Celery Configuration
broker_url = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
result_backend = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# Task Discovery
include = ["voter_portal.tasks"]

# Timezone Configuration
timezone = "Asia/Kolkata"
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 5 * 60  # 5 minutes
task_soft_time_limit = 4 * 60  # 4 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Task Retry Configuration
task_acks_late = True
task_reject_on_worker_lost = True
task_default_retry_delay = 2  # seconds, doubled on every retry
task_max_retries = 3

# Exponential Backoff Settings
task_retry_backoff = True
task_retry_backoff_max = 60
task_retry_jitter = False

# Default Queue
task_default_queue = "voterportal"

# Publishing happens inside request handlers; give up quickly when Redis is down
broker_connection_timeout = 3
task_publish_retry_policy = {
    "max_retries": 2,
    "interval_start": 0,
    "interval_step": 0.5,
    "interval_max": 1,
}
