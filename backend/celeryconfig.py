"""
Celery configuration for the snapshot gateway workers.

Loaded by `celery_app.config_from_object("celeryconfig")` in gateway/tasks/__init__.py.
Broker/result-backend URLs come from the same Settings as the API.
"""

from gateway.core.config import settings

# ═══════════════════════════════════════════════════════════
#  Broker & Result Backend
# ═══════════════════════════════════════════════════════════

broker_url = settings.CELERY_BROKER_URL
result_backend = settings.CELERY_RESULT_BACKEND

# ═══════════════════════════════════════════════════════════
#  Serialization — JSON only
# ═══════════════════════════════════════════════════════════

task_serializer = "json"
result_serializer = "json"
accept_content = ["json"]

# ═══════════════════════════════════════════════════════════
#  Timezone
# ═══════════════════════════════════════════════════════════

timezone = "UTC"
enable_utc = True

# ═══════════════════════════════════════════════════════════
#  Task Execution
# ═══════════════════════════════════════════════════════════

# A submission is processed once; a lost worker must not replay the
# backend call, so tasks are acknowledged on receipt.
task_acks_late = False

# One submission at a time per worker process
worker_prefetch_multiplier = 1

# Backend calls may take up to BACKEND_TIMEOUT_SECONDS, plus upload time
task_soft_time_limit = int(settings.BACKEND_TIMEOUT_SECONDS) + 300
task_time_limit = task_soft_time_limit + 60

# ═══════════════════════════════════════════════════════════
#  Result Expiry — auto-clean after 24h
# ═══════════════════════════════════════════════════════════

result_expires = 86400

# ═══════════════════════════════════════════════════════════
#  Worker Settings
# ═══════════════════════════════════════════════════════════

worker_max_tasks_per_child = 200

# Disable events by default (reduces Redis load)
# Enable with: celery -A gateway.tasks worker -E
worker_send_task_events = False
task_send_sent_event = False

# ═══════════════════════════════════════════════════════════
#  Task Routes
# ═══════════════════════════════════════════════════════════
# Run a dedicated worker for submissions:
#   celery -A gateway.tasks worker -Q submissions

task_routes = {
    "gateway.tasks.processing_tasks.*": {"queue": "submissions"},
}

task_default_queue = "default"
