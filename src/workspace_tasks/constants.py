STATE_DIR_NAME = ".workspace_tasks"
CONFIG_FILE = "config.yaml"
WORKSPACES_DIR = "workspaces"
TASKS_FILE = "tasks.yaml"
TASKS_LOCK_FILE = "tasks.lock"
EVENTS_FILE = "task_events.jsonl"
ARTIFACTS_DIR = "artifacts"

STORE_FORMAT_VERSION = 1
LOCK_TIMEOUT_SECONDS = 30

ENV_STATE_DIR = "WORKSPACE_TASKS_STATE_DIR"
ENV_LOG_LEVEL = "WORKSPACE_TASKS_LOG_LEVEL"

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_STORAGE_BACKEND = "yaml"
STORAGE_BACKENDS = {"yaml", "memory"}

PROGRESS_MIN = 0
PROGRESS_MAX = 100
TITLE_MAX_LENGTH = 500
