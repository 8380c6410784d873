STATE_DIR_NAME = ".autom8"
TASKS_FILE = "tasks.yaml"
TASKS_LOCK_FILE = "tasks.lock"
PIDS_FILE = "pids.yaml"
PIDS_LOCK_FILE = "pids.lock"
CONFIG_FILE = "config.yaml"
WORKTREES_DIR = "worktrees"
LOGS_DIR = "logs"
WINDOWS_LOCK_BYTES = 4096

STORE_VERSION = 1

BRANCH_PREFIX = "autom8/"
TASK_ID_PREFIX = "task-"

TASK_STATUS_PENDING = "pending"
TASK_STATUS_IN_PROGRESS = "in-progress"
TASK_STATUS_COMPLETED = "completed"

TASK_STATUS_ORDER = (
    TASK_STATUS_PENDING,
    TASK_STATUS_IN_PROGRESS,
    TASK_STATUS_COMPLETED,
)

MODE_DETACHED = "detached"
MODE_ITERATIVE = "iterative"

COMPLETION_SENTINEL = "<promise>COMPLETE</promise>"
AGENT_LOG_FILE = "agent.log"

AUTO_COMMIT_MESSAGE = "autom8: auto-commit uncommitted changes"
MERGE_MESSAGE_TEMPLATE = "Merge {branch} (autom8 accept)"

DEFAULT_MAX_WORKERS = 4
DEFAULT_INSTANCES = 1
DEFAULT_BASELINE_BRANCH = "main"
DEFAULT_AGENT_COMMAND = "claude -p --dangerously-skip-permissions"
DEFAULT_JUDGE_COMMAND = "claude -p --output-format json"
DEFAULT_DIFF_CHAR_BUDGET = 20000
DEFAULT_LOG_LEVEL = "info"

DIFF_TRUNCATION_MARKER = "[... diff truncated ...]"
VERDICT_KEYWORD = "WINNER"
VERDICT_PROXIMITY_CHARS = 50
VERDICT_PROXIMITY_WORDS = ("winner", "best", "recommend")
