from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]  # repo_root/cacher/constants.py -> repo_root

DATA_DIR = PROJECT_ROOT / "data"
CERTS_DIR = DATA_DIR / "certs"
LOG_DIR = DATA_DIR / "logs"

EVENTS_LOG = LOG_DIR / "events.jsonl"

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
CLIENT_SCRIPT = "getCacher.sh"

ENV_FILE = PROJECT_ROOT / ".env"
