"""
Shared Configuration for the task tracker.

Centralizes paths, database locations, guild/channel IDs, and
environment variable overrides so the bot, the CLI and the scripts
resolve the same files without hardcoded relative paths.

On Railway:
    Set DATA_DIR env var to point at the persistent volume mount.
    e.g. DATA_DIR=/data  (Railway volume mounted at /data)

Locally:
    Defaults to data/ relative to the project root.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# Directory layout
# ---------------------------------------------------------------------------

# Root of the repo (parent of common/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Persistent data directory - override via env var for Railway volumes
DATA_DIR = Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT / "data")))

# Ensure data directory exists on startup
DATA_DIR.mkdir(parents=True, exist_ok=True)

# ---------------------------------------------------------------------------
# Storage paths
# ---------------------------------------------------------------------------

# Raw Discord messages + filtered metric snapshots
MESSAGES_DB_PATH = DATA_DIR / "discord_messages.db"

# Evaluation log + error log
TRACKER_DB_PATH = DATA_DIR / "tracker.db"

# Last-sent timestamps per (user, task, requirement, channel kind)
NOTIFICATION_HISTORY_PATH = DATA_DIR / "notification_history.json"

# Task groups and requirement definitions (edited by the task UI)
TASKS_PATH = Path(os.environ.get("TASKS_PATH", str(DATA_DIR / "tasks.json")))
REQUIREMENTS_PATH = Path(os.environ.get("REQUIREMENTS_PATH", str(DATA_DIR / "requirements.json")))

# ---------------------------------------------------------------------------
# Discord server identity
# ---------------------------------------------------------------------------

GUILD_ID = os.environ.get("GUILD_ID", "")

# Channel whose history is tracked. If the id is empty the channel is
# looked up by name in the guild.
MONITORED_CHANNEL_ID = os.environ.get("MONITORED_CHANNEL_ID", "")
MONITORED_CHANNEL_NAME = os.environ.get("MONITORED_CHANNEL_NAME", "general")

# Tool identifier a task must list to be tracked from this source
MONITORED_TOOL = os.environ.get("MONITORED_TOOL", "discord.com")

# ---------------------------------------------------------------------------
# Tracker behaviour
# ---------------------------------------------------------------------------

TRACK_INTERVAL_SECONDS = float(os.environ.get("TRACK_INTERVAL_SECONDS", "60"))

# Minimum gap between two notifications for the same (user, task, requirement)
NOTIFY_THROTTLE_SECONDS = float(os.environ.get("NOTIFY_THROTTLE_SECONDS", "60"))

EVALUATION_LOG_CAP = 1000
ERROR_LOG_CAP = 100

# Filtered-metric snapshots kept in the message store (latest only by default)
FILTERED_SNAPSHOT_CAP = int(os.environ.get("FILTERED_SNAPSHOT_CAP", "1"))

# Who receives coaching DMs when a task has no assignee
NOTIFY_USER_ID = os.environ.get("NOTIFY_USER_ID", "")

# Excellence announcements in a public channel (off: DM-only delivery)
CHANNEL_ANNOUNCEMENTS_ENABLED = os.environ.get("CHANNEL_ANNOUNCEMENTS_ENABLED", "false").lower() == "true"
ANNOUNCE_CHANNEL_ID = os.environ.get("ANNOUNCE_CHANNEL_ID", "")

# Start the tracker as soon as the bot comes online
TRACKER_AUTOSTART = os.environ.get("TRACKER_AUTOSTART", "true").lower() == "true"

# ---------------------------------------------------------------------------
# Evaluator (Claude)
# ---------------------------------------------------------------------------

CLAUDE_MODEL = os.environ.get("CLAUDE_MODEL", "claude-sonnet-4-5")
EVALUATOR_MAX_TOKENS = 300
EVALUATOR_TEMPERATURE = 0.4

# Upper bounds on collaborator calls (seconds)
EVALUATOR_TIMEOUT = float(os.environ.get("EVALUATOR_TIMEOUT", "60"))
SEND_TIMEOUT = float(os.environ.get("SEND_TIMEOUT", "30"))

# ---------------------------------------------------------------------------
# SQLite pragmas applied to every connection
# ---------------------------------------------------------------------------
# WAL mode allows concurrent readers + one writer without blocking.
# busy_timeout tells SQLite to wait up to N ms if the db is locked
# instead of immediately raising OperationalError.
SQLITE_PRAGMAS = {
    "journal_mode": "WAL",
    "busy_timeout": "5000",
    "synchronous": "NORMAL",     # safe with WAL, faster than FULL
    "foreign_keys": "ON",
}
