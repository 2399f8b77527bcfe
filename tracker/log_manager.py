"""
Evaluation Log
Capped, newest-first record of evaluation outcomes and tracker errors,
persisted in the tracker database (see common/tracker_db.py).
"""

import logging
from pathlib import Path
from typing import List, Optional

from common import tracker_db
from common.config import EVALUATION_LOG_CAP, ERROR_LOG_CAP, TRACKER_DB_PATH
from common.models import EvaluationResult, LogEntry, ErrorLogEntry, Level, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


def _to_log_entry(row: dict) -> LogEntry:
    return LogEntry(
        id=row['id'],
        timestamp=parse_timestamp(row['timestamp']),
        task_id=row['task_id'],
        requirement_id=row['requirement_id'],
        level=Level.parse(row['level']),
        message=row['message'],
        proof=row['proof'],
        message_sent=bool(row['message_sent']),
    )


def _to_error_entry(row: dict) -> ErrorLogEntry:
    return ErrorLogEntry(
        id=row['id'],
        timestamp=parse_timestamp(row['timestamp']),
        source=row['source'],
        message=row['message'],
    )


class LogManager:
    def __init__(self, db_path: Path = None, evaluation_cap: int = EVALUATION_LOG_CAP,
                 error_cap: int = ERROR_LOG_CAP):
        self.db_path = Path(db_path or TRACKER_DB_PATH)
        self.evaluation_cap = evaluation_cap
        self.error_cap = error_cap

    def init_database(self):
        tracker_db.init_tracker_db(self.db_path)

    def log(self, result: EvaluationResult) -> LogEntry:
        """Prepend an evaluation and drop entries past the cap."""
        timestamp = utcnow()
        row_id = tracker_db.insert_evaluation(
            timestamp=timestamp.isoformat(),
            task_id=result.task_id,
            requirement_id=result.requirement_id,
            level=result.level.value,
            message=result.message,
            proof=result.proof,
            message_sent=result.should_notify,
            cap=self.evaluation_cap,
            db_path=self.db_path,
        )
        return LogEntry(
            id=row_id,
            timestamp=timestamp,
            task_id=result.task_id,
            requirement_id=result.requirement_id,
            level=result.level,
            message=result.message,
            proof=result.proof,
            message_sent=result.should_notify,
        )

    def log_error(self, source: str, message: str) -> ErrorLogEntry:
        """Prepend a tracker error and drop entries past the cap."""
        timestamp = utcnow()
        row_id = tracker_db.insert_error(timestamp.isoformat(), source, message,
                                         cap=self.error_cap, db_path=self.db_path)
        return ErrorLogEntry(id=row_id, timestamp=timestamp, source=source, message=message)

    def recent_evaluations(self, task_id: Optional[str] = None, limit: int = 50) -> List[LogEntry]:
        rows = tracker_db.get_evaluations(task_id=task_id, limit=limit, db_path=self.db_path)
        return [_to_log_entry(row) for row in rows]

    def recent_errors(self, limit: int = 20) -> List[ErrorLogEntry]:
        rows = tracker_db.get_errors(limit=limit, db_path=self.db_path)
        return [_to_error_entry(row) for row in rows]
