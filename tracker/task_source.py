"""
Task definitions source.

Tasks and requirements are edited elsewhere (the task UI writes them to
JSON files in the data directory); the tracker only reads them, once
per cycle, so edits are picked up on the next tick.

tasks.json is a list of groups, each with a "tasks" array:
    [{"title": "Community", "tasks": [{"id": "t1", "tools": ["discord.com"], ...}]}]
A bare list of task objects is accepted as a single group.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List

from common.config import TASKS_PATH, REQUIREMENTS_PATH
from common.models import Requirement, Task

logger = logging.getLogger(__name__)


class TrackerError(Exception):
    pass


class TaskDefinitionError(TrackerError):
    """tasks.json / requirements.json exists but is not usable."""


def _read_json(path: Path, default):
    if not path.exists():
        return default
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise TaskDefinitionError(f"{path.name} is not valid JSON: {e}") from e


def _is_group(entry) -> bool:
    return isinstance(entry, dict) and isinstance(entry.get('tasks'), list)


class JsonTaskSource:
    def __init__(self, tasks_path: Path = None, requirements_path: Path = None):
        self.tasks_path = Path(tasks_path or TASKS_PATH)
        self.requirements_path = Path(requirements_path or REQUIREMENTS_PATH)

    def load_groups(self) -> List[dict]:
        data = _read_json(self.tasks_path, [])
        if not isinstance(data, list):
            raise TaskDefinitionError(f"{self.tasks_path.name} must contain a list")
        if data and not any(_is_group(entry) for entry in data):
            return [{'tasks': data}]
        return [entry for entry in data if _is_group(entry)]

    def _raw_tasks(self) -> List[dict]:
        return [raw for group in self.load_groups() for raw in group['tasks']]

    def load_tasks(self) -> List[Task]:
        """All tasks of all groups, flattened in file order."""
        tasks = []
        for raw in self._raw_tasks():
            try:
                tasks.append(Task.from_dict(raw))
            except (KeyError, TypeError) as e:
                raise TaskDefinitionError(f"Invalid task definition {raw!r}: {e}") from e
        return tasks

    def requirements(self) -> Dict[str, Requirement]:
        """
        Requirement definitions by id.

        Objects embedded in a task's "requirements" list are used too;
        requirements.json wins when both define the same id.
        """
        found: Dict[str, Requirement] = {}
        for raw in self._raw_tasks():
            for req in raw.get('requirements') or []:
                if isinstance(req, dict) and req.get('id'):
                    found[str(req['id'])] = Requirement.from_dict(req)

        data = _read_json(self.requirements_path, [])
        if not isinstance(data, list):
            raise TaskDefinitionError(f"{self.requirements_path.name} must contain a list")
        for req in data:
            if isinstance(req, dict) and req.get('id'):
                found[str(req['id'])] = Requirement.from_dict(req)
        return found
