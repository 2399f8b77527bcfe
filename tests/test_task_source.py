import json

import pytest

from tracker.task_source import JsonTaskSource, TaskDefinitionError


def write(path, data):
    path.write_text(json.dumps(data), encoding='utf-8')
    return path


@pytest.fixture
def source(tmp_path):
    return JsonTaskSource(tmp_path / "tasks.json", tmp_path / "requirements.json")


def test_missing_files_mean_no_tasks(source):
    assert source.load_tasks() == []
    assert source.requirements() == {}


def test_groups_are_flattened(source):
    write(source.tasks_path, [
        {"title": "Community", "tasks": [
            {"id": "t1", "title": "Be present", "tools": ["discord.com"], "requirementsActive": ["r1"], "userId": 42},
        ]},
        {"title": "Docs", "tasks": [{"id": "t2", "title": "Write docs", "tools": ["notion.so"]}]},
    ])

    tasks = source.load_tasks()

    assert [t.id for t in tasks] == ["t1", "t2"]
    assert tasks[0].requirements_active == ["r1"]
    assert tasks[0].assignee_id == "42"
    assert tasks[0].is_trackable("discord.com")
    assert not tasks[1].is_trackable("discord.com")


def test_bare_task_list_is_one_group(source):
    write(source.tasks_path, [{"id": "t1", "tools": ["discord.com"], "requirements_active": ["r1"]}])
    assert [t.id for t in source.load_tasks()] == ["t1"]
    assert len(source.load_groups()) == 1


def test_invalid_json_raises(source):
    source.tasks_path.write_text("{not json", encoding='utf-8')
    with pytest.raises(TaskDefinitionError):
        source.load_tasks()


def test_top_level_must_be_a_list(source):
    write(source.tasks_path, {"tasks": []})
    with pytest.raises(TaskDefinitionError):
        source.load_tasks()


def test_task_without_id_raises(source):
    write(source.tasks_path, [{"title": "No id"}])
    with pytest.raises(TaskDefinitionError):
        source.load_tasks()


def test_requirements_file_wins_over_embedded(source):
    write(source.tasks_path, [{"tasks": [{
        "id": "t1",
        "requirements": [
            {"id": "r1", "title": "Embedded", "measure": "old"},
            {"id": "r2", "title": "Only embedded", "emoji": "💬"},
        ],
        "requirementsActive": ["r1", "r2"],
    }]}])
    write(source.requirements_path, [{"id": "r1", "title": "Responsiveness", "measure": "reply fast", "severity": 2}])

    reqs = source.requirements()

    assert reqs["r1"].title == "Responsiveness"
    assert reqs["r1"].severity == "2"
    assert reqs["r2"].emoji == "💬"
    assert source.load_tasks()[0].requirements == ["r1", "r2"]
