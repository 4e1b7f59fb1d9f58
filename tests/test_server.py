"""Tests for task_scheduler_server.py request helpers and service wiring."""

from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from task_scheduler_server import (
    TOOL_NAMES,
    create_app_context,
    format_tasks,
    get_user_id,
    resolve_user_id,
    sanitize_user_id,
    validate_date_param,
)


def _ctx(headers=None, metadata=None):
    return SimpleNamespace(request_context=SimpleNamespace(headers=headers, metadata=metadata))


def test_sanitize_user_id_strips_traversal():
    assert sanitize_user_id("../alice") == "alice"
    assert sanitize_user_id("user-1.test_2") == "user-1.test_2"


@pytest.mark.parametrize("raw", ["", "alice bob", "a" * 101, "rm;-rf"])
def test_sanitize_user_id_rejects_bad_ids(raw):
    with pytest.raises(ValueError):
        sanitize_user_id(raw)


def test_get_user_id_sources():
    assert get_user_id(_ctx(headers={"x-user-id": "alice"})) == "alice"
    assert get_user_id(_ctx(metadata={"user_id": "bob"})) == "bob"
    assert get_user_id(_ctx()) == "default"
    assert get_user_id(None) == "default"


def test_resolve_user_id_sanitizes():
    with pytest.raises(ValueError):
        resolve_user_id(_ctx(headers={"x-user-id": "bad id"}))


def test_validate_date_param():
    today = date.today()
    assert validate_date_param(today.isoformat()) == today
    with pytest.raises(ValueError):
        validate_date_param("tomorrow")
    with pytest.raises(ValueError):
        validate_date_param((today + timedelta(days=400)).isoformat())


def test_format_tasks_empty():
    assert format_tasks([]) == "No tasks."


def test_create_app_context_wires_services(settings):
    app_context = create_app_context(settings)
    scheduler = app_context.task_scheduler_service
    assert scheduler.task_store is app_context.task_store
    assert scheduler.user_config_service is app_context.user_config_service
    assert not app_context.assistant_service.is_configured

    task = scheduler.add_task("alice", "Plan sprint", reference_date=date(2026, 3, 2))
    assert str(task.start_time) == "09:00"


def test_tool_list_is_unique():
    assert len(TOOL_NAMES) == len(set(TOOL_NAMES))
    assert "find_next_available_slot" in TOOL_NAMES
