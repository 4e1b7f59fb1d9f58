"""Shared fixtures for the scheduler tests."""

from types import SimpleNamespace

import pytest

from config.settings import ServerSettings
from services.assistant_service import AssistantService
from services.security_service import SecurityService
from services.task_scheduler_service import TaskSchedulerService
from services.task_store_service import TaskStoreService
from services.user_config_service import UserConfigService



class FakeCompletions:
    """Records requests and replays canned replies (or raises a canned error)."""

    def __init__(self, replies=None, error=None):
        self.replies = list(replies or [])
        self.error = error
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        content = self.replies.pop(0) if self.replies else ""
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeOpenAI:
    def __init__(self, replies=None, error=None):
        self.chat = SimpleNamespace(completions=FakeCompletions(replies, error))

    @property
    def requests(self):
        return self.chat.completions.requests


@pytest.fixture
def settings(tmp_path):
    return ServerSettings(data_dir=tmp_path, _env_file=None)


@pytest.fixture
def task_store():
    return TaskStoreService()


@pytest.fixture
def user_config_service(settings):
    return UserConfigService(data_dir=settings.data_dir, settings=settings)


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def assistant_service(settings, fake_openai):
    return AssistantService(settings=settings, client=fake_openai)


@pytest.fixture
def security_service(settings):
    return SecurityService(data_dir=settings.data_dir)


@pytest.fixture
def scheduler(task_store, user_config_service, assistant_service, security_service):
    return TaskSchedulerService(
        task_store=task_store,
        user_config_service=user_config_service,
        assistant_service=assistant_service,
        security_service=security_service,
    )


@pytest.fixture
def make_fake_openai():
    return FakeOpenAI
