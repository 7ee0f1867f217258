# tests/conftest.py
import pytest
import pytest_asyncio

from hirehub.core.config import Settings
from hirehub.core.security import Principal, create_access_token
from hirehub.repositories.chat import InMemoryChatStore
from hirehub.repositories.evaluations import InMemoryEvaluationStore
from hirehub.services.chat import ChatService
from hirehub.services.realtime import RealtimeService

RESUME_TEXT = """Jane Doe
San Francisco, CA
jane.doe@example.com | +1 415 555 0100
linkedin.com/in/janedoe

Summary
Backend engineer with eight years building Python services and data pipelines.

Experience
Senior Engineer at Acme Corp
Jan 2020 - Present
- Led the migration of billing services to FastAPI
- Cut p95 latency by 40 percent
Software Engineer, Initech
2016 - 2019
- Built ETL jobs in Python and SQL

Skills
Languages: Python, Go, SQL
Tools: Docker, Redis, MongoDB

Education
BSc Computer Science, State University
"""


class FakeSocket:
    """Collects frames handed to it by a Connection writer."""

    def __init__(self):
        self.frames = []

    async def send(self, frame):
        self.frames.append(frame)

    def events(self, name):
        return [f["data"] for f in self.frames if f["event"] == name]


def principal(user_id):
    return Principal(user_id=user_id, email=f"{user_id}@example.com")


def auth_headers(user_id, role=None):
    return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}


@pytest.fixture
def chat_service():
    return ChatService(InMemoryChatStore())


@pytest.fixture
def evaluation_store():
    return InMemoryEvaluationStore()


@pytest_asyncio.fixture
async def realtime(chat_service, evaluation_store):
    service = RealtimeService(chat_service, evaluations=evaluation_store)
    await service.initialize()
    yield service
    await service.shutdown()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        STORE_BACKEND="memory",
        EVALUATION_DISPATCH="inline",
        SCORER_ADAPTER="mock",
        SCORER_RETRY_DELAY_SEC=0,
        LOCAL_UPLOAD_DIR=str(tmp_path / "uploads"),
        RATE_LIMIT_EVALUATIONS=0,
        RATE_LIMIT_MESSAGES=0,
    )
