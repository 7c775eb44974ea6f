import os
import tempfile

os.environ["ENV"] = "test"
os.environ["BACKGROUND_TASKS_ENABLED"] = "false"
os.environ.setdefault("UPLOAD_DIR", os.path.join(tempfile.gettempdir(), "report-export-tests"))

import pytest
from httpx import ASGITransport, AsyncClient

from report_export.config import Settings
from report_export.core import FILE_EXTENSIONS, MEDIA_TYPES, UserAnalyticsOptions
from report_export.main import create_app
from report_export.models import ExportFormat, ExportKind
from report_export.runtime import build_services
from report_export.services.renderer import RenderedReport

ADMIN_TOKEN = "test-admin-token"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubRenderer:
    """Records calls and returns small fake files; owners in ``fail_for`` blow up."""

    def __init__(self):
        self.calls = []
        self.fail_for = set()
        self.content = b"%PDF-1.4 stub report"

    def render(self, kind, owner_id, format, options):
        self.calls.append((ExportKind(kind), owner_id, ExportFormat(format)))
        if owner_id in self.fail_for:
            raise RuntimeError(f"renderer exploded for {owner_id}")
        format = ExportFormat(format)
        return RenderedReport(self.content, MEDIA_TYPES[format], FILE_EXTENSIONS[format])


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        env="test",
        upload_dir=str(tmp_path / "uploads"),
        admin_token=ADMIN_TOKEN,
        background_tasks_enabled=False,
    )


@pytest.fixture
def renderer():
    return StubRenderer()


@pytest.fixture
def services(settings, renderer, clock):
    return build_services(settings, renderer=renderer, clock=clock)


@pytest.fixture
def submit(services):
    """Admit and create a job the way ``POST /exports`` does."""

    def _submit(owner="alice", kind=ExportKind.USER_ANALYTICS, format=ExportFormat.PDF, options=None):
        with services.rate_limiter.admit_job_creation(owner) as slot:
            job = services.jobs.create(owner, kind, format, options or UserAnalyticsOptions())
            slot.hand_off()
        return job

    return _submit


@pytest.fixture
def app(settings, renderer, clock):
    return create_app(settings=settings, renderer=renderer, clock=clock)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}
