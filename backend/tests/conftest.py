import os
import sys
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure the backend directory is on PYTHONPATH when pytest is run from repo root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Ensure test env
os.environ.setdefault("ALLOWED_ORIGINS", "*")
os.environ.setdefault("ENVIRONMENT", "test")

# Import app AFTER env vars
from groupsmith.main import app  # noqa: E402
from groupsmith.services.grouping import jobs as jobs_mod  # noqa: E402


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture(autouse=True)
def _reset_jobs():
    yield
    jobs_mod._JOBS.clear()


@pytest.fixture
def scenario():
    """12 people, 3 unbounded groups, friend pairs {p1,p2}, {p3,p4} and triangle {p5,p6,p7}."""
    roster = [{'id': f'p{i}', 'firstName': f'Student{i}', 'lastName': 'Test'} for i in range(1, 13)]
    likes = {
        'p1': ['p2'],
        'p2': ['p1'],
        'p3': ['p4'],
        'p4': ['p3'],
        'p5': ['p6', 'p7'],
        'p6': ['p5', 'p7'],
        'p7': ['p5', 'p6'],
    }
    preferences = [
        {'studentId': person['id'], 'likeStudentIds': likes.get(person['id'], [])}
        for person in roster
    ]
    shells = [{'id': f'g{i}', 'name': f'Group {i}'} for i in range(1, 4)]
    return {'roster': roster, 'preferences': preferences, 'shells': shells}
