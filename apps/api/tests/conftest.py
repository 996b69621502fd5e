"""
Shared fixtures for service-layer tests.

Services are exercised against an AsyncMock session; repositories are
patched per test.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from factories import make_user

from app.modules.users.models import UserRole


@pytest.fixture
def mock_db():
    """Create a mock database session with savepoint support."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.refresh = AsyncMock()
    db.flush = AsyncMock()
    db.get = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()

    nested = MagicMock()
    nested.__aenter__ = AsyncMock(return_value=None)
    nested.__aexit__ = AsyncMock(return_value=False)
    db.begin_nested = MagicMock(return_value=nested)
    return db


@pytest.fixture
def mock_redis():
    """Create a mock Redis client."""
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    redis.pipeline = MagicMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[0, 0, 1, True])
    redis.pipeline.return_value = pipe
    return redis


@pytest.fixture
def student_user():
    return make_user(
        role=UserRole.STUDENT, email="student@uni-b.edu", name="Sam Student", institute="Uni B"
    )


@pytest.fixture
def verifier_user():
    return make_user(
        role=UserRole.VERIFIER, email="vera@uni-a.edu", name="Vera Verifier", institute="Uni A"
    )
