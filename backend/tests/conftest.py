"""
Pytest configuration and shared fixtures for the MotivAI backend.
"""
import sys
from datetime import datetime
from pathlib import Path

# Ensure backend package is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


@pytest.fixture(scope="function")
def db():
    """
    Create a fresh database for each test.

    Uses an in-memory SQLite database for fast, isolated testing.
    """
    from motivai.db.base import Base
    import motivai.models  # noqa: F401

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def user(db):
    """A signed-up user without any subscription."""
    from motivai.models import User

    user = User(id="uid_alice", email="alice@example.com", display_name="Alice", is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def other_user(db):
    from motivai.models import User

    user = User(id="uid_bob", email="bob@example.com", display_name="Bob", is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def make_subscription(db):
    """Factory persisting a subscription with sensible defaults."""
    from motivai.models import Subscription

    def _make(user_id, plan="basic", status="active", **overrides):
        fields = {
            "user_id": user_id,
            "plan_id": plan,
            "plan": plan,
            "status": status,
            "billing_interval": "monthly",
            "start_date": datetime(2025, 3, 1),
            "end_date": datetime(2025, 4, 1),
            "ai_usage_count": 0,
            "ai_usage_reset": datetime(2025, 4, 1),
            "ai_usage_total_all_time": 0,
            "plan_history": [],
            "created_at": datetime(2025, 3, 1),
            "updated_at": datetime(2025, 3, 1),
        }
        fields.update(overrides)
        subscription = Subscription(**fields)
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
        return subscription

    return _make
