"""
Test configuration and fixtures for kanban backend tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Identity header helper
- Common fixtures for team members, a project with default columns, and tasks
"""

import os
import sys
import logging
from typing import Dict, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app
import models
import settings
from project_membership import DEFAULT_COLUMNS

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

MANAGER_ID = "user_manager"
MEMBER_ID = "user_member"
OBSERVER_ID = "user_observer"
OUTSIDER_ID = "user_outsider"


def headers(clerk_user_id: str) -> Dict[str, str]:
    """Identity header as forwarded by the identity provider."""
    return {"X-Clerk-User-Id": clerk_user_id}


def create_team_member(db: Session, clerk_user_id: str, name: str, email: str) -> models.TeamMember:
    team_member = models.TeamMember(name=name, email=email, clerk_user_id=clerk_user_id)
    db.add(team_member)
    db.commit()
    db.refresh(team_member)
    logger.info(f"Created team member {clerk_user_id} with ID: {team_member.id}")
    return team_member


def add_membership(db: Session, project: models.Project, team_member: models.TeamMember, role: models.ProjectRole):
    membership = models.ProjectMember(project_id=project.id, team_member_id=team_member.id, role=role)
    db.add(membership)
    db.commit()
    return membership


def create_task(db: Session, column: models.BoardColumn, creator_id: str, **fields) -> models.Task:
    task = models.Task(
        column_id=column.id,
        title=fields.pop("title", "Test Task"),
        creator_id=creator_id,
        status=fields.pop("status", models.TaskStatus.a_faire),
        priority=fields.pop("priority", models.TaskPriority.moyenne),
        estimated_time=fields.pop("estimated_time", 60),
        actual_time=fields.pop("actual_time", 0),
        timer_active=fields.pop("timer_active", False),
        tags=fields.pop("tags", []),
        **fields,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info(f"Created task with ID: {task.id} in column {column.id}")
    return task


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def client(test_db: Session) -> TestClient:
    """
    Create FastAPI test client with database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def upload_dir(tmp_path, monkeypatch):
    """Store attachments under a temporary directory."""
    target = tmp_path / "uploads"
    monkeypatch.setattr(settings, "UPLOAD_DIR", target)
    return target


@pytest.fixture(scope="function")
def manager(test_db: Session) -> models.TeamMember:
    return create_team_member(test_db, MANAGER_ID, "Manon Manager", "manager@test.com")


@pytest.fixture(scope="function")
def member(test_db: Session) -> models.TeamMember:
    return create_team_member(test_db, MEMBER_ID, "Marc Member", "member@test.com")


@pytest.fixture(scope="function")
def observer(test_db: Session) -> models.TeamMember:
    return create_team_member(test_db, OBSERVER_ID, "Olga Observer", "observer@test.com")


@pytest.fixture(scope="function")
def outsider(test_db: Session) -> models.TeamMember:
    return create_team_member(test_db, OUTSIDER_ID, "Oscar Outsider", "outsider@test.com")


@pytest.fixture(scope="function")
def project(
    test_db: Session,
    manager: models.TeamMember,
    member: models.TeamMember,
    observer: models.TeamMember,
) -> models.Project:
    """
    Create a project with the default columns and one membership per role.
    """
    logger.debug("Creating test project")
    project = models.Project(
        name="Test Project",
        description="A project for testing",
        clerk_user_id=MANAGER_ID,
    )
    test_db.add(project)
    test_db.commit()
    test_db.refresh(project)

    for index, title in enumerate(DEFAULT_COLUMNS):
        test_db.add(models.BoardColumn(project_id=project.id, title=title, order=index))
    test_db.commit()

    add_membership(test_db, project, manager, models.ProjectRole.manager)
    add_membership(test_db, project, member, models.ProjectRole.member)
    add_membership(test_db, project, observer, models.ProjectRole.observer)

    test_db.refresh(project)
    logger.info(f"Created test project with ID: {project.id}")
    return project


@pytest.fixture(scope="function")
def columns(project: models.Project):
    """The project's columns in board order: À faire, En cours, En révision, Terminé."""
    return list(project.columns)


@pytest.fixture(scope="function")
def manager_task(test_db: Session, columns) -> models.Task:
    """Task created by the manager, unassigned."""
    return create_task(test_db, columns[0], MANAGER_ID, title="Manager Task")


@pytest.fixture(scope="function")
def member_task(test_db: Session, columns) -> models.Task:
    """Task created by the member."""
    return create_task(test_db, columns[0], MEMBER_ID, title="Member Task")
