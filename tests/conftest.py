import sys
from pathlib import Path

# Ajoute la racine du projet au PYTHONPATH EN PREMIER
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Créer engine SQLite pour tests AVANT d'importer app
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///./test.db"
test_engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

# PATCH: remplacer le engine et SessionLocal du core.database AVANT d'importer app
import opsboard.core.database
opsboard.core.database.engine = test_engine
opsboard.core.database.SessionLocal = TestingSessionLocal

# Maintenant importer app (qui utilisera notre engine SQLite)
from opsboard.core.database import Base, get_db
from opsboard.core.security import create_access_token
from opsboard.main import app
from opsboard.models.project import Project, ProjectMember
from opsboard.models.user import User
from opsboard.services.change_feed import change_feed


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def setup_teardown():
    """Crée et nettoie la DB (et le journal des changements) avant/après chaque test"""
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    change_feed.clear()
    yield
    change_feed.clear()
    Base.metadata.drop_all(bind=test_engine)


# Override la dépendance
app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def client():
    """Client de test FastAPI"""
    from fastapi.testclient import TestClient
    return TestClient(app)


@pytest.fixture
def db():
    """Session DB pour les tests"""
    db = TestingSessionLocal()
    yield db
    db.close()


def _auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email)}"}


@pytest.fixture
def auth_headers():
    """Headers Authorization d'un utilisateur : auth_headers(user)"""
    return _auth_headers


@pytest.fixture
def make_user(db):
    """Fabrique d'utilisateurs : make_user('manager', 'Bob')"""
    def _make(role="employee", name=None):
        count = db.query(User).count() + 1
        user = User(email=f"user{count}@example.com", name=name or f"User {count}", role=role)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_project(db):
    """Fabrique de projets avec leurs membres"""
    def _make(name="Website", members=(), created_by=None):
        project = Project(name=name, created_by=created_by)
        db.add(project)
        db.commit()
        db.refresh(project)
        for user in members:
            db.add(ProjectMember(project_id=project.id, user_id=user.id))
        db.commit()
        return project

    return _make


@pytest.fixture
def manager(make_user):
    return make_user("manager", "Maya Manager")


@pytest.fixture
def employee(make_user):
    return make_user("employee", "Alice")


@pytest.fixture
def make_task(client, manager):
    """Crée une tâche via l'API (en tant que manager)"""
    def _make(title="Design homepage", **fields):
        response = client.post("/tasks", headers=_auth_headers(manager), json={"title": title, **fields})
        assert response.status_code == 201, response.text
        return response.json()

    return _make
