from pathlib import Path
import io
import os
import tempfile
import uuid
import pytest

# Point the app at throwaway storage before `storefront` is imported by any test module.
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="storefront-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_ROOT / 'test.db'}"
os.environ["PHOTO_STORAGE_DIR"] = str(_TEST_ROOT / "photos")
os.environ.setdefault("ENV", "dev")


def unique(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def make_png(size=(64, 32), color="white") -> bytes:
    from PIL import Image
    img = Image.new("RGB", size, color)
    bio = io.BytesIO()
    img.save(bio, format="PNG")
    return bio.getvalue()


@pytest.fixture(scope="session")
def client():
    from fastapi.testclient import TestClient
    from storefront.main import app
    with TestClient(app) as c:
        yield c


def _create_account(role: str):
    from sqlmodel import Session
    from storefront.database import engine
    from storefront.repositories import UnitOfWork
    from storefront.services import AuthService
    with Session(engine) as session:
        auth = AuthService(UnitOfWork(session))
        user = auth.register(unique(role.lower()), "pw", role=role)
        return {"Authorization": f"Bearer {auth.issue_token(user)}"}


@pytest.fixture
def moderator_headers(client):
    return _create_account("Moderator")


@pytest.fixture
def admin_headers(client):
    return _create_account("Admin")


@pytest.fixture
def member_headers(client):
    return _create_account("Member")


@pytest.fixture
def product(client, moderator_headers):
    """A freshly created product as returned by the moderator API."""
    r = client.post(
        "/api/moderator/product",
        data={"name": unique("lamp"), "description": "desk lamp", "category": "lighting", "sale_price": "12.50"},
        headers=moderator_headers,
    )
    assert r.status_code == 201
    return r.json()
