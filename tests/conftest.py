import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_token, hash_password
from database import MongoStore
from images import FixedDelay, ImageServiceError, ImageUploader
from main import create_app
from schemas import Product, User, Vendor
from settings import Settings

VENDOR_PASSWORD = "secret123"


class FakeImageClient:
    """Stands in for CloudinaryClient; ``outcomes`` scripts successive calls."""

    def __init__(self, upload_outcomes=None, destroy_outcomes=None):
        self.upload_outcomes = list(upload_outcomes or [])
        self.destroy_outcomes = list(destroy_outcomes or [])
        self.upload_calls = []
        self.destroy_calls = []

    @staticmethod
    def _next(outcomes, default):
        outcome = outcomes.pop(0) if outcomes else default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def upload(self, data, filename, content_type, folder, public_id, context=""):
        self.upload_calls.append({"filename": filename, "folder": folder, "public_id": public_id, "context": context})
        n = len(self.upload_calls)
        return self._next(self.upload_outcomes, {
            "secure_url": f"https://res.cloudinary.com/demo/image/upload/{folder}/{public_id}-{n}.jpg",
            "public_id": f"{folder}/{public_id}",
        })

    def destroy(self, public_id):
        self.destroy_calls.append(public_id)
        return self._next(self.destroy_outcomes, None)


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret",
        environment="test",
        cloudinary_cloud_name="demo",
        cloudinary_api_key="key",
        cloudinary_api_secret="shh",
        cloudinary_upload_preset="preset",
        image_retry_delay=0,
    )


@pytest.fixture
def store(settings):
    return MongoStore(settings, client_factory=mongomock.MongoClient).connect()


@pytest.fixture
def image_client():
    return FakeImageClient()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def uploader(image_client, sleeps):
    return ImageUploader(image_client, max_bytes=1024, max_attempts=3, backoff=FixedDelay(1.0), sleep=sleeps.append)


@pytest.fixture
def app(settings, store, uploader):
    return create_app(settings=settings, store=store, uploader=uploader)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_vendor(store, settings):
    counter = iter(range(1, 1000))

    def _make(status="active", pincodes=("110001", "110002"), is_open=True, email=None, **extra):
        n = next(counter)
        vendor = Vendor(
            name=extra.pop("name", f"Vendor {n}"),
            email=email or f"vendor{n}@example.com",
            phone="9876543210",
            address=f"{n} Janpath, New Delhi",
            pincodes=list(pincodes),
            status=status,
            is_open=is_open,
            password_hash=hash_password(VENDOR_PASSWORD, settings.jwt_secret),
        )
        return store.create_document("vendor", vendor)

    return _make


@pytest.fixture
def make_product(store):
    def _make(vendor_id, pincodes=("110001",), status="active", category="dairy", **extra):
        product = Product(
            name=extra.pop("name", "Toned Milk"),
            description="Pasteurised milk",
            price=extra.pop("price", 27),
            mrp=extra.pop("mrp", 30),
            category=category,
            unit="500 ml",
            stock=extra.pop("stock", 50),
            vendor_id=vendor_id,
            pincodes=list(pincodes),
            status=status,
            **extra,
        )
        return store.create_document("product", product)

    return _make


@pytest.fixture
def make_user(store, settings):
    def _make(role="customer", email=None):
        email = email or f"{role}@example.com"
        user = User(name=role.capitalize(), email=email, password_hash=hash_password("pw123456", settings.jwt_secret),
                    role=role)
        user_id = store.create_document("user", user)
        token = create_token({"id": user_id, "email": email, "role": role}, settings)
        return user_id, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def vendor_login(client, store):
    def _login(vendor_id, password=VENDOR_PASSWORD):
        email = store.find_by_id("vendor", vendor_id)["email"]
        return client.post("/vendor/login", json={"email": email, "password": password}, follow_redirects=False)

    return _login


@pytest.fixture
def provider_down():
    return ImageServiceError("Service Unavailable", code="503")


@pytest.fixture
def catalog_product(store):
    from catalog import CatalogService

    return CatalogService(store).get_product
