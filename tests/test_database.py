import mongomock
import pytest
from bson import ObjectId

from database import (
    MalformedDocument,
    MongoStore,
    StaleWriteError,
    StoreNotReady,
    parse_document,
    parse_documents,
    serialize_doc,
)
from schemas import Vendor


def test_store_not_usable_before_connect(settings):
    store = MongoStore(settings, client_factory=mongomock.MongoClient)

    assert not store.is_ready
    assert not store.wait_ready(timeout=0)
    with pytest.raises(StoreNotReady):
        store.count("product")


def test_connect_is_idempotent(settings):
    calls = []

    def factory(*args):
        calls.append(args)
        return mongomock.MongoClient()

    store = MongoStore(settings, client_factory=factory)
    store.connect()
    db = store.db
    store.connect()

    assert store.is_ready
    assert store.wait_ready(timeout=0)
    assert store.db is db
    assert len(calls) == 1


def test_connect_uses_database_url(settings):
    seen = []
    configured = settings.model_copy(update={"database_url": "mongodb://db.internal:27017"})

    MongoStore(configured, client_factory=lambda *a: seen.append(a) or mongomock.MongoClient()).connect()

    assert seen == [("mongodb://db.internal:27017",)]


def test_create_document_stamps_times_and_version(store, make_vendor):
    doc = store.find_by_id("vendor", make_vendor())

    assert doc["version"] == 1
    assert doc["created_at"] == doc["updated_at"]
    assert "id" not in doc


def test_versioned_update(store, make_vendor):
    vendor_id = make_vendor()

    assert store.update_document("vendor", vendor_id, {"name": "Renamed"}, expected_version=1)
    doc = store.find_by_id("vendor", vendor_id)
    assert doc["name"] == "Renamed"
    assert doc["version"] == 2


def test_stale_version_is_rejected(store, make_vendor):
    vendor_id = make_vendor()
    store.update_document("vendor", vendor_id, {"name": "First"}, expected_version=1)

    with pytest.raises(StaleWriteError):
        store.update_document("vendor", vendor_id, {"name": "Second"}, expected_version=1)
    assert store.find_by_id("vendor", vendor_id)["name"] == "First"


def test_expected_fields_guard(store, make_vendor):
    vendor_id = make_vendor(status="pending")

    with pytest.raises(StaleWriteError):
        store.update_document("vendor", vendor_id, {"status": "blocked"}, expected={"status": "active"})


def test_update_cannot_overwrite_identity_or_version(store, make_vendor):
    vendor_id = make_vendor()

    store.update_document("vendor", vendor_id, {"id": "x", "_id": "y", "version": 99, "phone": "1"})

    doc = store.find_by_id("vendor", vendor_id)
    assert doc["version"] == 2
    assert doc["phone"] == "1"


@pytest.mark.parametrize("doc_id", ["nope", "0" * 24])
def test_update_missing_document(store, doc_id):
    assert store.update_document("vendor", doc_id, {"name": "x"}, expected_version=1) is False


def test_serialize_doc():
    oid = ObjectId()
    doc = serialize_doc({"_id": oid, "name": "Milk"})

    assert doc == {"id": str(oid), "name": "Milk"}


def test_parse_document_rejects_malformed(store):
    store.db["vendor"].insert_one({"name": "No email", "status": "sleeping"})
    doc = store.find_one("vendor", {"name": "No email"})

    with pytest.raises(MalformedDocument) as info:
        parse_document(Vendor, doc, "vendor")
    assert info.value.collection == "vendor"
    assert info.value.doc_id == str(doc["_id"])


def test_health_check_reports_connection(client):
    body = client.get("/test").json()

    assert body["connection_status"] == "Connected"


def test_parse_documents_skips_malformed(store, make_vendor):
    good = make_vendor()
    store.db["vendor"].insert_one({"name": "No email", "status": "active"})

    vendors = parse_documents(Vendor, store.get_documents("vendor"), "vendor")

    assert [v.id for v in vendors] == [good]
