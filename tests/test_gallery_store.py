"""
Tests for the GalleryStore module.

This test suite verifies:
- User creation, validation, lookup, listing, update and deletion
- Enrollment storage and the one-enrollment-per-user constraint
- Gallery loading order and raw embedding hand-over
- Authentication logging and statistics
- Persistence across store instances

Run with: pytest tests/test_gallery_store.py -v
"""

import json
import os
import sys
import tempfile
import shutil
import threading
import pytest
import numpy as np

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import ConflictError, NotFoundError, ValidationError
from core.gallery_store import (
    GalleryStore,
    generate_face_id,
    generate_user_id,
    sanitize_input,
)


def random_embedding(seed: int = 0, dim: int = 234) -> np.ndarray:
    return np.random.default_rng(seed).normal(size=dim)


class TestGenerateIds:
    """Tests for id generation."""

    def test_generate_unique_ids(self):
        """Test that generated IDs are unique."""
        ids = [generate_user_id() for _ in range(100)]
        assert len(set(ids)) == 100  # All unique

    def test_id_format(self):
        user_id = generate_user_id()
        face_id = generate_face_id()
        assert user_id.startswith("usr_") and len(user_id) == 12
        assert face_id.startswith("face_") and len(face_id) == 13

    def test_sanitize_input(self):
        assert sanitize_input("  <b>Alice</b> ") == "bAlice/b"


class TestGalleryStore:
    """Tests for the GalleryStore class."""

    @pytest.fixture
    def temp_dir(self):
        """Create a temporary directory for test data."""
        temp_path = tempfile.mkdtemp()
        yield temp_path
        shutil.rmtree(temp_path)

    @pytest.fixture
    def store(self, temp_dir):
        """Create a GalleryStore with a temporary database."""
        db_path = os.path.join(temp_dir, "test.sqlite")
        store = GalleryStore(db_path=db_path)
        yield store
        store.close()

    @pytest.fixture
    def alice(self, store):
        return store.create_user("Alice", "alice@example.com")

    # ---------------- users ----------------

    def test_create_user(self, store):
        user = store.create_user("  Alice  ", "alice@example.com")
        assert user["user_id"].startswith("usr_")
        assert user["name"] == "Alice"
        assert user["email"] == "alice@example.com"
        assert user["has_face_data"] is False
        assert store.user_exists(user["user_id"])

    @pytest.mark.parametrize("name", ["", "   ", "<>", "x" * 51])
    def test_create_user_invalid_name(self, store, name):
        with pytest.raises(ValidationError) as exc_info:
            store.create_user(name, "someone@example.com")
        assert exc_info.value.field == "name"

    @pytest.mark.parametrize("email", ["", "not-an-email", "a@b", "a b@example.com"])
    def test_create_user_invalid_email(self, store, email):
        with pytest.raises(ValidationError) as exc_info:
            store.create_user("Someone", email)
        assert exc_info.value.field == "email"

    def test_create_user_duplicate_email(self, store, alice):
        with pytest.raises(ConflictError):
            store.create_user("Alice Two", "alice@example.com")

    def test_get_nonexistent_user(self, store):
        assert store.get_user("usr_nonexistent") is None
        assert not store.user_exists("usr_nonexistent")

    def test_list_users(self, store):
        for i in range(3):
            store.create_user(f"User {i}", f"user{i}@example.com")

        users, total = store.list_users()
        assert total == 3
        assert len(users) == 3
        assert all(u["auth_log_count"] == 0 for u in users)

    def test_list_users_search_and_paging(self, store):
        store.create_user("Alice", "alice@example.com")
        store.create_user("Bob", "bob@example.com")
        store.create_user("Alicia", "alicia@example.org")

        users, total = store.list_users(search="ali")
        assert total == 2
        assert {u["name"] for u in users} == {"Alice", "Alicia"}

        page, total = store.list_users(limit=1, offset=1)
        assert total == 3
        assert len(page) == 1

    def test_update_user(self, store, alice):
        updated = store.update_user(alice["user_id"], name="Alice Smith")
        assert updated["name"] == "Alice Smith"
        assert updated["email"] == "alice@example.com"

    def test_update_user_errors(self, store, alice):
        store.create_user("Bob", "bob@example.com")

        with pytest.raises(NotFoundError):
            store.update_user("usr_missing", name="X")
        with pytest.raises(ValidationError):
            store.update_user(alice["user_id"])
        with pytest.raises(ConflictError):
            store.update_user(alice["user_id"], email="bob@example.com")

    # ---------------- enrollment ----------------

    def test_save_enrollment(self, store, alice):
        face_id = store.save_enrollment(alice["user_id"], random_embedding(), quality=0.9)

        assert face_id.startswith("face_")
        assert store.has_enrollment(alice["user_id"])
        assert store.get_user(alice["user_id"])["has_face_data"] is True

        face_data = store.get_face_data(alice["user_id"])
        assert face_data["face_id"] == face_id
        assert face_data["quality"] == pytest.approx(0.9)

    def test_second_enrollment_conflicts(self, store, alice):
        store.save_enrollment(alice["user_id"], random_embedding(1), quality=0.9)
        with pytest.raises(ConflictError):
            store.save_enrollment(alice["user_id"], random_embedding(2), quality=0.95)

    def test_enrollment_for_unknown_user(self, store):
        with pytest.raises(NotFoundError):
            store.save_enrollment("usr_missing", random_embedding(), quality=0.9)

    def test_racing_enrollments_only_one_succeeds(self, store, alice):
        outcomes = []

        def enroll(seed):
            try:
                store.save_enrollment(alice["user_id"], random_embedding(seed), quality=0.9)
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=enroll, args=(i,)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict"] * 4 + ["ok"]

    def test_load_gallery(self, store):
        users = [store.create_user(f"User {i}", f"user{i}@example.com") for i in range(3)]
        for i, user in enumerate(users):
            store.save_enrollment(user["user_id"], random_embedding(i), quality=0.8)

        gallery = store.load_gallery()

        assert [e.identity_id for e in gallery] == [u["user_id"] for u in users]
        assert gallery[0].identity_name == "User 0"
        assert gallery[0].identity_email == "user0@example.com"
        assert isinstance(gallery[0].embedding, str)
        np.testing.assert_allclose(gallery[0].vector(), random_embedding(0))

    def test_load_gallery_excludes_unenrolled_users(self, store, alice):
        store.create_user("Bob", "bob@example.com")
        store.save_enrollment(alice["user_id"], random_embedding(), quality=0.8)
        assert [e.identity_id for e in store.load_gallery()] == [alice["user_id"]]

    def test_embedding_stored_as_json(self, store, alice):
        values = [0.1, -0.2, 0.3]
        store.save_enrollment(alice["user_id"], values, quality=0.7)
        assert json.loads(store.load_gallery()[0].embedding) == values

    # ---------------- audit ----------------

    def test_log_authentication(self, store, alice):
        log_id = store.log_authentication(alice["user_id"], True, 0.95)
        assert log_id is not None

        logs = store.get_auth_logs(user_id=alice["user_id"])
        assert len(logs) == 1
        assert logs[0]["success"] is True
        assert logs[0]["similarity"] == pytest.approx(0.95)
        assert logs[0]["user_name"] == "Alice"

    def test_log_failed_attempt_without_user(self, store):
        store.log_authentication(None, False, 0.42)
        store.log_authentication(None, False, None)

        logs = store.get_auth_logs()
        assert len(logs) == 2
        assert logs[0]["similarity"] is None
        assert logs[0]["user_id"] is None
        assert logs[1]["similarity"] == pytest.approx(0.42)

    def test_auth_logs_newest_first_with_limit(self, store, alice):
        for similarity in (0.81, 0.82, 0.83):
            store.log_authentication(alice["user_id"], True, similarity)

        logs = store.get_auth_logs(limit=2)
        assert [log["similarity"] for log in logs] == pytest.approx([0.83, 0.82])

    def test_auth_stats(self, store, alice):
        store.log_authentication(alice["user_id"], True, 0.9)
        store.log_authentication(alice["user_id"], True, 0.8)
        store.log_authentication(None, False, 0.3)

        stats = store.get_auth_stats()
        assert stats["successful_authentications"] == 2
        assert stats["average_similarity"] == pytest.approx(0.85)
        assert len(stats["recent_logs"]) == 3

    def test_auth_stats_empty(self, store):
        stats = store.get_auth_stats()
        assert stats["successful_authentications"] == 0
        assert stats["average_similarity"] == 0.0
        assert stats["recent_logs"] == []

    def test_get_stats(self, store, alice):
        store.create_user("Bob", "bob@example.com")
        store.save_enrollment(alice["user_id"], random_embedding(), quality=0.9)
        store.log_authentication(alice["user_id"], True, 0.9)
        store.log_authentication(None, False, 0.1)

        stats = store.get_stats()
        assert stats["total_users"] == 2
        assert stats["enrolled_users"] == 1
        assert stats["total_auth_attempts"] == 2
        assert stats["successful_auths"] == 1

    # ---------------- deletion / persistence ----------------

    def test_delete_user_cascades_face_data(self, store, alice):
        store.save_enrollment(alice["user_id"], random_embedding(), quality=0.9)
        store.log_authentication(alice["user_id"], True, 0.9)

        deleted = store.delete_user(alice["user_id"])

        assert deleted["face_data_count"] == 1
        assert deleted["auth_log_count"] == 1
        assert not store.user_exists(alice["user_id"])
        assert store.load_gallery() == []

        # The audit record survives without its user
        logs = store.get_auth_logs()
        assert len(logs) == 1
        assert logs[0]["user_id"] is None

    def test_delete_nonexistent_user(self, store):
        assert store.delete_user("usr_nonexistent") is None

    def test_persistence(self, temp_dir):
        """Test that data persists across store instances."""
        db_path = os.path.join(temp_dir, "persist.sqlite")

        store1 = GalleryStore(db_path=db_path)
        user = store1.create_user("Persistent", "persist@example.com")
        store1.save_enrollment(user["user_id"], random_embedding(), quality=0.9)
        store1.close()

        store2 = GalleryStore(db_path=db_path)
        assert store2.user_exists(user["user_id"])
        assert store2.has_enrollment(user["user_id"])
        assert len(store2.load_gallery()) == 1
        store2.close()
