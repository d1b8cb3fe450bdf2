"""
Tests for the FaceAuthService.

This test suite verifies:
- authenticate(): empty gallery, exact match, best-of-N, below-threshold
  rejection and exactly one audit record per decision
- Audit failures never change the decision; unexpected failures surface
  as UnexpectedError
- enroll(): check order, embedding / quality validation, identity checks,
  rate limiting
- analyze_landmarks(): embedding, quality and readiness

Run with: pytest tests/test_service.py -v
"""

import math
import os
import sys
import tempfile
import shutil
import pytest
import numpy as np
from unittest.mock import MagicMock, patch

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.abuse_guard import AbuseGuard
from core.errors import (
    ConflictError,
    NotFoundError,
    RateLimitExceeded,
    SecurityViolation,
    UnexpectedError,
    ValidationError,
)
from core.gallery_store import GalleryStore
from core.matching import NO_ENROLLED_IDENTITIES
from core.quality import LEFT_EYE_CORNER, NOSE_TIP, RIGHT_EYE_CORNER
from core.service import FaceAuthService, PerformanceTimer, validate_embedding


BROWSER_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
DIM = 234


class FakeClock:
    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now


def unit(axis: int = 0) -> list:
    v = [0.0] * DIM
    v[axis] = 1.0
    return v


def with_similarity(s: float) -> list:
    """Embedding whose cosine similarity to unit(0) is s."""
    v = [0.0] * DIM
    v[0] = s
    v[1] = math.sqrt(1.0 - s * s)
    return v


def make_face(n: int = 468) -> np.ndarray:
    rng = np.random.default_rng(11)
    points = np.column_stack([
        rng.uniform(0.3, 0.7, n),
        rng.uniform(0.3, 0.7, n),
        rng.uniform(-0.02, 0.02, n),
    ])
    points[LEFT_EYE_CORNER] = [0.40, 0.45, 0.0]
    points[RIGHT_EYE_CORNER] = [0.60, 0.45, 0.0]
    points[NOSE_TIP] = [0.50, 0.55, 0.0]
    return points


@pytest.fixture
def temp_dir():
    temp_path = tempfile.mkdtemp()
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def store(temp_dir):
    store = GalleryStore(db_path=os.path.join(temp_dir, "service.sqlite"))
    yield store
    store.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(store, clock):
    guard = AbuseGuard({"rate_limit": {"max_requests": 5, "window_ms": 60000}}, clock=clock)
    return FaceAuthService(store=store, abuse_guard=guard)


def enroll_user(store, name, embedding, quality=0.9):
    user = store.create_user(name, f"{name.lower()}@example.com")
    store.save_enrollment(user["user_id"], embedding, quality)
    return user


class TestAuthenticate:
    """Tests for FaceAuthService.authenticate."""

    def test_empty_gallery(self, service, store):
        decision = service.authenticate(unit(0))

        assert not decision.authenticated
        assert decision.identity_id is None
        assert decision.similarity == 0.0
        assert decision.threshold == 0.80
        assert decision.message == NO_ENROLLED_IDENTITIES

        logs = store.get_auth_logs()
        assert len(logs) == 1
        assert logs[0]["success"] is False

    def test_identical_embedding_authenticates(self, service, store):
        alice = enroll_user(store, "Alice", unit(0))
        enroll_user(store, "Bob", unit(1))

        decision = service.authenticate(unit(0))

        assert decision.authenticated
        assert decision.identity_id == alice["user_id"]
        assert decision.similarity == pytest.approx(1.0)
        assert decision.identity_name == "Alice"
        assert decision.message == "Authenticated as Alice"

    def test_best_of_two(self, service, store):
        enroll_user(store, "Alice", with_similarity(0.5))
        bob = enroll_user(store, "Bob", with_similarity(0.9))

        decision = service.authenticate(unit(0))

        assert decision.authenticated
        assert decision.identity_id == bob["user_id"]
        assert decision.similarity == pytest.approx(0.9)

    def test_below_threshold(self, service, store):
        enroll_user(store, "Alice", with_similarity(0.79))

        decision = service.authenticate(unit(0))

        assert not decision.authenticated
        assert decision.identity_id is None
        assert decision.similarity == pytest.approx(0.79)
        assert decision.threshold == 0.80

    def test_one_audit_record_per_decision(self, service, store):
        alice = enroll_user(store, "Alice", unit(0))

        service.authenticate(unit(0))
        service.authenticate(unit(1))

        logs = store.get_auth_logs()
        assert len(logs) == 2
        assert logs[1]["user_id"] == alice["user_id"]
        assert logs[1]["success"] is True
        assert logs[1]["similarity"] == pytest.approx(1.0)
        assert logs[0]["user_id"] is None
        assert logs[0]["success"] is False
        assert logs[0]["similarity"] == pytest.approx(0.0)

    def test_audit_failure_does_not_change_decision(self, service, store):
        enroll_user(store, "Alice", unit(0))

        with patch.object(store, "log_authentication", side_effect=RuntimeError("disk full")):
            decision = service.authenticate(unit(0))

        assert decision.authenticated

    def test_corrupt_gallery_entry_is_skipped(self, service, store):
        alice = enroll_user(store, "Alice", unit(0))
        bob = enroll_user(store, "Bob", unit(1))
        conn = store._get_connection()
        conn.execute("UPDATE face_data SET embedding = ? WHERE user_id = ?", ("{corrupt", bob["user_id"]))
        conn.commit()

        decision = service.authenticate(unit(0))
        assert decision.identity_id == alice["user_id"]

    def test_gallery_failure_raises_unexpected_error(self, store):
        broken = MagicMock(wraps=store)
        broken.load_gallery.side_effect = RuntimeError("database is locked")
        service = FaceAuthService(store=broken)

        with pytest.raises(UnexpectedError) as exc_info:
            service.authenticate(unit(0))

        assert exc_info.value.to_dict() == {
            "error": "An unexpected error occurred",
            "code": "INTERNAL_ERROR",
        }
        broken.log_authentication.assert_called_once_with(None, False, None)

    @pytest.mark.parametrize("probe", [
        [],
        "not a list",
        [1.0, float("nan")],
        [1.0, float("inf")],
        [1.0, "2"],
        [True, 1.0],
    ])
    def test_invalid_probe(self, service, store, probe):
        with pytest.raises(ValidationError) as exc_info:
            service.authenticate(probe)
        assert exc_info.value.field == "face_embedding"
        assert store.get_auth_logs() == []


class TestEnroll:
    """Tests for FaceAuthService.enroll."""

    @pytest.fixture
    def alice(self, store):
        return store.create_user("Alice", "alice@example.com")

    def enroll(self, service, user_id, embedding=None, quality=0.9, client="1.2.3.4", agent=BROWSER_UA):
        return service.enroll(
            user_id,
            embedding if embedding is not None else unit(0),
            quality,
            client_key=client,
            client_agent=agent,
        )

    def test_successful_enrollment(self, service, store, alice):
        outcome = self.enroll(service, alice["user_id"])

        assert outcome.face_id.startswith("face_")
        assert outcome.user_id == alice["user_id"]
        assert outcome.quality == 0.9
        assert store.has_enrollment(alice["user_id"])

    def test_enrolled_user_can_authenticate(self, service, alice):
        embedding = list(np.random.default_rng(5).normal(size=DIM))
        self.enroll(service, alice["user_id"], embedding)

        decision = service.authenticate(embedding)
        assert decision.authenticated
        assert decision.identity_id == alice["user_id"]

    def test_low_quality_rejected(self, service, alice):
        with pytest.raises(ValidationError) as exc_info:
            self.enroll(service, alice["user_id"], quality=0.55)

        assert exc_info.value.field == "quality"
        assert "0.60" in exc_info.value.message

    @pytest.mark.parametrize("quality", [-0.1, 1.5, float("nan"), True])
    def test_quality_out_of_range(self, service, alice, quality):
        with pytest.raises(ValidationError) as exc_info:
            self.enroll(service, alice["user_id"], quality=quality)
        assert exc_info.value.field == "quality"

    def test_quality_at_minimum_accepted(self, service, alice):
        assert self.enroll(service, alice["user_id"], quality=0.60).quality == 0.60

    @pytest.mark.parametrize("embedding", [
        [0.1] * 233,
        [0.1] * 235,
        [0.1] * 233 + [float("nan")],
        [0.1] * 233 + [float("-inf")],
    ])
    def test_invalid_embedding(self, service, alice, embedding):
        with pytest.raises(ValidationError) as exc_info:
            self.enroll(service, alice["user_id"], embedding=embedding)
        assert exc_info.value.field == "face_embedding"

    @pytest.mark.parametrize("user_id", ["", "   ", None])
    def test_invalid_user_id(self, service, user_id):
        with pytest.raises(ValidationError) as exc_info:
            self.enroll(service, user_id)
        assert exc_info.value.field == "user_id"

    def test_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            self.enroll(service, "usr_missing")

    def test_second_enrollment_conflicts(self, service, alice):
        self.enroll(service, alice["user_id"])
        with pytest.raises(ConflictError):
            self.enroll(service, alice["user_id"], embedding=unit(1))

    def test_suspicious_client_rejected_before_validation(self, service, alice):
        with pytest.raises(SecurityViolation):
            self.enroll(service, alice["user_id"], quality=0.1, agent="curl/8.4.0 (x86_64)")

    def test_unknown_client_skips_suspicious_check(self, service, alice):
        outcome = self.enroll(service, alice["user_id"], client="unknown", agent="")
        assert outcome.user_id == alice["user_id"]

    def test_sixth_attempt_rate_limited(self, service, store, clock):
        users = [store.create_user(f"User {i}", f"user{i}@example.com") for i in range(6)]

        for user in users[:5]:
            self.enroll(service, user["user_id"])

        with pytest.raises(RateLimitExceeded) as exc_info:
            self.enroll(service, users[5]["user_id"])

        assert exc_info.value.reset_time > clock.now
        assert not store.has_enrollment(users[5]["user_id"])

    def test_failed_validation_still_consumes_quota(self, service, alice, clock):
        for _ in range(5):
            with pytest.raises(ValidationError):
                self.enroll(service, alice["user_id"], quality=0.1)

        with pytest.raises(RateLimitExceeded):
            self.enroll(service, alice["user_id"])

    def test_checked_client_is_counted_once(self, service, store):
        users = [store.create_user(f"User {i}", f"user{i}@example.com") for i in range(5)]

        for user in users:
            service.check_client("1.2.3.4", BROWSER_UA)
            service.enroll(user["user_id"], unit(0), 0.9, client_key="1.2.3.4",
                           client_agent=BROWSER_UA, client_checked=True)

        with pytest.raises(RateLimitExceeded):
            service.check_client("1.2.3.4", BROWSER_UA)

    def test_check_client_rejects_suspicious_agent(self, service):
        with pytest.raises(SecurityViolation):
            service.check_client("1.2.3.4", "Googlebot/2.1 (+http://www.google.com/bot.html)")


class TestAnalyzeLandmarks:
    """Tests for FaceAuthService.analyze_landmarks."""

    def test_good_frame_is_ready(self, service):
        analysis = service.analyze_landmarks(make_face())

        assert len(analysis.embedding) == DIM
        assert analysis.quality == pytest.approx(1.0)
        assert analysis.ready_for_enrollment
        assert analysis.details["level_ok"]

    def test_accepts_landmark_dicts(self, service):
        points = make_face()
        as_dicts = [{"x": x, "y": y, "z": z} for x, y, z in points]
        np.testing.assert_allclose(
            service.analyze_landmarks(as_dicts).embedding,
            service.analyze_landmarks(points).embedding,
        )

    def test_truncated_frame_is_not_ready(self, service):
        analysis = service.analyze_landmarks(make_face()[:300])
        assert analysis.quality == 0.0
        assert not analysis.ready_for_enrollment
        assert len(analysis.embedding) < DIM

    def test_analysis_output_can_be_enrolled(self, service, store):
        user = store.create_user("Carol", "carol@example.com")
        analysis = service.analyze_landmarks(make_face())

        outcome = service.enroll(user["user_id"], analysis.embedding, analysis.quality,
                                 client_key="1.2.3.4", client_agent=BROWSER_UA)
        assert outcome.quality == pytest.approx(1.0)

    def test_malformed_landmarks(self, service):
        with pytest.raises(ValidationError) as exc_info:
            service.analyze_landmarks([[0.1, 0.2, 0.3, 0.4]])
        assert exc_info.value.field == "landmarks"


class TestHelpers:
    """Tests for module helpers."""

    def test_validate_embedding_accepts_numpy(self):
        result = validate_embedding(np.ones(4))
        assert result.dtype == np.float64

    def test_validate_embedding_expected_length(self):
        with pytest.raises(ValidationError):
            validate_embedding([1.0, 2.0], expected_length=3)

    def test_performance_timer(self):
        with PerformanceTimer("noop") as timer:
            pass
        assert timer.elapsed_ms >= 0.0
