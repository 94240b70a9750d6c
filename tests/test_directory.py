from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Iterator, List

import pytest

from app.config import PointsSettings, Settings
from app.directory import (
    MAX_CODE_ATTEMPTS,
    ReferralCodeExhaustedError,
    UserDirectory,
    sample_users,
)
from app.models import RegistrationInput, User


class FakeClock:
    def __init__(self) -> None:
        self._ticks = count()
        self.start = datetime(2025, 6, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.start + timedelta(seconds=next(self._ticks))


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def directory(clock: FakeClock) -> UserDirectory:
    return UserDirectory(clock=clock)


def _register(directory: UserDirectory, name: str, email: str, code: str | None = None):
    return directory.register(RegistrationInput(name=name, email=email, referral_code=code))


def _scripted_tokens(*chunks: bytes):
    iterator: Iterator[bytes] = iter(chunks)

    def _source(size: int) -> bytes:
        assert size == 3
        return next(iterator)

    return _source


def test_seed_users_are_loaded_in_order(directory: UserDirectory) -> None:
    users = directory.list_users()

    assert [user.name for user in users] == ["Alice Johnson", "Bob Smith", "Carol Davis"]
    assert [user.points for user in users] == [0, 20, 50]
    assert directory.next_id == 4


def test_register_with_referral_code_credits_referrer(directory: UserDirectory) -> None:
    before = directory.find_by_referral_code("ABC123")
    assert before is not None

    result = _register(directory, "John Doe", "john@example.com", "ABC123")

    assert result.success
    assert result.status_code == 201
    assert result.user is not None
    assert result.user.id == 4
    assert result.user.points == 0
    assert result.user.referral_code != "ABC123"
    assert re.fullmatch(r"[A-Z0-9]{6}", result.user.referral_code)
    assert result.user.created_at == result.user.updated_at

    alice = directory.find_by_referral_code("ABC123")
    assert alice is not None
    assert alice.points == 10
    assert alice.updated_at > before.updated_at


def test_register_without_code_leaves_others_untouched(directory: UserDirectory) -> None:
    before = {user.id: (user.points, user.updated_at) for user in directory.list_users()}

    result = _register(directory, "Jane Roe", "jane@example.com")

    assert result.success
    after = {user.id: (user.points, user.updated_at) for user in directory.list_users() if user.id in before}
    assert after == before


def test_register_sanitizes_input(directory: UserDirectory) -> None:
    result = _register(directory, "  John Doe  ", "  John@Example.COM ", " abc123 ")

    assert result.success
    assert result.user is not None
    assert result.user.name == "John Doe"
    assert result.user.email == "john@example.com"


def test_duplicate_email_is_rejected(directory: UserDirectory) -> None:
    result = _register(directory, "Test", "alice@example.com")

    assert not result.success
    assert result.status_code == 409
    assert result.error == "Email already exists"


def test_duplicate_email_check_ignores_case(directory: UserDirectory) -> None:
    result = _register(directory, "Test", "ALICE@Example.com")

    assert result.status_code == 409


def test_unknown_referral_code_is_rejected(directory: UserDirectory) -> None:
    result = _register(directory, "Test", "t@example.com", "ZZZZZZ")

    assert not result.success
    assert result.status_code == 400
    assert result.error == "Invalid referral code"
    assert len(directory) == 3


def test_validation_failure_joins_messages(directory: UserDirectory) -> None:
    result = _register(directory, "A", "t@example.com")

    assert not result.success
    assert result.status_code == 400
    assert result.error is not None
    assert "Name must be at least 2 characters long" in result.error

    combined = _register(directory, "", "bad")
    assert combined.error == "Name cannot be empty, Email must be at least 5 characters long, Email format is invalid"


def test_failed_registration_does_not_consume_an_id(directory: UserDirectory) -> None:
    _register(directory, "Test", "alice@example.com")
    result = _register(directory, "Jane Roe", "jane@example.com")

    assert result.user is not None
    assert result.user.id == 4


def test_ids_are_strictly_increasing(directory: UserDirectory) -> None:
    ids = []
    for index in range(5):
        result = _register(directory, f"User {index}", f"user{index}@example.com")
        assert result.user is not None
        ids.append(result.user.id)

    assert ids == [4, 5, 6, 7, 8]
    assert directory.next_id == 9


def test_registered_users_keep_unique_emails_and_codes(directory: UserDirectory) -> None:
    for index in range(25):
        referrer = directory.list_users()[index % 3].referral_code
        _register(directory, f"User {index}", f"user{index}@example.com", referrer)

    users = directory.list_users()
    assert len({user.email for user in users}) == len(users)
    assert len({user.referral_code for user in users}) == len(users)


def test_generate_referral_code_retries_on_collision(clock: FakeClock) -> None:
    directory = UserDirectory(
        clock=clock,
        token_source=_scripted_tokens(bytes.fromhex("abc123"), bytes.fromhex("0a0b0c")),
    )

    assert directory.generate_referral_code() == "0A0B0C"


def test_generate_referral_code_raises_when_exhausted(caplog: pytest.LogCaptureFixture) -> None:
    directory = UserDirectory(token_source=lambda size: bytes.fromhex("abc123"))

    with caplog.at_level(logging.ERROR, logger="referrals.directory"):
        with pytest.raises(ReferralCodeExhaustedError):
            directory.generate_referral_code()

    assert str(MAX_CODE_ATTEMPTS) in caplog.text


def test_exhausted_code_space_surfaces_internal_error() -> None:
    directory = UserDirectory(token_source=lambda size: bytes.fromhex("abc123"))

    result = _register(directory, "John Doe", "john@example.com", "ABC123")

    assert not result.success
    assert result.status_code == 500
    assert result.error == "Internal server error"
    assert len(directory) == 3
    alice = directory.find_by_referral_code("ABC123")
    assert alice is not None and alice.points == 0


def test_referral_bonus_is_configurable(clock: FakeClock) -> None:
    settings = Settings(points=PointsSettings(referral_bonus=25, initial_points=5))
    directory = UserDirectory(settings=settings, clock=clock)

    result = _register(directory, "John Doe", "john@example.com", "DEF456")

    assert result.user is not None
    assert result.user.points == 5
    bob = directory.find_by_referral_code("DEF456")
    assert bob is not None and bob.points == 45


def test_lookup_by_code_ignores_case_and_whitespace(directory: UserDirectory) -> None:
    upper = directory.find_by_referral_code("ABC123")
    lower = directory.find_by_referral_code(" abc123 ")

    assert upper is not None and lower is not None
    assert upper.id == lower.id == 1


def test_lookup_handles_missing_values(directory: UserDirectory) -> None:
    assert directory.find_by_referral_code(None) is None
    assert directory.find_by_referral_code(123456) is None
    assert directory.find_by_referral_code("INVALID") is None
    assert directory.find_by_email(None) is None
    assert directory.find_by_email("nobody@example.com") is None


def test_lookup_by_email_ignores_case(directory: UserDirectory) -> None:
    user = directory.find_by_email("ALICE@EXAMPLE.COM")

    assert user is not None
    assert user.name == "Alice Johnson"


def test_get_by_id(directory: UserDirectory) -> None:
    user = directory.get_by_id(2)

    assert user is not None
    assert user.name == "Bob Smith"
    assert directory.get_by_id(99) is None


def test_returned_users_are_detached(directory: UserDirectory) -> None:
    user = directory.get_by_id(1)
    assert user is not None
    user.points = 1000

    refreshed = directory.get_by_id(1)
    assert refreshed is not None and refreshed.points == 0


def test_update_points_applies_delta(directory: UserDirectory, clock: FakeClock) -> None:
    result = directory.update_points(2, -25)

    assert result.success
    assert result.status_code == 200
    assert result.user is not None
    assert result.user.points == -5
    assert result.user.updated_at >= clock.start


def test_update_points_for_unknown_user(directory: UserDirectory) -> None:
    result = directory.update_points(42, 10)

    assert not result.success
    assert result.status_code == 404
    assert result.error == "User not found"


def test_statistics_on_seed_data(directory: UserDirectory) -> None:
    stats = directory.statistics()

    assert stats.total_users == 3
    assert stats.total_points == 70
    assert stats.average_points == 23
    assert [entry.name for entry in stats.top_users] == ["Carol Davis", "Bob Smith", "Alice Johnson"]


def test_statistics_do_not_reorder_listing(directory: UserDirectory) -> None:
    directory.statistics()

    assert [user.id for user in directory.list_users()] == [1, 2, 3]


def test_statistics_limit_top_users_to_five(directory: UserDirectory) -> None:
    for index in range(4):
        _register(directory, f"User {index}", f"user{index}@example.com")

    assert len(directory.statistics().top_users) == 5


def test_statistics_round_half_up() -> None:
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    users: List[User] = [
        User(1, "One", "one@example.com", "AAAAAA", 1, created, created),
        User(2, "Two", "two@example.com", "BBBBBB", 4, created, created),
    ]

    assert UserDirectory(users).statistics().average_points == 3


def test_statistics_for_empty_directory() -> None:
    stats = UserDirectory([]).statistics()

    assert stats.total_users == 0
    assert stats.total_points == 0
    assert stats.average_points == 0
    assert stats.top_users == []


def test_empty_directory_starts_ids_at_one() -> None:
    directory = UserDirectory([])
    result = _register(directory, "First User", "first@example.com")

    assert result.user is not None
    assert result.user.id == 1


def test_seed_data_is_copied() -> None:
    seed = sample_users()
    directory = UserDirectory(seed)
    seed[0].points = 99

    alice = directory.get_by_id(1)
    assert alice is not None and alice.points == 0


@pytest.mark.parametrize(
    "mutate, message",
    [
        (lambda users: setattr(users[1], "email", "alice@example.com"), "Duplicate email"),
        (lambda users: setattr(users[0], "email", "Dave@Example.com"), "trimmed and lower-case"),
        (lambda users: setattr(users[1], "email", " bob@example.com"), "trimmed and lower-case"),
        (lambda users: setattr(users[0], "id", 0), "positive integer"),
        (lambda users: setattr(users[1], "referral_code", "ABC123"), "Duplicate referral code"),
        (lambda users: setattr(users[0], "referral_code", "abc123"), "Invalid referral code"),
        (lambda users: setattr(users[2], "id", 1), "Duplicate user ids"),
    ],
)
def test_invalid_seed_data_is_rejected(mutate, message: str) -> None:
    users = sample_users()
    mutate(users)

    with pytest.raises(ValueError, match=message):
        UserDirectory(users)


def test_register_with_malformed_input_returns_internal_error() -> None:
    directory = UserDirectory()

    result = directory.register(None)  # type: ignore[arg-type]

    assert not result.success
    assert result.status_code == 500
    assert result.error == "Internal server error"
    assert len(directory) == 3


def test_lookup_by_invalid_id_returns_nothing(directory: UserDirectory) -> None:
    assert directory.get_by_id(0) is None
    assert directory.get_by_id(True) is None  # type: ignore[arg-type]
    assert directory.get_by_id("1") is None  # type: ignore[arg-type]

    result = directory.update_points(-1, 10)
    assert result.status_code == 404


def test_concurrent_registrations_keep_invariants() -> None:
    directory = UserDirectory()
    emails = [f"racer{index}@example.com" for index in range(5)]
    barrier = threading.Barrier(20)
    results = []
    results_lock = threading.Lock()

    def _worker(worker_id: int) -> None:
        barrier.wait()
        for attempt in range(10):
            email = emails[(worker_id + attempt) % len(emails)]
            outcome = _register(directory, f"Racer {worker_id}", email, "ABC123")
            with results_lock:
                results.append(outcome)

    threads = [threading.Thread(target=_worker, args=(worker_id,)) for worker_id in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    created = [result for result in results if result.success]
    assert len(created) == len(emails)
    assert all(result.status_code == 409 for result in results if not result.success)

    users = directory.list_users()
    assert len(users) == 3 + len(emails)
    assert len({user.email for user in users}) == len(users)
    assert len({user.referral_code for user in users}) == len(users)
    assert sorted(user.id for user in users) == list(range(1, len(users) + 1))

    alice = directory.find_by_referral_code("ABC123")
    assert alice is not None and alice.points == 10 * len(emails)


def test_concurrent_point_updates_are_not_lost() -> None:
    directory = UserDirectory()

    def _worker() -> None:
        for _ in range(100):
            directory.update_points(2, 1)

    threads = [threading.Thread(target=_worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    bob = directory.get_by_id(2)
    assert bob is not None and bob.points == 20 + 1000
