"""Tests for the Redis-backed rule repository."""

from __future__ import annotations

import re
import uuid

import fakeredis
import pytest
from redis.exceptions import ResponseError

from quota_service.domain.contracts import CreateRuleInput, UpdateRulePatch
from quota_service.domain.errors import DuplicateKeyError, InvalidRuleError, InvalidSegmentError
from quota_service.repository import RuleRepository, generate_id
from quota_service.store import KeyLayout

UUID4_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis(decode_responses=True)
    client.flushall()
    return client


@pytest.fixture()
def repository(redis_client) -> RuleRepository:
    return RuleRepository(redis_client, layout=KeyLayout(prefix="test"))


@pytest.fixture()
def unique_key() -> str:
    return f"test_{uuid.uuid4().hex}"


def test_create_then_find_round_trips(repository, unique_key):
    created = repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    assert UUID4_PATTERN.match(created.id)
    assert (created.key, created.max, created.time) == (unique_key, 10, "minute")

    found = repository.find(unique_key)
    assert found == created


def test_create_writes_documented_key_layout(repository, redis_client, unique_key):
    rule = repository.create(CreateRuleInput(key=unique_key, max=5, time="hour"))
    assert redis_client.get(f"test:rules:key:{unique_key}") == rule.id
    assert redis_client.hgetall(f"test:rules:id:{rule.id}") == {
        "key": unique_key,
        "max": "5",
        "time": "hour",
    }


def test_create_rejects_invalid_segment_without_writing(repository, redis_client, unique_key):
    with pytest.raises(InvalidSegmentError):
        repository.create(CreateRuleInput(key=unique_key, max=10, time="invalid"))
    assert repository.find(unique_key) is None
    assert redis_client.keys("test:*") == []


def test_create_rejects_segment_that_is_not_tracked(redis_client, unique_key):
    repository = RuleRepository(redis_client, layout=KeyLayout(prefix="test"), tracked_segments=["minute", "hour"])
    with pytest.raises(InvalidSegmentError):
        repository.create(CreateRuleInput(key=unique_key, max=10, time="year"))
    assert repository.find(unique_key) is None


@pytest.mark.parametrize("max_value", [0, -1, 2.5, "10", True])
def test_create_input_rejects_invalid_max(unique_key, max_value):
    with pytest.raises(InvalidRuleError):
        CreateRuleInput(key=unique_key, max=max_value, time="minute")


def test_create_rejects_duplicate_key(repository, unique_key):
    first = repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    with pytest.raises(DuplicateKeyError):
        repository.create(CreateRuleInput(key=unique_key, max=99, time="hour"))
    assert repository.find(unique_key) == first


def test_find_returns_none_for_unknown_key(repository):
    assert repository.find("nonexistent") is None
    assert repository.find_id("nonexistent") is None


def test_find_treats_missing_metadata_as_not_found(repository, redis_client, unique_key):
    rule = repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    redis_client.delete(f"test:rules:id:{rule.id}")

    assert repository.find_id(unique_key) == rule.id
    assert repository.find(unique_key) is None


def test_find_treats_incomplete_metadata_as_not_found(repository, redis_client, unique_key):
    rule = repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    redis_client.hdel(f"test:rules:id:{rule.id}", "time")
    assert repository.find(unique_key) is None


def test_update_changes_max(repository, unique_key):
    repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    assert repository.update(unique_key, UpdateRulePatch(max=20)) is True
    updated = repository.find(unique_key)
    assert updated.max == 20
    assert updated.time == "minute"


def test_update_unknown_key_creates_nothing(repository, redis_client):
    assert repository.update("nonexistent", UpdateRulePatch(max=20)) is False
    assert redis_client.keys("test:*") == []


def test_update_does_not_resurrect_orphaned_mapping(repository, redis_client, unique_key):
    rule = repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    redis_client.delete(f"test:rules:id:{rule.id}")
    assert repository.update(unique_key, UpdateRulePatch(max=20)) is False
    assert not redis_client.exists(f"test:rules:id:{rule.id}")


def test_remove_deletes_rule_and_all_counters(repository, redis_client, unique_key):
    rule = repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    for segment in ("minute", "hour", "year"):
        redis_client.set(f"test:counters:{rule.id}:{segment}", 3)

    assert repository.remove(unique_key) is True
    assert repository.find(unique_key) is None
    assert redis_client.keys("test:*") == []


def test_remove_is_idempotent(repository, unique_key):
    repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    assert repository.remove(unique_key) is True
    assert repository.remove(unique_key) is False


def test_key_can_be_reused_after_remove(repository, unique_key):
    first = repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    repository.remove(unique_key)
    second = repository.create(CreateRuleInput(key=unique_key, max=3, time="hour"))
    assert second.id != first.id
    assert repository.find(unique_key).max == 3


def test_generate_id_is_uuid4():
    ids = {generate_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(UUID4_PATTERN.match(value) for value in ids)


def _remove_after_lookup(repository: RuleRepository, key: str, monkeypatch) -> None:
    original_find_id = repository.find_id

    def _find_then_remove(lookup_key: str):
        rule_id = original_find_id(lookup_key)
        monkeypatch.setattr(repository, "find_id", original_find_id)
        repository.remove(key)
        return rule_id

    monkeypatch.setattr(repository, "find_id", _find_then_remove)


def test_update_racing_remove_leaves_no_orphaned_record(repository, redis_client, unique_key, monkeypatch):
    repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    _remove_after_lookup(repository, unique_key, monkeypatch)

    assert repository.update(unique_key, UpdateRulePatch(max=9)) is False
    assert redis_client.keys("test:*") == []


def test_update_racing_remove_without_lua(repository, redis_client, unique_key, monkeypatch):
    def _reject(*args, **kwargs):
        raise ResponseError("unknown command `evalsha`, with args beginning with: ")

    monkeypatch.setattr(repository, "_update_script", _reject)
    repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    _remove_after_lookup(repository, unique_key, monkeypatch)

    assert repository.update(unique_key, UpdateRulePatch(max=9)) is False
    assert redis_client.keys("test:*") == []


def test_update_without_lua_changes_max(repository, unique_key, monkeypatch):
    def _reject(*args, **kwargs):
        raise ResponseError("unknown command `evalsha`, with args beginning with: ")

    monkeypatch.setattr(repository, "_update_script", _reject)
    repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    assert repository.update(unique_key, UpdateRulePatch(max=25)) is True
    assert repository.find(unique_key).max == 25


def test_update_after_key_reuse_targets_current_rule(repository, redis_client, unique_key):
    first = repository.create(CreateRuleInput(key=unique_key, max=10, time="minute"))
    repository.remove(unique_key)
    second = repository.create(CreateRuleInput(key=unique_key, max=4, time="hour"))

    assert repository.update(unique_key, UpdateRulePatch(max=7)) is True
    assert repository.find(unique_key).max == 7
    assert not redis_client.exists(f"test:rules:id:{first.id}")
    assert redis_client.hget(f"test:rules:id:{second.id}", "max") == "7"
