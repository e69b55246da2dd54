"""
Pytest fixtures shared by the store and API tests
"""
import sys
sys.path.append(".")

import random
import threading
from collections import defaultdict

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import WatchError

from api.main import app, get_rng, get_store
from redis_store import RedisStore


class FakePipeline:
    """WATCH / MULTI / EXEC over FakeRedis with redis-py's calling conventions."""

    def __init__(self, client):
        self.client = client
        self.watched = {}
        self.immediate = False
        self.queued = []

    def watch(self, *keys):
        with self.client.lock:
            self.watched = {key: self.client.versions[key] for key in keys}
        self.immediate = True

    def multi(self):
        self.immediate = False

    def execute(self):
        with self.client.lock:
            changed = any(self.client.versions[key] != version
                          for key, version in self.watched.items())
            queued, self.queued, self.watched = self.queued, [], {}
            if changed:
                raise WatchError("Watched variable changed.")
            return [getattr(self.client, name)(*args) for name, args in queued]

    def __getattr__(self, name):
        command = getattr(self.client, name)
        if self.immediate:
            return command

        def queue(*args):
            self.queued.append((name, args))
            return self
        return queue


class FakeRedis:
    """In-memory stand-in for the Redis commands RedisStore uses."""

    def __init__(self):
        self.lists = defaultdict(list)
        self.hashes = defaultdict(dict)
        self.versions = defaultdict(int)
        self.lock = threading.RLock()

    @staticmethod
    def _bounds(length, start, end):
        if start < 0:
            start = max(0, length + start)
        if end < 0:
            end = length + end
        return start, end + 1

    def rpush(self, key, *values):
        with self.lock:
            self.lists[key].extend(values)
            self.versions[key] += 1
            return len(self.lists[key])

    def lrange(self, key, start, end):
        with self.lock:
            items = self.lists.get(key, [])
            lo, hi = self._bounds(len(items), start, end)
            return list(items[lo:hi])

    def ltrim(self, key, start, end):
        with self.lock:
            items = self.lists.get(key, [])
            lo, hi = self._bounds(len(items), start, end)
            self.lists[key] = items[lo:hi]
            self.versions[key] += 1
            return True

    def hget(self, key, field):
        with self.lock:
            return self.hashes.get(key, {}).get(field)

    def hset(self, key, field, value):
        with self.lock:
            is_new = field not in self.hashes[key]
            self.hashes[key][field] = value
            self.versions[key] += 1
            return int(is_new)

    def hgetall(self, key):
        with self.lock:
            return dict(self.hashes.get(key, {}))

    def delete(self, *keys):
        with self.lock:
            removed = 0
            for key in keys:
                removed += int(self.lists.pop(key, None) is not None)
                removed += int(self.hashes.pop(key, None) is not None)
                self.versions[key] += 1
            return removed

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def transaction(self, func, *watches, value_from_callable=False):
        while True:
            pipe = self.pipeline()
            try:
                pipe.watch(*watches)
                value = func(pipe)
                results = pipe.execute()
                return value if value_from_callable else results
            except WatchError:
                continue


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store(fake_redis):
    return RedisStore(client=fake_redis)


@pytest.fixture
def client(store):
    """API client wired to the in-memory store and a seeded RNG."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_rng] = lambda: random.Random(42)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides = {}
