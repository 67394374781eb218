import asyncio

from redis.exceptions import WatchError


def _to_bytes(value) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode()


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` with WATCH/MULTI semantics.

    Every write bumps a per-key version; a pipeline whose watched keys changed
    before ``execute`` fails with ``WatchError`` like the real server does.
    """

    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.sets: dict[str, set[bytes]] = {}
        self.versions: dict[str, int] = {}
        self.watch_failures = 0
        self.closed = False

    def _touch(self, key: str):
        self.versions[key] = self.versions.get(key, 0) + 1

    # immediate commands
    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.data:
            return None
        self.data[key] = _to_bytes(value)
        self._touch(key)
        return True

    async def mget(self, keys):
        return [self.data.get(k) for k in keys]

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None or self.sets.pop(key, None) is not None:
                removed += 1
            self._touch(key)
        return removed

    async def incr(self, key):
        return await self.incrby(key, 1)

    async def incrby(self, key, amount):
        value = int(self.data.get(key, b"0")) + amount
        self.data[key] = _to_bytes(value)
        self._touch(key)
        return value

    async def sadd(self, key, *members):
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(_to_bytes(m) for m in members)
        self._touch(key)
        return len(bucket) - before

    async def srem(self, key, *members):
        bucket = self.sets.get(key, set())
        before = len(bucket)
        bucket.difference_update(_to_bytes(m) for m in members)
        self._touch(key)
        return before - len(bucket)

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True


class FakePipeline:
    def __init__(self, db: FakeRedis):
        self.db = db
        self.watched: dict[str, int] = {}
        self.queue: list[tuple[str, tuple, dict]] = []
        self.in_multi = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.reset()

    async def reset(self):
        self.watched = {}
        self.queue = []
        self.in_multi = False

    async def watch(self, *keys):
        for key in keys:
            self.watched[key] = self.db.versions.get(key, 0)

    def multi(self):
        self.in_multi = True

    def _immediate(self) -> bool:
        return bool(self.watched) and not self.in_multi

    def get(self, key):
        if self._immediate():
            return self._read(key)
        self.queue.append(("get", (key,), {}))
        return self

    async def _read(self, key):
        # yield so concurrent read-modify-write cycles interleave
        await asyncio.sleep(0)
        return self.db.data.get(key)

    def __getattr__(self, name):
        if name in ("set", "delete", "sadd", "srem", "incr", "incrby"):
            def queue(*args, **kwargs):
                self.queue.append((name, args, kwargs))
                return self
            return queue
        raise AttributeError(name)

    async def execute(self):
        try:
            for key, version in self.watched.items():
                if self.db.versions.get(key, 0) != version:
                    self.db.watch_failures += 1
                    raise WatchError("Watched variable changed.")
            results = []
            for name, args, kwargs in self.queue:
                results.append(await getattr(self.db, name)(*args, **kwargs))
            return results
        finally:
            await self.reset()


class RecordingPublisher:
    """Async stand-in for ``KafkaProducerSingleton.publish``."""

    def __init__(self, fail_with: Exception | None = None, failures: int | None = None):
        self.published: list[tuple[object, tuple, str | None]] = []
        self.fail_with = fail_with
        # how many calls fail with ``fail_with``; None fails every call
        self.failures = failures

    async def __call__(self, event, topics, key=None, **kwargs):
        if self.fail_with is not None and self.failures != 0:
            if self.failures is not None:
                self.failures -= 1
            raise self.fail_with
        self.published.append((event, tuple(topics), key))

    def events(self, event_type=None) -> list:
        return [e for e, _, _ in self.published if event_type is None or isinstance(e, event_type)]


async def no_sleep(delay):
    return None
