import logging
from typing import Any, Callable

from msgspec import Struct
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError
from redis.sentinel import MasterNotFoundError

from common.errors import ConflictError, TransientDependencyError
from common.retry import RetryPolicy, exponential_backoff, is_transient

DB_ERROR_STR = "DB error"

TRANSIENT_REDIS_ERRORS = (MasterNotFoundError, RedisConnectionError, RedisTimeoutError)

DB_RETRY_POLICY = RetryPolicy(max_attempts=5, backoff=exponential_backoff(base=0.1, factor=2.0, cap=2.0),
                              retry_on=is_transient, name="db")


class Write(Struct):
    key: str
    value: bytes
    ttl: int | None = None


class Delete(Struct):
    key: str


class AddMember(Struct):
    key: str
    member: str | int


class RemoveMember(Struct):
    key: str
    member: str | int


def queue_write(pipe, write):
    if isinstance(write, Write):
        pipe.set(write.key, write.value, ex=write.ttl)
    elif isinstance(write, Delete):
        pipe.delete(write.key)
    elif isinstance(write, AddMember):
        pipe.sadd(write.key, write.member)
    elif isinstance(write, RemoveMember):
        pipe.srem(write.key, write.member)
    else:
        raise TypeError(f"Unsupported write: {write!r}")


async def db_call(func, *args, **kwargs):
    try:
        return await func(*args, **kwargs)
    except TRANSIENT_REDIS_ERRORS as e:
        raise TransientDependencyError(f"{DB_ERROR_STR}: {type(e).__name__}: {e}") from e


async def retry_db_call(func, *args, policy: RetryPolicy = DB_RETRY_POLICY, **kwargs):
    return await policy.call(db_call, func, *args, **kwargs)


async def commit(db, writes: list):
    """Apply ``writes`` in one MULTI/EXEC block."""
    async with db.pipeline(transaction=True) as pipe:
        for write in writes:
            queue_write(pipe, write)
        await db_call(pipe.execute)


async def compare_and_swap(db,
                           keys: list[str],
                           transform: Callable[..., tuple[list[Write], Any]],
                           policy: RetryPolicy):
    """Optimistic read-modify-write over ``keys``.

    ``transform`` receives the current raw value of every key (``None`` when
    absent) and returns the writes to commit plus the value to hand back to the
    caller. The writes are committed only if none of the keys changed since they
    were read; a concurrent modification surfaces as ``ConflictError`` and is
    retried according to ``policy``. An empty write list commits nothing.
    """
    async def attempt():
        try:
            async with db.pipeline() as pipe:
                if keys:
                    await pipe.watch(*keys)
                current = [await pipe.get(key) for key in keys]
                writes, result = transform(*current)
                if not writes:
                    return result
                pipe.multi()
                for write in writes:
                    queue_write(pipe, write)
                await pipe.execute()
                return result
        except WatchError as e:
            logging.info(f"Concurrency conflict detected on {keys}. Transaction aborted.")
            raise ConflictError(f"Concurrent modification of {', '.join(keys)}") from e
        except TRANSIENT_REDIS_ERRORS as e:
            raise TransientDependencyError(f"{DB_ERROR_STR}: {type(e).__name__}: {e}") from e

    return await policy.call(attempt)
