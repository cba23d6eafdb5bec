"""In-memory doubles for Redis and the URL repository."""

from collections import defaultdict

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from sqlalchemy.exc import OperationalError, SQLAlchemyError


class FakePipeline:
    def __init__(self, client: "FakeRedis") -> None:
        self._client = client
        self._ops: list[tuple[str, int, str]] = []

    def lrem(self, key: str, count: int, value: str) -> "FakePipeline":
        self._ops.append((key, count, value))
        return self

    async def execute(self) -> list[int]:
        self._client._check("execute")
        return [await self._client.lrem(*op) for op in self._ops]


class FakeRedis:
    """In-memory stand-in for the redis.asyncio list and string commands the store uses.

    ``fail(command, times)`` makes the next ``times`` calls of ``command``
    raise a ConnectionError (or ``error`` when given); ``times=None`` fails
    forever.
    """

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = defaultdict(list)
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.calls: dict[str, int] = defaultdict(int)
        self.closed = False
        self._failures: dict[str, tuple[int | None, type[RedisError]]] = {}

    def fail(self, command: str, times: int | None = None, error: type[RedisError] = RedisConnectionError) -> None:
        self._failures[command] = (times, error)

    def heal(self) -> None:
        self._failures.clear()

    def _check(self, command: str) -> None:
        self.calls[command] += 1
        if command not in self._failures:
            return
        remaining, error = self._failures[command]
        if remaining is not None:
            if remaining <= 1:
                del self._failures[command]
            else:
                self._failures[command] = (remaining - 1, error)
        raise error(f"{command} failed")

    async def ping(self) -> bool:
        self._check("ping")
        return True

    async def lpop(self, key: str) -> str | None:
        self._check("lpop")
        items = self.lists.get(key)
        if not items:
            return None
        return items.pop(0)

    async def rpush(self, key: str, *values: str) -> int:
        self._check("rpush")
        self.lists[key].extend(values)
        return len(self.lists[key])

    async def llen(self, key: str) -> int:
        self._check("llen")
        return len(self.lists.get(key, []))

    async def lrem(self, key: str, count: int, value: str) -> int:
        items = self.lists.get(key, [])
        kept = [item for item in items if item != value]
        removed = len(items) - len(kept)
        self.lists[key] = kept
        return removed

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        removed = 0
        for key in keys:
            if self.lists.pop(key, None) is not None:
                removed += 1
            if self.values.pop(key, None) is not None:
                removed += 1
        return removed

    async def get(self, key: str) -> str | None:
        self._check("get")
        return self.values.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check("set")
        self.values[key] = value
        self.ttls[key] = ex
        return True

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def aclose(self) -> None:
        self.closed = True


class FakeUrlRepository:
    """Repository double; ``reachable`` decides whether SELECT 1 succeeds."""

    def __init__(self, used_codes: list[str] | None = None, connected: bool = True) -> None:
        self.used_codes = list(used_codes or [])
        self.is_connected = connected
        self.reachable = connected
        self.error: Exception | None = None
        self.list_calls = 0
        self.health_calls = 0

    async def connect(self) -> bool:
        try:
            return await self.health_check()
        except SQLAlchemyError:
            return False

    async def health_check(self) -> bool:
        self.health_calls += 1
        if self.error is not None:
            self.is_connected = False
            raise self.error
        if not self.reachable:
            self.is_connected = False
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))
        self.is_connected = True
        return True

    async def list_all_short_codes(self) -> list[str]:
        self.list_calls += 1
        if self.error is not None:
            raise self.error
        return list(self.used_codes)

    async def close(self) -> None:
        self.is_connected = False
