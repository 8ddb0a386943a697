import asyncio
import logging
import math
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import redis

from app.core.config import Settings
from app.models.otp import OTPRecord

logger = logging.getLogger(__name__)

GLOB_SPECIAL = "\\*?[]"


def escape_glob(value: str) -> str:
    """Escape Redis MATCH pattern metacharacters so `value` matches literally."""
    return "".join(f"\\{char}" if char in GLOB_SPECIAL else char for char in value)


class OTPStore(ABC):
    """
    Keyed storage for OTP records with per-key expiry.

    All operations are synchronous so that a service call made from the event
    loop reads and writes the store without yielding in between.
    """

    @abstractmethod
    def put(self, key: str, record: OTPRecord, ttl_seconds: float) -> None:
        ...

    @abstractmethod
    def update(self, key: str, record: OTPRecord) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[OTPRecord]:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        ...

    @abstractmethod
    def records(self) -> List[OTPRecord]:
        ...

    def close(self) -> None:
        pass


class MemoryOTPStore(OTPStore):
    """
    Process-local store. Every `put` arms a one-shot timer on the running
    event loop that drops the key once its TTL elapses, so abandoned flows
    are reclaimed even if nobody calls verify.

    Contents are lost on restart and are not shared between processes.
    """

    def __init__(self):
        self._records: Dict[str, OTPRecord] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def put(self, key: str, record: OTPRecord, ttl_seconds: float) -> None:
        self._cancel_timer(key)
        self._records[key] = record
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(max(0.0, ttl_seconds), self._evict, key)

    def update(self, key: str, record: OTPRecord) -> None:
        # keeps the eviction timer armed by put()
        if key in self._records:
            self._records[key] = record

    def get(self, key: str) -> Optional[OTPRecord]:
        return self._records.get(key)

    def delete(self, key: str) -> bool:
        self._cancel_timer(key)
        return self._records.pop(key, None) is not None

    def keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._records if key.startswith(prefix)]

    def records(self) -> List[OTPRecord]:
        return list(self._records.values())

    def close(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        pending = len(self._timers)
        self._timers.clear()
        self._records.clear()
        logger.info(f"Memory OTP store closed, cancelled {pending} pending timers")

    def __len__(self) -> int:
        return len(self._records)

    def _evict(self, key: str) -> None:
        self._timers.pop(key, None)
        if self._records.pop(key, None) is not None:
            logger.debug(f"Evicted expired OTP record {key}")

    def _cancel_timer(self, key: str) -> None:
        handle = self._timers.pop(key, None)
        if handle:
            handle.cancel()


class RedisOTPStore(OTPStore):
    """
    Redis-backed store. Expiry is enforced by Redis itself (SETEX), so the
    one-record-per-key rule holds across every instance sharing the server.
    """

    def __init__(self, client: "redis.Redis", namespace: str = "otp:"):
        self.client = client
        self.namespace = namespace

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisOTPStore":
        client = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            decode_responses=True,
        )
        return cls(client)

    def _name(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def put(self, key: str, record: OTPRecord, ttl_seconds: float) -> None:
        self.client.setex(self._name(key), max(1, math.ceil(ttl_seconds)), record.model_dump_json())

    def update(self, key: str, record: OTPRecord) -> None:
        self.client.set(self._name(key), record.model_dump_json(), keepttl=True, xx=True)

    def get(self, key: str) -> Optional[OTPRecord]:
        raw = self.client.get(self._name(key))
        if raw is None:
            return None
        return OTPRecord.model_validate_json(raw)

    def delete(self, key: str) -> bool:
        return bool(self.client.delete(self._name(key)))

    def keys(self, prefix: str = "") -> List[str]:
        start = len(self.namespace)
        wanted = self._name(prefix)
        names = self.client.scan_iter(match=f"{escape_glob(wanted)}*")
        return [name[start:] for name in names if name.startswith(wanted)]

    def records(self) -> List[OTPRecord]:
        found = []
        for key in self.keys():
            record = self.get(key)
            if record is not None:
                found.append(record)
        return found

    def close(self) -> None:
        self.client.close()


def build_otp_store(settings: Settings) -> OTPStore:
    backend = settings.OTP_STORE_BACKEND.strip().lower()
    if backend == "redis":
        logger.info(f"Using Redis OTP store at {settings.REDIS_HOST}:{settings.REDIS_PORT}")
        return RedisOTPStore.from_settings(settings)
    if backend != "memory":
        raise ValueError(f"Unknown OTP store backend: {settings.OTP_STORE_BACKEND}")
    logger.info("Using in-memory OTP store")
    return MemoryOTPStore()
