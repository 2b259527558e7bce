import fnmatch
import random
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional


@dataclass(frozen=True)
class LimitRule:
    domain_glob: str
    parallelism: int = 1
    delay_seconds: float = 0.0
    random_delay: float = 0.0

    def applies_to(self, host: str) -> bool:
        return fnmatch.fnmatch(host, self.domain_glob)


class RateLimiter:
    """Per-host spacing of request starts: a fixed delay plus uniform jitter in [0, random_delay)."""

    def __init__(
        self,
        delay_seconds: float,
        random_delay: float = 0.0,
        now: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
        rand: Callable[[], float] | None = None,
    ):
        self.delay_seconds = delay_seconds
        self.random_delay = random_delay
        self._host_next_time: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._now = now or time.monotonic
        self._sleep = sleep or time.sleep
        self._rand = rand or random.random

    def _gap(self) -> float:
        jitter = self.random_delay * self._rand() if self.random_delay > 0 else 0.0
        return self.delay_seconds + jitter

    def wait_turn(self, netloc: str) -> None:
        if self.delay_seconds <= 0 and self.random_delay <= 0:
            return
        with self._lock:
            now = self._now()
            next_allowed = self._host_next_time.get(netloc, 0.0)
            if next_allowed > now:
                sleep_for = next_allowed - now
            else:
                sleep_for = 0.0
            self._host_next_time[netloc] = max(next_allowed, now) + self._gap()
        if sleep_for > 0:
            self._sleep(sleep_for)


class Politeness:
    """Applies a LimitRule to matching hosts: bounded in-flight requests and spaced starts.

    Hosts that do not match the rule are neither bounded nor delayed.
    """

    def __init__(self, rule: LimitRule, limiter: Optional[RateLimiter] = None):
        self.rule = rule
        self.limiter = limiter or RateLimiter(rule.delay_seconds, rule.random_delay)
        self._slots: Dict[str, threading.BoundedSemaphore] = {}
        self._lock = threading.Lock()

    def _slot_for(self, host: str) -> threading.BoundedSemaphore:
        with self._lock:
            sem = self._slots.get(host)
            if sem is None:
                sem = threading.BoundedSemaphore(max(1, self.rule.parallelism))
                self._slots[host] = sem
            return sem

    @contextmanager
    def slot(self, host: str) -> Iterator[None]:
        if not self.rule.applies_to(host):
            yield
            return
        sem = self._slot_for(host)
        with sem:
            self.limiter.wait_turn(host)
            yield
