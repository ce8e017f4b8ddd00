"""Anchor clients: commit opaque vote records to an append-only ledger.

Contract
- commit(payload) -> handle; delivery is at-least-once
- confirm(handle) -> pending | committed | failed; pending may last forever
- entries() -> committed entries in confirmation order (tally read path)

`InMemoryLedger` is a reference ledger for tests and demos,
`HttpAnchorClient` talks to a ledger service over HTTP (see
`anonvote.ledger_service`).
"""

from __future__ import annotations

import abc
import base64
import enum
import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional

import requests

from . import config
from .errors import (
    AnchorError,
    AnchorTimeoutError,
    AnchorUnavailableError,
    DuplicateVoteError,
)
from .models import utcnow

logger = logging.getLogger(__name__)


class AnchorStatus(enum.Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass(frozen=True)
class AnchoredEntry:
    handle: str
    payload: bytes
    sequence: int
    confirmed_at: datetime


class AnchorClient(abc.ABC):
    @abc.abstractmethod
    def commit(self, payload: bytes, timeout: Optional[float] = None) -> str:
        ...

    @abc.abstractmethod
    def confirm(self, handle: str, timeout: Optional[float] = None) -> AnchorStatus:
        ...

    @abc.abstractmethod
    def entries(self) -> Iterator[AnchoredEntry]:
        ...


def await_confirmation(
    anchor: AnchorClient,
    handle: str,
    timeout: float = config.CONFIRM_TIMEOUT,
    poll_interval: float = config.CONFIRM_POLL_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> AnchorStatus:
    """Poll `confirm` until the handle leaves `pending`.

    Returns COMMITTED or FAILED. Raises AnchorTimeoutError once `timeout`
    seconds have passed with the entry still pending.
    """
    deadline = clock() + timeout
    while True:
        status = anchor.confirm(handle)
        if status is not AnchorStatus.PENDING:
            return status
        remaining = deadline - clock()
        if remaining <= 0:
            raise AnchorTimeoutError(f"{handle[:16]} still pending after {timeout}s")
        sleep(min(poll_interval, remaining))


## --- reference ledger ----------------------------------------------------


class _Tx:
    __slots__ = ("payload", "status", "polls")

    def __init__(self, payload: bytes):
        self.payload = payload
        self.status = AnchorStatus.PENDING
        self.polls = 0


class InMemoryLedger(AnchorClient):
    """Append-only ledger held in memory.

    Args
    - confirm_after: number of confirm polls a commit stays pending for
    - deduplicate: identical payloads map to one entry; with False every
      commit is stored, as an at-least-once ledger may do
    - unique_key: optional payload -> key function; a commit whose key is
      already held by a different payload raises DuplicateVoteError

    Test knobs: `available` (False makes every call raise
    AnchorUnavailableError), `stalled` (confirm never progresses), `drop()`
    and `seal()`.
    """

    def __init__(
        self,
        confirm_after: int = 0,
        deduplicate: bool = True,
        unique_key: Optional[Callable[[bytes], Optional[str]]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.confirm_after = confirm_after
        self.deduplicate = deduplicate
        self.unique_key = unique_key
        self.clock = clock
        self.available = True
        self.stalled = False
        self.commit_calls = 0
        self._lock = threading.Lock()
        self._txs: Dict[str, _Tx] = {}
        self._keys: Dict[str, bytes] = {}
        self._committed: List[AnchoredEntry] = []

    def _check_available(self) -> None:
        if not self.available:
            raise AnchorUnavailableError("ledger unavailable")

    def _append(self, handle: str, tx: _Tx) -> None:
        tx.status = AnchorStatus.COMMITTED
        entry = AnchoredEntry(
            handle=handle,
            payload=tx.payload,
            sequence=len(self._committed),
            confirmed_at=self.clock(),
        )
        self._committed.append(entry)
        logger.info("ledger committed %s at #%d", handle[:16], entry.sequence)

    def _check_unique(self, payload: bytes) -> None:
        if self.unique_key is None:
            return
        key = self.unique_key(payload)
        if key is None:
            return
        held = self._keys.get(key)
        if held is not None and held != payload:
            raise DuplicateVoteError("tag already anchored for this election")
        self._keys[key] = payload

    def commit(self, payload: bytes, timeout: Optional[float] = None) -> str:
        if not isinstance(payload, bytes):
            raise TypeError("payload must be bytes")
        with self._lock:
            self.commit_calls += 1
            self._check_available()
            self._check_unique(payload)
            handle = hashlib.sha256(payload).hexdigest()
            if not self.deduplicate:
                handle = f"{handle}-{len(self._txs)}"
            tx = self._txs.get(handle)
            if tx is None:
                self._txs[handle] = _Tx(payload)
            elif tx.status is AnchorStatus.FAILED:
                # resubmission of a dropped transaction
                tx.status = AnchorStatus.PENDING
                tx.polls = 0
            return handle

    def confirm(self, handle: str, timeout: Optional[float] = None) -> AnchorStatus:
        with self._lock:
            self._check_available()
            tx = self._txs.get(handle)
            if tx is None:
                return AnchorStatus.FAILED
            if tx.status is AnchorStatus.PENDING and not self.stalled:
                tx.polls += 1
                if tx.polls > self.confirm_after:
                    self._append(handle, tx)
            return tx.status

    def seal(self) -> int:
        """Commit every pending transaction, in submission order."""
        with self._lock:
            pending = [(h, tx) for h, tx in self._txs.items() if tx.status is AnchorStatus.PENDING]
            for handle, tx in pending:
                self._append(handle, tx)
            return len(pending)

    def knows(self, handle: str) -> bool:
        with self._lock:
            return handle in self._txs

    def drop(self, handle: str) -> None:
        with self._lock:
            tx = self._txs.get(handle)
            if tx is not None and tx.status is AnchorStatus.PENDING:
                tx.status = AnchorStatus.FAILED

    def entries(self) -> Iterator[AnchoredEntry]:
        with self._lock:
            snapshot = list(self._committed)
        return iter(snapshot)


## --- HTTP client -----------------------------------------------------------


class HttpAnchorClient(AnchorClient):
    """Anchor client for a ledger service speaking the JSON API below.

    - POST /commit {"payload": base64} -> {"handle": ...}
    - GET /confirm/<handle> -> {"status": "pending"|"committed"|"failed"}
    - GET /entries -> {"entries": [{"handle", "payload", "sequence", "confirmedAt"}]}
    """

    def __init__(
        self,
        base_url: str = config.ANCHOR_URL,
        session: Optional[requests.Session] = None,
        timeout: float = config.ANCHOR_REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, timeout: Optional[float] = None, **kwargs):
        try:
            r = self.session.request(
                method, f"{self.base_url}{path}", timeout=timeout or self.timeout, **kwargs
            )
        except requests.Timeout as e:
            raise AnchorTimeoutError(f"{method} {path} timed out") from e
        except requests.RequestException as e:
            raise AnchorUnavailableError(f"{method} {path} failed: {e}") from e
        if r.status_code >= 500:
            raise AnchorUnavailableError(f"{method} {path} returned {r.status_code}")
        return r

    @staticmethod
    def _json(r) -> dict:
        try:
            body = r.json()
        except ValueError:
            raise AnchorError("ledger returned invalid JSON") from None
        if not isinstance(body, dict):
            raise AnchorError("ledger returned unexpected JSON")
        return body

    def commit(self, payload: bytes, timeout: Optional[float] = None) -> str:
        r = self._request(
            "POST",
            "/commit",
            timeout,
            json={"payload": base64.b64encode(payload).decode("ascii")},
        )
        if r.status_code == 409:
            raise DuplicateVoteError(self._json(r).get("error") or "duplicate vote")
        if not r.ok:
            raise AnchorError(f"commit rejected with {r.status_code}")
        handle = self._json(r).get("handle")
        if not isinstance(handle, str) or not handle:
            raise AnchorError("commit response has no handle")
        return handle

    def confirm(self, handle: str, timeout: Optional[float] = None) -> AnchorStatus:
        r = self._request("GET", f"/confirm/{handle}", timeout)
        if r.status_code == 404:
            return AnchorStatus.FAILED
        if not r.ok:
            raise AnchorError(f"confirm rejected with {r.status_code}")
        try:
            return AnchorStatus(self._json(r).get("status"))
        except ValueError:
            raise AnchorError("confirm response has an unknown status") from None

    def entries(self) -> Iterator[AnchoredEntry]:
        r = self._request("GET", "/entries")
        if not r.ok:
            raise AnchorError(f"entries rejected with {r.status_code}")
        items = self._json(r).get("entries")
        if not isinstance(items, list):
            raise AnchorError("entries response has no list")
        out = []
        for item in items:
            try:
                out.append(
                    AnchoredEntry(
                        handle=item["handle"],
                        payload=base64.b64decode(item["payload"], validate=True),
                        sequence=int(item["sequence"]),
                        confirmed_at=datetime.fromisoformat(item["confirmedAt"]),
                    )
                )
            except (KeyError, TypeError, ValueError):
                raise AnchorError("malformed ledger entry") from None
        return iter(out)
