from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Union

from log_setup import log_event
from utils import ResourceError, record_id

log = logging.getLogger(__name__)

KIND_DELETE = "delete"
KIND_TRANSITION = "transition"


@dataclass(frozen=True)
class UndoToken:
    token_id: str
    resource_type: str
    record_id: str
    deadline: float
    kind: str = KIND_DELETE
    used: bool = False


def is_valid(token: UndoToken, now: float) -> bool:
    return not token.used and now < token.deadline


@dataclass
class _Offer:
    token: UndoToken
    compensate: Callable[[], Any]
    on_expire: Optional[Callable[[UndoToken], Any]]


class UndoBroker:
    """Single-shot reversal of a committed delete or stage transition.

    Tokens carry an absolute ``deadline`` on the broker's clock. Nothing runs
    on a timer: expiry is checked when a token is invoked, and ``sweep()``
    drops expired offers and fires their ``on_expire`` callbacks.
    """

    def __init__(self, clock: Callable[[], float] | None = None):
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._offers: dict[str, _Offer] = {}

    def now(self) -> float:
        return self._clock()

    def offer(
        self,
        record: dict[str, Any],
        compensate: Callable[[], Any],
        *,
        resource_type: str,
        ttl_seconds: float,
        kind: str = KIND_DELETE,
        on_expire: Optional[Callable[[UndoToken], Any]] = None,
    ) -> UndoToken:
        token = UndoToken(
            token_id=f"UNDO-{uuid.uuid4()}",
            resource_type=str(resource_type or ""),
            record_id=record_id(record),
            deadline=self.now() + float(ttl_seconds),
            kind=kind,
        )
        with self._lock:
            self._offers[token.token_id] = _Offer(token=token, compensate=compensate, on_expire=on_expire)
        self.sweep()
        return token

    def get(self, token_id: str) -> Optional[UndoToken]:
        with self._lock:
            offer = self._offers.get(str(token_id))
            return offer.token if offer else None

    def pending(self) -> list[UndoToken]:
        now = self.now()
        with self._lock:
            return [o.token for o in self._offers.values() if is_valid(o.token, now)]

    def invoke(self, token: Union[UndoToken, str]) -> bool:
        token_id = token.token_id if isinstance(token, UndoToken) else str(token)
        now = self.now()
        with self._lock:
            offer = self._offers.get(token_id)
            if offer is None or not is_valid(offer.token, now):
                return False
            offer.token = replace(offer.token, used=True)
            del self._offers[token_id]

        try:
            offer.compensate()
        except ResourceError as e:
            log_event(
                log,
                "undo_failed",
                level=logging.WARNING,
                token=token_id,
                resource=offer.token.resource_type,
                record=offer.token.record_id,
                error=e.message,
            )
            return False
        except Exception:
            log.exception("undo compensating call raised token=%s", token_id)
            return False

        log_event(log, "undo", token=token_id, resource=offer.token.resource_type, record=offer.token.record_id)
        return True

    def sweep(self) -> int:
        now = self.now()
        with self._lock:
            expired = [o for o in self._offers.values() if not is_valid(o.token, now)]
            for o in expired:
                del self._offers[o.token.token_id]

        for o in expired:
            if o.on_expire is None:
                continue
            try:
                o.on_expire(o.token)
            except Exception:
                log.exception("undo on_expire callback failed token=%s", o.token.token_id)
        return len(expired)
