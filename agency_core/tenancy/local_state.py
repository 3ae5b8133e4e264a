from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

from pydantic import ValidationError

from agency_core.tenancy.schemas import CachedTenantSelection


logger = logging.getLogger("agency_core.tenancy.local_state")

CURRENT_TENANT_KEY = "current_tenant"
DEMO_MODE_KEY_PREFIX = "demo_mode:"


def demo_mode_key(user_id: str) -> str:
    return f"{DEMO_MODE_KEY_PREFIX}{user_id}"


class LocalStateStore(Protocol):
    """Non-authoritative key-value state shared by the execution contexts of one machine.

    Writes never raise; a failed write is logged and the previous value stays in place.
    """

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemoryLocalState:
    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._lock = Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


class JsonFileLocalState:
    """JSON document on disk. Every read goes to the file so peers see each other's writes."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            document = self._read()
            document[key] = value
            self._write(document)

    def delete(self, key: str) -> None:
        with self._lock:
            document = self._read()
            if key in document:
                del document[key]
                self._write(document)

    def _read(self) -> dict[str, Any]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("local_state.read.failed", extra={"error": str(exc)})
            return {}
        try:
            document = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            logger.warning("local_state.corrupt", extra={"error": str(exc)})
            return {}
        return document if isinstance(document, dict) else {}

    def _write(self, document: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".agency_state.", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, separators=(",", ":"), default=str)
            os.replace(tmp_name, self._path)
        except OSError as exc:
            logger.warning("local_state.write.failed", extra={"error": str(exc)})


def build_local_state(path: str | None) -> LocalStateStore:
    if path:
        return JsonFileLocalState(path)
    return InMemoryLocalState()


def read_cached_selection(store: LocalStateStore) -> CachedTenantSelection | None:
    raw = store.get(CURRENT_TENANT_KEY)
    if not raw:
        return None
    try:
        return CachedTenantSelection.model_validate(raw)
    except ValidationError:
        logger.warning("local_state.selection.invalid")
        return None


def write_cached_selection(store: LocalStateStore, selection: CachedTenantSelection) -> None:
    store.set(CURRENT_TENANT_KEY, selection.model_dump(mode="json"))


def clear_cached_selection(store: LocalStateStore) -> None:
    store.delete(CURRENT_TENANT_KEY)


def read_demo_mode(store: LocalStateStore, user_id: str) -> bool:
    return store.get(demo_mode_key(user_id)) is True


def write_demo_mode(store: LocalStateStore, user_id: str, enabled: bool) -> None:
    store.set(demo_mode_key(user_id), bool(enabled))
