import json
import logging
import os
import threading
import time
import uuid
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from cc_switch.config import get_config_dir
from cc_switch.errors import (
    CannotDeleteActiveProvider,
    DuplicateProviderId,
    ProviderNotFound,
    StoreFailure,
)
from cc_switch.services.app_types import AppType, parse_app_type
from cc_switch.utils.atomic_file import atomic_write_json, backup_path, timestamp_tag

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class Provider(BaseModel):
    """A named configuration profile for one external application.

    ``settings`` is opaque to the engine; it is named ``settingsConfig`` on the
    wire and on disk. Unknown fields sent by clients are kept as-is.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = ""
    name: str
    settings: Dict[str, Any] = Field(default_factory=dict, alias="settingsConfig")
    website_url: Optional[str] = Field(default=None, alias="websiteUrl")
    category: Optional[str] = None
    created_at: Optional[int] = Field(default=None, alias="createdAt")
    sort_index: Optional[int] = Field(default=None, alias="sortIndex")
    notes: Optional[str] = None
    meta: Optional[Any] = None
    icon: Optional[str] = None
    icon_color: Optional[str] = Field(default=None, alias="iconColor")
    in_failover_queue: Optional[bool] = Field(default=None, alias="inFailoverQueue")

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ProviderSet(BaseModel):
    providers: Dict[str, Provider] = Field(default_factory=dict)
    current: Optional[str] = None


class ProviderStore:
    """
    Ordered provider collections plus the current pointer, one durable JSON
    record per application.

    Every mutation works on a deep copy of the cached set, persists it with an
    atomic write and only then swaps it into the cache, so a failed write
    leaves both memory and disk untouched. Callers serialize mutations of the
    same application (see ``SharedContext``); the store itself only guards
    its cache and the first load of each record.
    """

    def __init__(self, data_dir: Optional[Union[str, os.PathLike]] = None):
        self.data_dir = os.fspath(data_dir) if data_dir is not None else str(get_config_dir())
        self.providers_dir = os.path.join(self.data_dir, "providers")
        self._lock = threading.RLock()
        self._sets: Dict[AppType, ProviderSet] = {}

    def record_path(self, app: Union[AppType, str]) -> str:
        return os.path.join(self.providers_dir, f"{parse_app_type(app).value}.json")

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load_set(self, app: AppType) -> ProviderSet:
        # The first load may repair files on disk, so it runs under the cache
        # lock; concurrent readers of a cold app wait for it.
        with self._lock:
            cached = self._sets.get(app)
            if cached is None:
                cached = self._sets[app] = self._read_record(app)
            return cached

    def _read_record(self, app: AppType) -> ProviderSet:
        path = self.record_path(app)
        if not os.path.exists(path):
            return ProviderSet()
        try:
            return self._parse_record(app, self._read_json(path))
        except OSError as e:
            raise StoreFailure(f"failed to read {path}: {e}") from e
        except ValueError as e:
            logger.warning("Provider record %s is unreadable (%s), attempting recovery", path, e)
        return self._recover_record(app, path)

    def _recover_record(self, app: AppType, path: str) -> ProviderSet:
        bak = backup_path(path)
        if os.path.exists(bak):
            try:
                raw = self._read_json(bak)
                recovered = self._parse_record(app, raw)
            except (OSError, ValueError) as e:
                logger.warning("Backup %s is unusable: %s", bak, e)
            else:
                try:
                    atomic_write_json(path, raw, backup=False)
                except OSError as e:
                    raise StoreFailure(f"failed to restore {path} from backup: {e}") from e
                logger.warning(
                    "Restored provider record %s from backup; it predates the last commit, so "
                    "current provider %r may not match the live %s config. Switch again to "
                    "reconcile.",
                    path, recovered.current, app.value,
                )
                return recovered

        corrupt = f"{path}.corrupt.{timestamp_tag()}"
        try:
            os.replace(path, corrupt)
        except OSError as e:
            raise StoreFailure(f"failed to move aside corrupt record {path}: {e}") from e
        logger.warning("Moved corrupt provider record to %s; starting with an empty set", corrupt)
        return ProviderSet()

    @staticmethod
    def _read_json(path: str) -> Any:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _parse_record(self, app: AppType, raw: Any) -> ProviderSet:
        if not isinstance(raw, dict):
            raise ValueError("provider record is not a JSON object")
        raw_providers = raw.get("providers") or {}
        if not isinstance(raw_providers, dict):
            raise ValueError("'providers' is not a JSON object")

        providers: Dict[str, Provider] = {}
        for key, value in raw_providers.items():
            if not isinstance(value, dict):
                logger.warning("Skipping malformed provider %r in %s record", key, app.value)
                continue
            # The mapping key is authoritative for the id.
            data = dict(value)
            data["id"] = key
            try:
                providers[key] = Provider.model_validate(data)
            except ValueError as e:
                logger.warning("Skipping invalid provider %r in %s record: %s", key, app.value, e)

        current = raw.get("current")
        if current is not None and (not isinstance(current, str) or current not in providers):
            logger.warning("Clearing dangling current pointer %r for %s", current, app.value)
            current = None
        return ProviderSet(providers=providers, current=current)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _working_copy(self, app: AppType) -> ProviderSet:
        return self._load_set(app).model_copy(deep=True)

    def _commit(self, app: AppType, working: ProviderSet) -> None:
        path = self.record_path(app)
        record = {
            "providers": {pid: p.to_json() for pid, p in working.providers.items()},
            "current": working.current,
        }
        try:
            atomic_write_json(path, record)
        except OSError as e:
            logger.error("Failed to persist providers for %s: %s", app.value, e)
            raise StoreFailure(f"failed to persist providers for app {app.value!r}: {e}") from e
        with self._lock:
            self._sets[app] = working

    def reload(self, app: Union[AppType, str]) -> None:
        """Forget the cached set; the next access re-reads the durable record."""
        with self._lock:
            self._sets.pop(parse_app_type(app), None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_all(self, app: Union[AppType, str]) -> Dict[str, Provider]:
        current_set = self._load_set(parse_app_type(app))
        return {pid: p.model_copy(deep=True) for pid, p in current_set.providers.items()}

    def get(self, app: Union[AppType, str], provider_id: str) -> Provider:
        app = parse_app_type(app)
        provider = self._load_set(app).providers.get(provider_id)
        if provider is None:
            raise ProviderNotFound(app.value, provider_id)
        return provider.model_copy(deep=True)

    def get_current(self, app: Union[AppType, str]) -> Optional[str]:
        return self._load_set(parse_app_type(app)).current

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, app: Union[AppType, str], provider: Provider) -> Provider:
        app = parse_app_type(app)
        working = self._working_copy(app)
        new = provider.model_copy(deep=True)
        if not new.id:
            new.id = self._generate_id(working)
        elif new.id in working.providers:
            raise DuplicateProviderId(app.value, new.id)
        if new.created_at is None:
            new.created_at = _now_ms()
        working.providers[new.id] = new
        self._commit(app, working)
        logger.info("Added provider %s (%s) for %s", new.id, new.name, app.value)
        return new.model_copy(deep=True)

    def replace(self, app: Union[AppType, str], provider: Provider) -> Provider:
        app = parse_app_type(app)
        working = self._working_copy(app)
        existing = working.providers.get(provider.id)
        if existing is None:
            raise ProviderNotFound(app.value, provider.id)
        new = provider.model_copy(deep=True)
        if new.created_at is None:
            new.created_at = existing.created_at
        # Assigning an existing key keeps its position.
        working.providers[new.id] = new
        self._commit(app, working)
        logger.info("Updated provider %s for %s", new.id, app.value)
        return new.model_copy(deep=True)

    def remove(self, app: Union[AppType, str], provider_id: str) -> None:
        app = parse_app_type(app)
        working = self._working_copy(app)
        if provider_id not in working.providers:
            raise ProviderNotFound(app.value, provider_id)
        if working.current == provider_id:
            raise CannotDeleteActiveProvider(app.value, provider_id)
        del working.providers[provider_id]
        self._commit(app, working)
        logger.info("Deleted provider %s for %s", provider_id, app.value)

    def set_current(self, app: Union[AppType, str], provider_id: str) -> None:
        app = parse_app_type(app)
        working = self._working_copy(app)
        if provider_id not in working.providers:
            raise ProviderNotFound(app.value, provider_id)
        working.current = provider_id
        self._commit(app, working)

    @staticmethod
    def _generate_id(working: ProviderSet) -> str:
        while True:
            candidate = str(uuid.uuid4())
            if candidate not in working.providers:
                return candidate
