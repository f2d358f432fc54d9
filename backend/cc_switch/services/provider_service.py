import logging
from contextlib import contextmanager
from typing import Dict, Optional, Tuple, Union

from cc_switch.errors import CompositeFailure, ConfigWriteFailure, ProviderNotFound, StoreFailure
from cc_switch.observability import app_context
from cc_switch.services.app_types import AppType, parse_app_type
from cc_switch.services.config_materializer import ConfigMaterializer
from cc_switch.services.provider_store import Provider
from cc_switch.services.shared_context import SharedContext

logger = logging.getLogger(__name__)

AppLike = Union[AppType, str]


class ProviderService:
    """
    Entry point for provider CRUD and switching.

    Mutations of one application hold that application's write lock for their
    whole duration; reads hold the read lock. Only ``switch`` touches the
    external config file.
    """

    def __init__(self, context: SharedContext, materializer: Optional[ConfigMaterializer] = None):
        self.context = context
        self.materializer = materializer if materializer is not None else ConfigMaterializer()

    @property
    def store(self):
        return self.context.store

    @contextmanager
    def _writing(self, app: AppType):
        with self.context.write_lock(app), app_context(app.value):
            yield

    def list(self, app: AppLike) -> Dict[str, Provider]:
        app = parse_app_type(app)
        with self.context.read_lock(app):
            return self.store.list_all(app)

    def snapshot(self, app: AppLike) -> Tuple[Dict[str, Provider], Optional[str]]:
        """Providers and current pointer read under one lock."""
        app = parse_app_type(app)
        with self.context.read_lock(app):
            return self.store.list_all(app), self.store.get_current(app)

    def get(self, app: AppLike, provider_id: str) -> Provider:
        app = parse_app_type(app)
        with self.context.read_lock(app):
            return self.store.get(app, provider_id)

    def current(self, app: AppLike) -> Optional[str]:
        app = parse_app_type(app)
        with self.context.read_lock(app):
            return self.store.get_current(app)

    def add(self, app: AppLike, provider: Provider) -> Provider:
        app = parse_app_type(app)
        with self._writing(app):
            return self.store.insert(app, provider)

    def update(self, app: AppLike, provider: Provider) -> Provider:
        app = parse_app_type(app)
        with self._writing(app):
            return self.store.replace(app, provider)

    def delete(self, app: AppLike, provider_id: str) -> None:
        app = parse_app_type(app)
        with self._writing(app):
            self.store.remove(app, provider_id)

    def switch(self, app: AppLike, provider_id: str) -> None:
        """
        Make ``provider_id`` the active provider of ``app``.

        The config file is written first and the pointer committed second. If
        the commit fails the file is restored from what the write replaced and
        ``CompositeFailure`` is raised. Re-running a switch with the same id
        re-applies both steps.
        """
        app = parse_app_type(app)
        with self._writing(app):
            provider = self.store.get(app, provider_id)
            result = self.materializer.write_atomically(app, self.materializer.render(app, provider))
            try:
                self.store.set_current(app, provider_id)
            except (StoreFailure, ProviderNotFound) as e:
                logger.error("Pointer commit failed after writing %s config for %s: %s",
                             app.value, provider_id, e)
                restored = True
                try:
                    self.materializer.restore(result)
                except ConfigWriteFailure as restore_error:
                    restored = False
                    logger.error("Could not restore %s: %s; manual reconciliation needed",
                                 result.target, restore_error)
                raise CompositeFailure(app.value, provider_id, restored=restored, cause=e) from e
            logger.info("Switched %s to provider %s", app.value, provider_id)
