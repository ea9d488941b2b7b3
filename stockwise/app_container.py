# ==============================================================================
# DEPENDENCY CONTAINER - Wiring of storage, repositories and services
# ==============================================================================
# One place that builds the object graph. Nothing here is global: each
# container owns its store and session manager, and open()/close() bound
# their lifetime. Tests build a container over MemoryStorage with a fake
# clock.
#
# To change the persistence medium, pass another BaseStorage; repositories
# and services only see the RecordStore interface.
# ==============================================================================

import logging
from typing import Callable, Optional

from stockwise.config import Config
from stockwise.repositories import (
    ActivityLogRepository,
    BaseStorage,
    CategoryRepository,
    JsonFileStorage,
    MemoryStorage,
    ProductRepository,
    RecordStore,
    StockLogRepository,
    SupplierRepository,
    UserRepository,
)
from stockwise.seed import seed_sample_data
from stockwise.services import (
    InventoryService,
    SessionManager,
    SessionMonitor,
    SupplierService,
    UserService,
)
from stockwise.time_utils import utcnow

logger = logging.getLogger(__name__)


class AppContainer:
    """
    Application dependency container.

    Usage:
        with AppContainer(Config(storage_backend='memory')) as container:
            container.user_service.authenticate('admin', 'password123')

    Args:
        config: Settings (defaults to Config())
        storage: Backend to use instead of the one named in the config
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        storage: Optional[BaseStorage] = None,
        clock: Callable = utcnow,
    ):
        self.config = config or Config()
        self.clock = clock
        self._storage = storage
        self._owns_storage = storage is None
        self._opened = False

        # Lazily built
        self._store: Optional[RecordStore] = None
        self._sessions: Optional[SessionManager] = None
        self._monitor: Optional[SessionMonitor] = None
        self._user_repo: Optional[UserRepository] = None
        self._product_repo: Optional[ProductRepository] = None
        self._category_repo: Optional[CategoryRepository] = None
        self._supplier_repo: Optional[SupplierRepository] = None
        self._stock_log_repo: Optional[StockLogRepository] = None
        self._activity_repo: Optional[ActivityLogRepository] = None
        self._user_service: Optional[UserService] = None
        self._inventory_service: Optional[InventoryService] = None
        self._supplier_service: Optional[SupplierService] = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def open(self) -> 'AppContainer':
        """
        Prepare storage: create empty tables, migrate legacy auth keys,
        seed sample data and start the session monitor, as configured.
        """
        if self._opened:
            return self
        self.store.initialize()
        self.sessions.migrate_legacy_keys()
        if self.config.seed_sample_data:
            seed_sample_data(self.store, self.clock)
        if self.config.start_session_monitor:
            self.monitor.start()
        self._opened = True
        logger.info("StockWise opened (%s storage)", self.config.storage_backend)
        return self

    def close(self) -> None:
        if self._monitor is not None:
            self._monitor.stop()
        if self._sessions is not None:
            self._sessions.close()
        if self._store is not None:
            self._store.close()
        if self._storage is not None and self._owns_storage:
            self._storage.close()
        self._opened = False

    def __enter__(self) -> 'AppContainer':
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # =========================================================================
    # CORE
    # =========================================================================

    @property
    def storage(self) -> BaseStorage:
        if self._storage is None:
            if self.config.storage_backend == 'memory':
                self._storage = MemoryStorage(quota_bytes=self.config.storage_quota_bytes)
            else:
                self._storage = JsonFileStorage(self.config.data_dir)
        return self._storage

    @property
    def store(self) -> RecordStore:
        if self._store is None:
            self._store = RecordStore(
                self.storage,
                clock=self.clock,
                activity_log_limit=self.config.activity_log_limit,
            )
            # Audit entries are stamped with whoever is logged in
            self._store.actor_provider = self._current_actor
        return self._store

    def _current_actor(self):
        return self.sessions.peek_user()

    @property
    def sessions(self) -> SessionManager:
        if self._sessions is None:
            self._sessions = SessionManager(
                self.storage,
                self.store,
                clock=self.clock,
                session_duration=self.config.session_duration,
                auth_log_limit=self.config.auth_log_limit,
            )
        return self._sessions

    @property
    def monitor(self) -> SessionMonitor:
        if self._monitor is None:
            self._monitor = SessionMonitor(self.sessions, self.config.session_check_interval)
        return self._monitor

    # =========================================================================
    # REPOSITORIES
    # =========================================================================

    @property
    def user_repo(self) -> UserRepository:
        if self._user_repo is None:
            self._user_repo = UserRepository(self.store)
        return self._user_repo

    @property
    def product_repo(self) -> ProductRepository:
        if self._product_repo is None:
            self._product_repo = ProductRepository(self.store)
        return self._product_repo

    @property
    def category_repo(self) -> CategoryRepository:
        if self._category_repo is None:
            self._category_repo = CategoryRepository(self.store)
        return self._category_repo

    @property
    def supplier_repo(self) -> SupplierRepository:
        if self._supplier_repo is None:
            self._supplier_repo = SupplierRepository(self.store)
        return self._supplier_repo

    @property
    def stock_log_repo(self) -> StockLogRepository:
        if self._stock_log_repo is None:
            self._stock_log_repo = StockLogRepository(self.store)
        return self._stock_log_repo

    @property
    def activity_repo(self) -> ActivityLogRepository:
        if self._activity_repo is None:
            self._activity_repo = ActivityLogRepository(self.store)
        return self._activity_repo

    # =========================================================================
    # SERVICES
    # =========================================================================

    @property
    def user_service(self) -> UserService:
        if self._user_service is None:
            self._user_service = UserService(self.user_repo, self.sessions, clock=self.clock)
        return self._user_service

    @property
    def inventory_service(self) -> InventoryService:
        if self._inventory_service is None:
            self._inventory_service = InventoryService(
                self.store,
                self.product_repo,
                self.stock_log_repo,
                self.supplier_repo,
                clock=self.clock,
            )
        return self._inventory_service

    @property
    def supplier_service(self) -> SupplierService:
        if self._supplier_service is None:
            self._supplier_service = SupplierService(self.supplier_repo, self.product_repo)
        return self._supplier_service
