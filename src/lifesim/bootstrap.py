import logging
import os
import socket
import time
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from lifesim.application.services.background_jobs import JobScheduler, SessionJobs
from lifesim.application.services.effect_resolver import TemporaryEffects
from lifesim.application.services.event_bus import EventBus
from lifesim.application.services.friendship_service import FriendshipService
from lifesim.application.services.hospital_service import HospitalService
from lifesim.application.services.inventory_service import InventoryService
from lifesim.application.services.medicine_service import MedicineService
from lifesim.application.services.order_service import OrderService
from lifesim.application.services.relationship_service import RelationshipService
from lifesim.application.services.session_state import SessionState
from lifesim.application.services.transfer_coordinator import TransferCoordinator
from lifesim.domain.repositories import KeyValueCache, RemoteStore
from lifesim.infrastructure.inmemory.remote_store import InMemoryRemoteStore
from lifesim.infrastructure.local_cache import FileKeyValueCache, MemoryKeyValueCache
from lifesim.infrastructure.seed_data import seed_demo_data
from lifesim.infrastructure.server_functions import register_server_functions


logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"mysql": 3306, "postgresql": 5432}


@dataclass
class LifeSimApp:
    """Everything the front-end needs, wired against one store."""

    store: RemoteStore
    cache: KeyValueCache
    event_bus: EventBus
    session: SessionState
    medicine: MedicineService
    inventory: InventoryService
    transfers: TransferCoordinator
    orders: OrderService
    relationships: RelationshipService
    friendships: FriendshipService
    hospital: HospitalService
    scheduler: JobScheduler
    backend: str = "memory"
    notices: list[str] = field(default_factory=list)


def _is_truthy(value: str | None, *, default: str) -> bool:
    return str(value if value is not None else default).strip().lower() in {"1", "true", "yes"}


def _looks_like_local_database_unreachable(database_url: str) -> bool:
    if not database_url:
        return False

    parsed = urlparse(database_url)
    scheme = parsed.scheme.split("+", 1)[0]
    if scheme not in _DEFAULT_PORTS:
        return False

    host = (parsed.hostname or "").strip().lower()
    if host not in {"localhost", "127.0.0.1", "::1"}:
        return False

    port = parsed.port or _DEFAULT_PORTS[scheme]
    timeout = float(os.getenv("LIFESIM_DB_CONNECT_CHECK_TIMEOUT_S", "0.35"))

    try:
        with socket.create_connection((host, port), timeout=timeout):
            return False
    except OSError:
        return True


def _build_inmemory_store() -> InMemoryRemoteStore:
    store = InMemoryRemoteStore()
    register_server_functions(store)
    seed_demo_data(store)
    return store


def _build_sql_store(database_url: str) -> RemoteStore:
    from lifesim.infrastructure.db.sql.connection import build_session_factory, engine_for
    from lifesim.infrastructure.db.sql.migrate import apply_migrations
    from lifesim.infrastructure.db.sql.remote_store import SqlRemoteStore
    from lifesim.infrastructure.seed_data import ensure_store_managers

    engine = engine_for(database_url)
    if database_url.startswith("sqlite"):
        # a local file database is created on first run
        apply_migrations(engine)
    store = SqlRemoteStore(build_session_factory(engine))
    register_server_functions(store)

    # Force an early connectivity check so fallback happens before the prompt.
    try:
        ensure_store_managers(store)
    except Exception as exc:
        raise RuntimeError(f"Database bootstrap check failed: {exc}") from exc
    return store


def _build_http_store(remote_url: str) -> RemoteStore:
    from lifesim.infrastructure.http.rest_store import HttpRemoteStore

    return HttpRemoteStore(
        remote_url,
        os.getenv("LIFESIM_REMOTE_KEY", ""),
        timeout=float(os.getenv("LIFESIM_REMOTE_TIMEOUT_S", "10")),
        retries=int(os.getenv("LIFESIM_REMOTE_RETRIES", "0")),
    )


def create_store() -> tuple[RemoteStore, str, list[str]]:
    """Pick a backend from the environment: database URL, then REST URL, then memory."""

    database_url = os.getenv("LIFESIM_DATABASE_URL")
    if database_url:
        if _looks_like_local_database_unreachable(database_url):
            return _build_inmemory_store(), "memory", ["Database appears unreachable, falling back to in-memory."]
        try:
            return _build_sql_store(database_url), "sql", []
        except Exception as exc:
            logger.warning("SQL backend unavailable", exc_info=True)
            return _build_inmemory_store(), "memory", [f"Database unavailable, falling back to in-memory. Reason: {exc}"]

    remote_url = os.getenv("LIFESIM_REMOTE_URL")
    if remote_url:
        return _build_http_store(remote_url), "rest", []

    return _build_inmemory_store(), "memory", []


def _default_cache() -> KeyValueCache:
    cache_dir = os.getenv("LIFESIM_CACHE_DIR") or str(Path("~/.cache/lifesim").expanduser())
    try:
        return FileKeyValueCache(cache_dir)
    except OSError:
        logger.warning("Cache directory unusable, keeping cache in memory", extra={"cache_dir": cache_dir}, exc_info=True)
        return MemoryKeyValueCache()


def build_app(
    store: RemoteStore,
    cache: KeyValueCache | None = None,
    *,
    atomic: bool | None = None,
    clock=time.time,
    backend: str = "memory",
) -> LifeSimApp:
    cache = cache if cache is not None else MemoryKeyValueCache(clock=clock)
    if atomic is None:
        atomic = _is_truthy(os.getenv("LIFESIM_ATOMIC_TRANSFERS"), default="1")

    event_bus = EventBus()
    medicine = MedicineService(store, event_bus=event_bus)
    temporary_effects = TemporaryEffects(cache, clock=clock)
    inventory = InventoryService(
        store,
        cache,
        event_bus=event_bus,
        medicine=medicine,
        temporary_effects=temporary_effects,
        clock=clock,
    )
    transfers = TransferCoordinator(store, inventory, event_bus=event_bus, atomic=atomic)
    session = SessionState(
        store,
        cache,
        event_bus=event_bus,
        medicine=medicine,
        temporary_effects=temporary_effects,
        clock=clock,
    )
    scheduler = JobScheduler()
    SessionJobs(session, inventory).install(scheduler)

    return LifeSimApp(
        store=store,
        cache=cache,
        event_bus=event_bus,
        session=session,
        medicine=medicine,
        inventory=inventory,
        transfers=transfers,
        orders=OrderService(store, inventory, transfers, event_bus=event_bus),
        relationships=RelationshipService(store, inventory, event_bus=event_bus),
        friendships=FriendshipService(store, inventory, event_bus=event_bus),
        hospital=HospitalService(store, medicine, event_bus=event_bus),
        scheduler=scheduler,
        backend=backend,
    )


def create_app() -> LifeSimApp:
    store, backend, notices = create_store()
    app = build_app(store, _default_cache(), backend=backend)
    app.notices.extend(notices)
    return app
