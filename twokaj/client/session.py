# Device-side marketplace client

"""
MarketplaceClient ties the offline-first pieces together for the UI layer.

Every mutation is written to the local cache first. If the device is online
and nothing older is waiting in the queue, it goes straight to the CRUD
endpoint; otherwise it is queued, the background trigger is registered and
the result says "queued" so the UI can show "will sync".
"""
import asyncio
import logging
from typing import List, Literal, Optional

import httpx
from pydantic import BaseModel, ValidationError

from twokaj.client.api_client import ApiClient
from twokaj.client.background import BackgroundTrigger, SyncChannel
from twokaj.client.connectivity import ConnectivityMonitor, SyncSignal
from twokaj.client.local_store import LocalStore
from twokaj.client.operations import DeadLetter, Operation, OperationKind, new_id, utcnow
from twokaj.client.refresh import RefreshMerge
from twokaj.client.sync_engine import SyncEngine, SyncReport
from twokaj.core.config import ClientSettings, get_client_settings
from twokaj.core.errors import (
    AuthenticationError, ConnectivityRequiredError, OperationValidationError,
    PermanentSyncError, TransientSyncError,
)
from twokaj.core.logging import setup_logging
from twokaj.schemas.entities import GalleryItemCreate, ListingCreate, MessageCreate, UserCreate

logger = logging.getLogger(__name__)

TOKENS_KEY = "tokens"


class WriteResult(BaseModel):
    entity: dict
    status: Literal["synced", "queued"]
    operation_id: Optional[str] = None

    @property
    def queued(self) -> bool:
        return self.status == "queued"


def _public(user: dict) -> dict:
    return {k: v for k, v in user.items() if k != "password"}


def _build(model, **values) -> dict:
    try:
        entity = model(**values)
    except ValidationError as e:
        raise OperationValidationError(f"Invalid {model.__name__}: {e}") from e
    return entity.model_dump(mode="json", exclude_none=True)


class MarketplaceClient:
    def __init__(self, store: LocalStore, api: ApiClient, monitor: ConnectivityMonitor,
                 signal: SyncSignal, engine: SyncEngine, refresher: RefreshMerge,
                 trigger: Optional[BackgroundTrigger] = None, channel: Optional[SyncChannel] = None,
                 settings: Optional[ClientSettings] = None):
        self.settings = settings or get_client_settings()
        self.store = store
        self.api = api
        self.monitor = monitor
        self.signal = signal
        self.engine = engine
        self.refresher = refresher
        self.trigger = trigger
        self.channel = channel
        self._tasks: List[asyncio.Task] = []
        # direct writes must reach the server in the order they were made
        self._write_lock = asyncio.Lock()

        tokens = store.get_value(TOKENS_KEY)
        if tokens:
            api.remember_tokens(tokens)

    @classmethod
    def from_settings(cls, settings: Optional[ClientSettings] = None,
                      transport: Optional[httpx.AsyncBaseTransport] = None,
                      channel: Optional[SyncChannel] = None,
                      background: bool = False) -> "MarketplaceClient":
        """
        Build the full client stack from ClientSettings.

        With `background`, a BackgroundTrigger is created with its own
        ApiClient and LocalStore handle (nothing is shared with this instance).
        """
        settings = settings or get_client_settings()
        setup_logging(settings.LOG_LEVEL)

        store = LocalStore(settings.LOCAL_DB_PATH)
        api = ApiClient(settings.API_BASE_URL, timeout=settings.REQUEST_TIMEOUT_SECONDS, transport=transport)
        signal = SyncSignal()
        monitor = ConnectivityMonitor(signal)
        engine = SyncEngine.from_settings(store, api, settings, monitor=monitor)
        refresher = RefreshMerge(store, api)

        trigger = None
        channel = channel or SyncChannel()
        if background:
            def api_factory():
                return ApiClient(settings.API_BASE_URL, timeout=settings.REQUEST_TIMEOUT_SECONDS,
                                 transport=transport)

            def engine_factory(bg_api):
                return SyncEngine.from_settings(LocalStore(settings.LOCAL_DB_PATH), bg_api, settings)

            trigger = BackgroundTrigger(channel, api_factory, engine_factory,
                                        check_interval=settings.CHECK_INTERVAL_SECONDS)

        return cls(store, api, monitor, signal, engine, refresher,
                   trigger=trigger, channel=channel, settings=settings)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, check_interval: Optional[float] = None, sync_interval: Optional[float] = None):
        """Start the monitor, the periodic timer, the sync loop and the channel relay."""
        check_interval = check_interval or self.settings.CHECK_INTERVAL_SECONDS
        sync_interval = sync_interval or self.settings.SYNC_INTERVAL_SECONDS

        self.signal.bind()
        self._tasks = [
            asyncio.create_task(self.monitor.watch(self.api.ping, check_interval)),
            asyncio.create_task(self.monitor.tick(sync_interval)),
            asyncio.create_task(self.engine.run(self.signal, self.refresher)),
        ]
        if self.channel is not None:
            self._tasks.append(asyncio.create_task(self.channel.listen(self.signal)))
        if self.trigger is not None:
            self.trigger.start()

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        if self.trigger is not None:
            self.trigger.stop()
        await self.api.aclose()
        self.store.close()

    async def sync_now(self) -> SyncReport:
        report = await self.engine.drain()
        if self.monitor.is_online:
            await self.refresher.refresh_all()
        return report

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    @property
    def current_user(self) -> Optional[dict]:
        return self.store.get_current_user()

    def _require_user(self) -> dict:
        user = self.current_user
        if not user:
            raise AuthenticationError("login required")
        return user

    def _remember_login(self, user: dict, password: str, tokens: Optional[dict] = None):
        # cached with its password so a later offline login can check it
        self.store.put("users", {**user, "password": password})
        self.store.set_current_user(_public(user))
        if tokens:
            self.api.remember_tokens(tokens)
            self.store.set_value(TOKENS_KEY, {
                "access_token": tokens.get("access_token"),
                "refresh_token": tokens.get("refresh_token"),
            })

    async def register(self, pseudo: str, password: str, **fields) -> WriteResult:
        user = _build(UserCreate, id=new_id(), pseudo=pseudo, password=password, created_at=utcnow(), **fields)
        result = await self._write(OperationKind.CREATE_USER, user)
        tokens = None
        if result.status == "synced":
            tokens = {"access_token": self.api.access_token, "refresh_token": self.api.refresh_token}
        self._remember_login(result.entity, password, tokens)
        return result

    async def login(self, password: str, pseudo: Optional[str] = None, email: Optional[str] = None) -> dict:
        """
        Online: check credentials with the API and cache the user.
        Offline: only a previously cached user with the same credentials.

        Raises:
            AuthenticationError: the API rejected the credentials
            ConnectivityRequiredError: offline and the user is not cached
        """
        if self.monitor.is_online:
            try:
                data = await self.api.login(password, pseudo=pseudo, email=email)
            except TransientSyncError as e:
                logger.warning("Online login failed, trying cached credentials: %s", e)
            except PermanentSyncError as e:
                raise AuthenticationError(str(e)) from e
            else:
                self._remember_login(data["user"], password, data)
                return _public(data["user"])

        for cached in self.store.get_all("users"):
            matches = (pseudo and cached.get("pseudo") == pseudo) or (email and cached.get("email") == email)
            if matches and cached.get("password") == password:
                self.store.set_current_user(_public(cached))
                logger.info("Offline login for %s", cached.get("pseudo"))
                return _public(cached)
        raise ConnectivityRequiredError("login")

    def logout(self):
        user = self.current_user
        if user and user["id"] not in self.store.pending_entity_ids("users"):
            self.store.delete("users", user["id"])
        self.store.set_current_user(None)
        self.store.set_value(TOKENS_KEY, None)
        self.api.remember_tokens({})

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_listing(self, type: str, category: str, title: str, **fields) -> WriteResult:
        user = self._require_user()
        listing = _build(
            ListingCreate,
            id=fields.pop("id", None) or new_id(), user_id=user["id"], type=type, category=category,
            title=title, created_at=utcnow(), **fields,
        )
        optimistic = {
            **listing,
            "pseudo": user.get("pseudo"),
            "user_city": user.get("city"),
        }
        return await self._write(OperationKind.CREATE_AD, optimistic)

    async def send_message(self, ad_id: str, content: str, receiver_id: Optional[str] = None,
                           type: str = "chat") -> WriteResult:
        user = self._require_user()
        listing = self.store.get("listings", ad_id)
        if receiver_id is None:
            if listing is None:
                raise ValueError(f"Unknown listing {ad_id}; pass receiver_id explicitly")
            receiver_id = listing["user_id"]
        message = _build(
            MessageCreate, id=new_id(), ad_id=ad_id, sender_id=user["id"], receiver_id=receiver_id,
            content=content, type=type, created_at=utcnow(),
        )
        optimistic = {
            **message,
            "sender_pseudo": user.get("pseudo"),
            "ad_title": listing.get("title") if listing else None,
        }
        return await self._write(OperationKind.SEND_MESSAGE, optimistic)

    async def close_listing(self, listing_id: str) -> WriteResult:
        self._require_user()
        listing = self.store.get("listings", listing_id)
        if listing is None:
            raise ValueError(f"Unknown listing {listing_id}")
        return await self._write(
            OperationKind.UPDATE_AD_STATUS,
            {"id": listing_id, "status": "closed"},
            optimistic={**listing, "status": "closed"},
        )

    async def add_gallery_item(self, photo_url: str, description: Optional[str] = None) -> WriteResult:
        item = _build(GalleryItemCreate, id=new_id(), photo_url=photo_url, description=description,
                      created_at=utcnow())
        return await self._write(OperationKind.CREATE_GALLERY_ITEM, item)

    async def _write(self, kind: OperationKind, payload: dict, optimistic: Optional[dict] = None) -> WriteResult:
        # validated before anything is stored
        operation = Operation.new(kind, payload)
        collection = operation.collection
        optimistic = optimistic or payload
        previous = self.store.get(collection, operation.entity_id)
        self.store.put(collection, optimistic)

        async with self._write_lock:
            if self.monitor.is_online and not self.store.list_queue():
                try:
                    entity = await self.api.submit(operation)
                except TransientSyncError as e:
                    logger.warning("Direct %s failed, queueing: %s", kind.value, e)
                except PermanentSyncError:
                    self._undo(collection, operation.entity_id, previous)
                    raise
                else:
                    merged = {**optimistic, **entity}
                    self.store.put(collection, merged)
                    return WriteResult(entity=merged, status="synced")

            operation = self.store.enqueue(operation)
        if self.monitor.is_online:
            self.signal.notify("enqueue")
        elif self.trigger is not None:
            self.trigger.register()
        return WriteResult(entity=optimistic, status="queued", operation_id=operation.id)

    def _undo(self, collection: str, entity_id: str, previous: Optional[dict]):
        if previous is None:
            self.store.delete(collection, entity_id)
        else:
            self.store.put(collection, previous)

    # ------------------------------------------------------------------
    # Reads (cache only)
    # ------------------------------------------------------------------

    def browse_listings(self, category: Optional[str] = None, type: Optional[str] = None,
                        location: Optional[str] = None, include_closed: bool = False) -> List[dict]:
        listings = []
        for listing in self.store.get_all("listings"):
            if not include_closed and listing.get("status") != "open":
                continue
            if category and listing.get("category") != category:
                continue
            if type and listing.get("type") != type:
                continue
            if location and location.lower() not in (listing.get("location") or "").lower():
                continue
            listings.append(listing)
        return sorted(listings, key=lambda l: l.get("created_at") or "", reverse=True)

    def messages_for_listing(self, ad_id: str) -> List[dict]:
        messages = [m for m in self.store.get_all("messages") if m.get("ad_id") == ad_id]
        return sorted(messages, key=lambda m: m.get("created_at") or "")

    def pending_operations(self) -> List[Operation]:
        return self.store.list_queue()

    def failed_operations(self) -> List[DeadLetter]:
        return self.store.list_dead_letters()
