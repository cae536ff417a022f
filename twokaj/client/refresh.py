# Read-side refresh of the local cache

"""
Refresh/Merge: re-fetch collections from the API and swap them into the
local cache.

Entities with a write still in the queue keep their local fields (the server
copy is merged underneath), and a listing closed on the device is never
reopened by a stale server copy. The same protection covers entities written
locally while the fetch was in flight, since the response may predate them.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from twokaj.client.local_store import LocalStore
from twokaj.client.operations import utcnow
from twokaj.core.errors import PermanentSyncError, TransientSyncError

logger = logging.getLogger(__name__)


class RefreshMerge:
    def __init__(self, store: LocalStore, api):
        self.store = store
        self.api = api

    def merge(self, collection: str, incoming: Iterable[dict], replace: bool = True,
              since: Optional[datetime] = None) -> List[dict]:
        """
        Merge server entities into `collection`.

        With `replace` the collection is swapped wholesale (atomically);
        otherwise entities are upserted one by one and nothing is removed.
        `since` is when the fetch started: cache entries written at or after
        it are newer than the response and are kept as they are.
        """
        protected = self.store.pending_entity_ids(collection)
        if since is not None:
            protected |= self.store.updated_since(collection, since)
        local = {e["id"]: e for e in self.store.get_all(collection)}

        merged = []
        seen = set()
        for entity in incoming:
            entity_id = entity["id"]
            seen.add(entity_id)
            current = local.get(entity_id)
            if current is not None and entity_id in protected:
                entity = {**entity, **current}
            elif current is not None and current.get("status") == "closed":
                entity = {**entity, "status": "closed"}
            merged.append(entity)

        if replace:
            # not on the server yet, or not in this response yet
            merged.extend(local[i] for i in protected if i in local and i not in seen)
            self.store.replace_all(collection, merged)
        else:
            self.store.put_many(collection, merged)
        return merged
    async def _fetch(self, what: str, fetch) -> Optional[list]:
        try:
            return await fetch()
        except (TransientSyncError, PermanentSyncError) as e:
            logger.warning("Refresh of %s skipped: %s", what, e)
            return None

    async def refresh_listings(self, **filters) -> bool:
        started = utcnow()
        data = await self._fetch("listings", lambda: self.api.list_listings(status="all", **filters))
        if data is None:
            return False
        # a filtered fetch is partial, so it must not drop anything
        self.merge("listings", data, replace=not filters, since=started)
        return True

    async def refresh_messages(self, user_id: str) -> bool:
        started = utcnow()
        data = await self._fetch("messages", lambda: self.api.list_messages(user_id))
        if data is None:
            return False
        self.merge("messages", data, since=started)
        return True

    async def refresh_gallery(self) -> bool:
        started = utcnow()
        data = await self._fetch("gallery", self.api.list_gallery)
        if data is None:
            return False
        self.merge("gallery", data, since=started)
        return True

    async def refresh_all(self) -> bool:
        ok = await self.refresh_listings()
        ok = await self.refresh_gallery() and ok
        user = self.store.get_current_user()
        if user:
            ok = await self.refresh_messages(user["id"]) and ok
        return ok
