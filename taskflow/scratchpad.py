import asyncio
import logging
from typing import Optional

from .errors import TaskFlowError
from .local_cache import LocalCache
from .notifications import Toaster

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 1.0


class Scratchpad:
    """Free-text note with debounced remote sync.

    Every edit is written to memory and the local cache at once. The remote
    copy is updated ``debounce`` seconds after the last edit, and only when
    the text differs from what was last synced.
    """

    def __init__(self, session, cache: LocalCache, debounce: float = DEBOUNCE_SECONDS,
                 toaster: Optional[Toaster] = None):
        self.session = session
        self.cache = cache
        self.debounce = debounce
        self.toaster = toaster
        self.note = ""
        self.loading = True
        self.last_synced = ""
        self._pending: Optional[asyncio.Task] = None

    @property
    def cache_key(self) -> str:
        return f"scratchpad_note_{self.session.user_id}"

    async def load(self):
        self.loading = True
        try:
            content = await asyncio.to_thread(self.session.gateway.get_scratchpad)
            self.cache.set(self.cache_key, content)
        except TaskFlowError as e:
            logger.error("Failed to load scratchpad from the store: %s", e)
            content = self.cache.get(self.cache_key, "") or ""
        finally:
            self.loading = False
        self.note = content
        self.last_synced = content

    def update(self, text: str):
        """Record an edit; must be called from inside the running event loop."""
        self.note = text
        self.cache.set(self.cache_key, text)
        if self.loading:
            return
        self._cancel_pending()
        self._pending = asyncio.get_running_loop().create_task(self._sync_later(text))

    async def _sync_later(self, text: str):
        await asyncio.sleep(self.debounce)
        await self._sync(text)

    async def _sync(self, text: str) -> bool:
        if text == self.last_synced:
            return False
        try:
            await asyncio.to_thread(self.session.gateway.sync_scratchpad, text)
        except TaskFlowError as e:
            logger.error("Failed to sync scratchpad: %s", e)
            if self.toaster is not None:
                self.toaster.error("Could not save your notes")
            return False
        self.last_synced = text
        logger.debug("Scratchpad synced")
        return True

    def _cancel_pending(self):
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def wait_idle(self):
        """Wait for a scheduled sync, if any, to run."""
        pending = self._pending
        if pending is not None:
            try:
                await pending
            except asyncio.CancelledError:
                pass

    async def flush(self) -> bool:
        """Sync now instead of waiting out the debounce delay."""
        self._cancel_pending()
        return await self._sync(self.note)

    def close(self):
        self._cancel_pending()
