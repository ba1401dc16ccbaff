"""Best-effort viewer counting.

Join/leave accounting must never fail the caller: counter store errors are
logged and dropped, so counts can drift while the store is unhealthy.
`reconcile` overwrites a drifted counter with an observed value.
"""

from loguru import logger

from .viewer_models import ViewerCounterStore


class ViewerAccountant:
    def __init__(self, store: ViewerCounterStore) -> None:
        self._store = store

    async def increment(self, live_id: str) -> None:
        try:
            count = await self._store.increment(live_id)
            logger.debug("Viewer joined: live_id={} viewer_count={}", live_id, count)
        except Exception as exc:
            logger.warning("Viewer count increment failed: live_id={} error={}", live_id, exc)

    async def decrement(self, live_id: str) -> None:
        try:
            count = await self._store.decrement(live_id)
            logger.debug("Viewer left: live_id={} viewer_count={}", live_id, count)
        except Exception as exc:
            logger.warning("Viewer count decrement failed: live_id={} error={}", live_id, exc)

    async def reconcile(self, live_id: str, observed_count: int) -> None:
        """Replace the stored count with an externally observed one (clamped at 0)."""
        count = max(0, observed_count)
        try:
            await self._store.set_count(live_id, count)
            logger.info("Viewer count reconciled: live_id={} viewer_count={}", live_id, count)
        except Exception as exc:
            logger.warning("Viewer count reconcile failed: live_id={} error={}", live_id, exc)
