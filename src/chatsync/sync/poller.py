"""Background notification polling for the selected account."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Callable, Optional

from chatsync.config import PollingConfig
from chatsync.core.errors import RequestFailed, SyncError, TransientNetworkError
from chatsync.log import get_logger
from chatsync.messenger.base import MessagingApi
from chatsync.messenger.models import Account, PollState
from chatsync.services.scheduler import SchedulerService

if TYPE_CHECKING:
    from chatsync.sync.orchestrator import SyncOrchestrator

logger = get_logger(__name__)

JOB_ID = "chatsync-poll"


def _webhook_conflict(error: Optional[SyncError]) -> bool:
    """Green API answers 400 to receiveNotification when the instance pushes to a webhook URL."""
    if isinstance(error, RequestFailed):
        return error.status == 400
    return isinstance(error, TransientNetworkError) and error.status == 400


class PollScheduler:
    """Drains the provider notification queue on a fixed interval.

    Message-bearing notifications mark the session dirty; the refresh itself
    (chat list plus the selected chat) runs at most once per
    ``throttle_seconds``. A throttled or skipped refresh stays pending for
    the next tick.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        scheduler: SchedulerService | None,
        config: PollingConfig,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self._orchestrator = orchestrator
        self._scheduler = scheduler
        self._config = config
        self._clock = clock
        self._wall_clock = wall_clock
        self._state: PollState | None = None

    @property
    def state(self) -> PollState | None:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is not None and self._state.enabled

    def start(self, account: Account) -> None:
        self.stop()
        self._state = PollState(account_key=account.key)
        if self._scheduler is not None:
            self._scheduler.add_interval_job(self.tick, self._config.interval_seconds, job_id=JOB_ID)
        logger.info("polling_started", account=account.key, interval=self._config.interval_seconds)

    def stop(self) -> None:
        if self._state is None:
            return
        self._state.enabled = False
        if self._scheduler is not None:
            self._scheduler.remove_job(JOB_ID)
        logger.info("polling_stopped", account=self._state.account_key)
        self._state = None

    async def tick(self) -> None:
        """One polling cycle. Never raises."""
        state = self._state
        if state is None or not state.enabled:
            return
        client = self._orchestrator.client()
        if client is None or client.account.key != state.account_key:
            return

        try:
            if state.webhook_mode:
                await self._scan_recent(client, state)
            else:
                await self._drain(client, state)
            if state.enabled and state.pending_refresh:
                await self._refresh(state)
        except Exception as e:
            logger.error("poll_tick_failed", account=state.account_key, error=str(e))

    async def _drain(self, client: MessagingApi, state: PollState) -> None:
        for _ in range(self._config.max_notifications_per_tick):
            result = await client.poll_notification()
            if not result.ok:
                if _webhook_conflict(result.error):
                    state.webhook_mode = True
                    logger.warning("webhook_fallback_enabled", account=state.account_key)
                    await self._scan_recent(client, state)
                else:
                    logger.warning("notification_poll_failed", error=str(result.error))
                return

            notification = result.data
            if notification is None:
                return
            if notification.carries_message:
                state.pending_refresh = True
            if notification.receipt_id is not None:
                ack = await client.delete_notification(notification.receipt_id)
                if not ack.ok:
                    logger.warning(
                        "notification_ack_failed",
                        receipt_id=notification.receipt_id,
                        error=str(ack.error),
                    )
                state.last_receipt_id = notification.receipt_id

    async def _scan_recent(self, client: MessagingApi, state: PollState) -> None:
        result = await client.list_incoming(self._config.fallback_window_minutes)
        if not result.ok:
            logger.warning("recent_scan_failed", error=str(result.error))
            return

        cutoff = self._wall_clock() - self._config.fallback_recent_seconds
        fresh = {
            m.timestamp
            for m in result.data or []
            if m.timestamp >= cutoff and m.timestamp not in state.seen_timestamps
        }
        state.seen_timestamps = {ts for ts in state.seen_timestamps | fresh if ts >= cutoff}
        if fresh:
            logger.debug("recent_messages_found", count=len(fresh))
            state.pending_refresh = True

    async def _refresh(self, state: PollState) -> None:
        now = self._clock()
        if state.last_refresh_at is not None and now - state.last_refresh_at < self._config.throttle_seconds:
            logger.debug("refresh_throttled", since_last=now - state.last_refresh_at)
            return

        state.last_refresh_at = now
        state.pending_refresh = False
        chats_done = await self._orchestrator.refresh_chats()
        history_done = await self._orchestrator.refresh_history()
        if not (chats_done and history_done) and state.enabled:
            state.pending_refresh = True
