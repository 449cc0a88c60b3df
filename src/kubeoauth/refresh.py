# Refresh Scheduler - periodic token refresh sweep over every known tenant.
# Created: 2026-10-18
#
# Sweeps once at start, then every `interval` seconds. Each tenant is
# refreshed independently; reads and provider calls run under a timeout.
# One broken tenant never stops the sweep. stop() lets an in-flight sweep finish.

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from kubeoauth.credentials.store import CredentialStore
from kubeoauth.errors import CredentialNotFound, StorePersistFailed
from kubeoauth.integrations.oauth import OAuthManager
from kubeoauth.models import Credential, SweepReport, utcnow

logger = logging.getLogger(__name__)


class RefreshResult(str, Enum):
    REFRESHED = "refreshed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


class RefreshScheduler:
    """Background loop keeping every stored credential fresh."""

    def __init__(
        self,
        store: CredentialStore,
        oauth: OAuthManager,
        interval: float = 600.0,
        tenant_timeout: float = 30.0,
    ):
        self.store = store
        self.oauth = oauth
        self.interval = interval
        self.tenant_timeout = tenant_timeout
        self.last_report: SweepReport | None = None
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._sweep_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def sweep(self) -> SweepReport:
        """Refresh every tenant once and report what happened."""
        async with self._sweep_lock:
            report = SweepReport()
            try:
                tenants = await self.store.list_tenants()
            except StorePersistFailed as e:
                logger.error("Refresh sweep could not enumerate tenants: %s", e)
                self.last_report = report
                return report

            for tenant_id in tenants:
                try:
                    result = await self._refresh_tenant(tenant_id)
                except asyncio.TimeoutError:
                    report.failed[tenant_id] = f"timed out after {self.tenant_timeout}s"
                    logger.warning("Refresh of %s timed out", tenant_id)
                except Exception as e:
                    report.failed[tenant_id] = str(e)
                    logger.warning("Refresh of %s failed: %s", tenant_id, e)
                else:
                    getattr(report, result.value).append(tenant_id)

            logger.info(
                "Refresh sweep done: %d refreshed, %d unchanged, %d skipped, %d failed",
                len(report.refreshed),
                len(report.unchanged),
                len(report.skipped),
                len(report.failed),
            )
            self.last_report = report
            return report

    async def _refresh_tenant(self, tenant_id: str) -> RefreshResult:
        """Refresh one tenant.

        The read and the provider call are bounded by ``tenant_timeout``.
        The write is not: once the provider has answered, the old refresh
        token may already be spent, so the new one must reach the store.
        """
        try:
            current = await asyncio.wait_for(
                self.store.get(tenant_id), timeout=self.tenant_timeout
            )
        except CredentialNotFound:
            return RefreshResult.SKIPPED

        token = await asyncio.wait_for(
            self.oauth.refresh(current.refresh_token), timeout=self.tenant_timeout
        )
        if token.access_token == current.access_token:
            logger.debug("Access token for %s unchanged", tenant_id)
            return RefreshResult.UNCHANGED

        now = utcnow()
        await self.store.put(
            tenant_id,
            Credential(
                tenant_id=tenant_id,
                access_token=token.access_token,
                refresh_token=token.refresh_token or current.refresh_token,
                expiry=token.expiry(now),
                updated=now,
            ),
        )
        logger.info("Refreshed access token for %s", tenant_id)
        return RefreshResult.REFRESHED

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background loop. Must be called from a running event loop."""
        if self.running:
            logger.warning("Refresh scheduler already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info("Refresh scheduler started (every %ss)", self.interval)

    async def stop(self) -> None:
        """Stop the loop, waiting for an in-flight sweep to complete."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Refresh scheduler stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.sweep()
            except Exception:
                logger.exception("Refresh sweep crashed")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
