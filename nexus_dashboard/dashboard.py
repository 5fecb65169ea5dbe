"""The dashboard: one owner for the scheduler, data store, notifications and chat."""

from __future__ import annotations

import functools
from typing import Callable, Optional

import logfire
import pandas as pd

from .chat import INSIGHTS_PROMPT, AgentTransport, ChatSession, TransportFactory
from .config import Settings
from .datastore import DataSource, DataStore, HistoryDays, Source, validate_history_days
from .errors import BusyError, NotAuthenticated, RefreshFailed, StoreClosed
from .export import ExportArtifact, export_records
from .identity import Identity, IdentityStore
from .models import ChatMessage, Snapshot
from .notifications import NotificationQueue
from .scheduler import Scheduler
from .table import SortState, table_view


class Dashboard:
    """Wires the core components together and owns the UI-facing state.

    Consumers read ``store``, ``notifications`` and ``chat`` directly; changes go
    through the methods here.
    """

    def __init__(
        self,
        settings: Settings,
        source: Optional[Source] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self.settings = settings
        self.identity = IdentityStore(settings.identity_path)
        self.notifications = NotificationQueue(
            ttl=settings.notification_ttl, max_size=settings.notification_limit
        )
        self.store = DataStore(
            source or DataSource(settings.api_base, timeout=settings.fetch_timeout),
            history_days=settings.history_days,
            timeout=settings.fetch_timeout,
            notifications=self.notifications,
        )
        self.scheduler = Scheduler(self.refresh_quietly)
        self.transport_factory: TransportFactory = transport_factory or functools.partial(
            AgentTransport, model=settings.model
        )
        self.chat = self._new_chat()
        self.sort = SortState()
        self.refresh_seconds = settings.refresh_seconds
        self.started = False

    def _new_chat(self) -> ChatSession:
        return ChatSession(
            lambda: self.store.snapshot,
            self.transport_factory,
            timeout=self.settings.stream_timeout,
        )

    def require_identity(self) -> Identity:
        identity = self.identity.current
        if identity is None:
            raise NotAuthenticated("sign in to use the dashboard")
        return identity

    async def start(self) -> None:
        """Load data once, then keep it fresh on the configured period."""
        identity = self.require_identity()
        if self.started:
            return
        self.started = True
        logfire.info("Dashboard started for {name}", name=identity.name)
        await self.refresh_quietly()
        if self.started:
            self.scheduler.start(self.refresh_seconds)

    async def stop(self) -> None:
        """Pause on sign-out: stop refreshing and drop the conversation."""
        self.started = False
        self.scheduler.stop()
        await self.chat.close()
        self.chat = self._new_chat()

    async def login(self, email: str) -> Identity:
        identity = self.identity.login(email)
        await self.start()
        return identity

    async def logout(self) -> None:
        self.identity.logout()
        await self.stop()

    async def refresh(self) -> Snapshot:
        self.require_identity()
        return await self.store.refresh()

    async def refresh_quietly(self) -> bool:
        """Refresh for the scheduler: failures are already logged and notified."""
        try:
            await self.store.refresh()
        except BusyError:
            logfire.info("Skipping refresh; previous one still running")
            return False
        except (RefreshFailed, StoreClosed) as exc:
            logfire.warn("Refresh not applied: {error}", error=str(exc))
            return False
        return True

    def reconfigure(self, refresh_seconds: float) -> None:
        if refresh_seconds < 0:
            raise ValueError("refresh_seconds must not be negative")
        self.refresh_seconds = refresh_seconds
        if self.started:
            self.scheduler.start(refresh_seconds)

    async def set_history_days(self, days: HistoryDays) -> None:
        """Change the chart window and reload, like picking a new time range."""
        self.store.history_days = validate_history_days(days)
        if self.started:
            await self.refresh_quietly()

    def toggle_sort(self, key: str) -> SortState:
        self.sort = self.sort.toggle(key)
        return self.sort

    def table(
        self,
        filter_text: str = "",
        sort_key: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> pd.DataFrame:
        snapshot = self.store.snapshot
        return table_view(
            snapshot.countries if snapshot is not None else (),
            filter_text=filter_text,
            sort_key=sort_key or self.sort.key,
            sort_order=sort_order or self.sort.order,
            limit=self.settings.table_limit,
        )

    def export_table(self, filter_text: str = "", filename: str = "countries.csv") -> ExportArtifact:
        return export_records(self.table(filter_text), filename)

    async def ask(
        self, text: str, on_update: Optional[Callable[[ChatMessage], object]] = None
    ) -> ChatMessage:
        self.require_identity()
        return await self.chat.send(text, on_update)

    async def generate_insights(
        self, on_update: Optional[Callable[[ChatMessage], object]] = None
    ) -> ChatMessage:
        return await self.ask(INSIGHTS_PROMPT, on_update)

    async def close(self) -> None:
        """Shut down: cancel timers and abandon whatever is still in flight."""
        self.started = False
        await self.scheduler.aclose()
        await self.chat.close()
        await self.store.close()
        self.notifications.close()
