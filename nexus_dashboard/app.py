"""Dashboard core served over HTTP with FastAPI.

Run with:
    uv run -m nexus_dashboard.app
"""

from __future__ import annotations as _annotations

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Annotated, AsyncIterator, Literal, Optional

import fastapi
import logfire
from fastapi import Depends, HTTPException, Request
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel

from .chat import INSIGHTS_PROMPT, TransportFactory
from .config import Settings
from .dashboard import Dashboard
from .datastore import Source
from .errors import BusyError, NotAuthenticated, RefreshFailed, SessionClosed, StoreClosed
from .identity import Identity
from .models import ChatMessage
from .table import chart_rows, kpi_cards, status_breakdown
from .utils import to_chat_message

# Configure logging
logfire.configure(send_to_logfire="if-token-present")
logfire.instrument_pydantic_ai()


class SettingsUpdate(BaseModel):
    refresh_seconds: Optional[float] = None
    history_days: Optional[int | Literal["all"]] = None


def _line(m: ChatMessage) -> bytes:
    return json.dumps(to_chat_message(m)).encode("utf-8") + b"\n"


async def _relay(
    queue: asyncio.Queue[ChatMessage], task: asyncio.Task
) -> AsyncIterator[ChatMessage]:
    """Yield assistant updates as the session merges them, until the exchange ends."""
    while True:
        if not queue.empty():
            message = queue.get_nowait()
            yield message
            if not message.streaming:
                return
            continue
        if task.done():
            return
        getter = asyncio.ensure_future(queue.get())
        try:
            await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
            if getter.done():
                queue.put_nowait(getter.result())
        finally:
            if not getter.done():
                getter.cancel()


def create_app(
    settings: Optional[Settings] = None,
    source: Optional[Source] = None,
    transport_factory: Optional[TransportFactory] = None,
) -> fastapi.FastAPI:
    @asynccontextmanager
    async def lifespan(_app: fastapi.FastAPI):
        """Manage the dashboard lifecycle."""
        dashboard = Dashboard(settings or Settings.from_env(), source, transport_factory)
        if dashboard.identity.current is not None:
            await dashboard.start()
        try:
            yield {"dashboard": dashboard}
        finally:
            await dashboard.close()

    app = fastapi.FastAPI(lifespan=lifespan)
    logfire.instrument_fastapi(app)

    async def get_dashboard(request: Request) -> Dashboard:
        """Dependency to get the running dashboard."""
        return request.state.dashboard

    async def signed_in(dashboard: Dashboard = Depends(get_dashboard)) -> Dashboard:
        """Dependency that rejects requests until someone has signed in."""
        try:
            dashboard.require_identity()
        except NotAuthenticated as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        return dashboard

    @app.get("/")
    async def index(dashboard: Dashboard = Depends(get_dashboard)) -> dict:
        """Overall status."""
        identity = dashboard.identity.current
        snapshot = dashboard.store.snapshot
        return {
            "identity": asdict(identity) if identity else None,
            "scheduler": dashboard.scheduler.state.value,
            "refresh_seconds": dashboard.refresh_seconds,
            "history_days": dashboard.store.history_days,
            "refreshing": dashboard.store.busy,
            "updated_at": snapshot.global_stats.updated_at.isoformat() if snapshot else None,
        }

    @app.post("/login")
    async def login(
        email: Annotated[str, fastapi.Form()], dashboard: Dashboard = Depends(get_dashboard)
    ) -> dict:
        try:
            identity: Identity = await dashboard.login(email)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return asdict(identity)

    @app.post("/logout", status_code=204)
    async def logout(dashboard: Dashboard = Depends(get_dashboard)) -> Response:
        await dashboard.logout()
        return Response(status_code=204)

    @app.get("/snapshot")
    async def get_snapshot(dashboard: Dashboard = Depends(signed_in)) -> dict:
        snapshot = dashboard.store.snapshot
        if snapshot is None:
            raise HTTPException(status_code=404, detail="No data loaded yet")
        return {
            "global": snapshot.global_stats.model_dump(mode="json"),
            "kpis": kpi_cards(snapshot.global_stats),
            "breakdown": status_breakdown(snapshot.global_stats),
            "fetched_at": snapshot.fetched_at.isoformat(),
        }

    @app.get("/chart")
    async def get_chart(dashboard: Dashboard = Depends(signed_in)) -> list:
        snapshot = dashboard.store.snapshot
        return chart_rows(snapshot.historical if snapshot else None)

    @app.get("/countries")
    async def get_countries(
        q: str = "",
        sort_key: Optional[str] = None,
        order: Optional[Literal["asc", "desc"]] = None,
        dashboard: Dashboard = Depends(signed_in),
    ) -> list:
        try:
            view = dashboard.table(q, sort_key, order)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return view.to_dict(orient="records")

    @app.post("/countries/sort/{key}")
    async def toggle_sort(key: str, dashboard: Dashboard = Depends(signed_in)) -> dict:
        try:
            state = dashboard.toggle_sort(key)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {"key": state.key, "order": state.order}

    @app.get("/countries/export")
    async def export_countries(
        q: str = "", filename: str = "countries.csv", dashboard: Dashboard = Depends(signed_in)
    ) -> Response:
        artifact = dashboard.export_table(q, filename)
        return Response(
            artifact.to_bytes(),
            media_type=artifact.media_type,
            headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
        )

    @app.post("/refresh")
    async def refresh(dashboard: Dashboard = Depends(signed_in)) -> dict:
        try:
            snapshot = await dashboard.refresh()
        except BusyError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except RefreshFailed as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except StoreClosed as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"fetched_at": snapshot.fetched_at.isoformat(), "countries": len(snapshot.countries)}

    @app.put("/settings")
    async def update_settings(
        update: SettingsUpdate, dashboard: Dashboard = Depends(signed_in)
    ) -> dict:
        try:
            if update.refresh_seconds is not None:
                dashboard.reconfigure(update.refresh_seconds)
            if update.history_days is not None:
                await dashboard.set_history_days(update.history_days)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {
            "refresh_seconds": dashboard.refresh_seconds,
            "history_days": dashboard.store.history_days,
        }

    @app.get("/notifications")
    async def get_notifications(dashboard: Dashboard = Depends(signed_in)) -> list:
        return [
            {
                "id": note.id,
                "text": note.text,
                "level": note.level,
                "created_at": note.created_at.isoformat(),
                "ttl": note.ttl,
            }
            for note in dashboard.notifications.items
        ]

    @app.delete("/notifications/{notification_id}", status_code=204)
    async def dismiss_notification(
        notification_id: str, dashboard: Dashboard = Depends(signed_in)
    ) -> Response:
        dashboard.notifications.dismiss(notification_id)
        return Response(status_code=204)

    @app.get("/chat/")
    async def get_chat(dashboard: Dashboard = Depends(signed_in)) -> Response:
        """Get all chat messages."""
        return Response(
            b"".join(_line(m) for m in dashboard.chat.messages),
            media_type="text/plain",
        )

    def _stream_exchange(dashboard: Dashboard, prompt: str) -> StreamingResponse:
        queue: asyncio.Queue[ChatMessage] = asyncio.Queue()
        try:
            task = dashboard.chat.start_exchange(prompt, on_update=queue.put_nowait)
        except BusyError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except SessionClosed as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        user_message = dashboard.chat.messages[-2]

        async def stream_messages():
            """Streams new line delimited JSON `ChatMessage`s to the client."""
            # Stream the user prompt so it can be displayed immediately
            yield _line(user_message)
            async for message in _relay(queue, task):
                yield _line(message)

        return StreamingResponse(stream_messages(), media_type="text/plain")

    @app.post("/chat/")
    async def post_chat(
        prompt: Annotated[str, fastapi.Form()], dashboard: Dashboard = Depends(signed_in)
    ) -> StreamingResponse:
        """Handle new chat messages and stream assistant responses."""
        return _stream_exchange(dashboard, prompt)

    @app.post("/chat/insights")
    async def post_insights(dashboard: Dashboard = Depends(signed_in)) -> StreamingResponse:
        """Ask the assistant for an executive summary of the current data."""
        return _stream_exchange(dashboard, INSIGHTS_PROMPT)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("nexus_dashboard.app:app", reload=True)
