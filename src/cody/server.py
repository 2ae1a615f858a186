"""HTTP surface: Telegram webhook ingress and liveness probes."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from fastapi import FastAPI
from pydantic import BaseModel, ConfigDict, Field

from . import __version__

if TYPE_CHECKING:
    from .service import Service

logger = logging.getLogger(__name__)


class TelegramUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    first_name: Optional[str] = None
    username: Optional[str] = None


class TelegramChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    first_name: Optional[str] = None
    title: Optional[str] = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    chat: TelegramChat
    text: Optional[str] = None
    sender: Optional[TelegramUser] = Field(default=None, alias="from")

    @property
    def display_name(self) -> Optional[str]:
        if self.sender and (self.sender.first_name or self.sender.username):
            return self.sender.first_name or self.sender.username
        return self.chat.first_name or self.chat.title


class TelegramUpdate(BaseModel):
    """Inbound webhook payload. Only text messages are handled."""

    model_config = ConfigDict(extra="ignore")

    update_id: Optional[int] = None
    message: Optional[TelegramMessage] = None


def create_app(
    service: Service,
    webhook_path: str = "/new-message",
    manage_lifecycle: bool = True,
) -> FastAPI:
    """Build the FastAPI app around a service.

    Args:
        service: The wired bot service.
        webhook_path: Path Telegram posts updates to.
        manage_lifecycle: Start and stop the service with the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle:
            await service.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await service.stop()

    app = FastAPI(title="Cody", version=__version__, lifespan=lifespan)

    @app.post(webhook_path)
    async def new_message(update: TelegramUpdate) -> Dict[str, Any]:
        message = update.message
        if message is None or not message.text:
            return {"ok": True, "ignored": True}

        chat_id = str(message.chat.id)
        task = service.submit(chat_id, message.text, message.display_name)
        # Shielded: if the webhook request is dropped, the dispatch still finishes.
        result = await asyncio.shield(task)
        return {"ok": True, "outcome": result.outcome.value}

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/health/time")
    async def health_time() -> Dict[str, str]:
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app
