"""Chat bot webhook receiving Telegram updates."""

from typing import Any

from fastapi import APIRouter, Depends
import structlog

from market_monitor.api.dependencies import get_chat_processor
from market_monitor.api.models import ChatWebhookResponse
from market_monitor.notifications.chat_commands import ChatCommandProcessor

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/chat/webhook",
    response_model=ChatWebhookResponse,
    summary="Telegram update webhook",
    description="Applies a bot command to the sender's chat state and replies.",
)
async def chat_webhook(
    update: dict[str, Any],
    processor: ChatCommandProcessor = Depends(get_chat_processor),
) -> ChatWebhookResponse:
    message = update.get("message") or {}
    chat_id = (message.get("chat") or {}).get("id")
    if chat_id is None:
        return ChatWebhookResponse(handled=False)

    result = await processor.handle(str(chat_id), message.get("text"))
    logger.info("Chat command handled", chat_id=chat_id, state=result.state.value)
    return ChatWebhookResponse(handled=True, state=result.state.value)
