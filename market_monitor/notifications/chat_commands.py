"""Chat bot command handling.

The conversation with a chat user is an explicit state machine:

    UNVERIFIED --/verify <code>--> VERIFIED --/subscribe--> SUBSCRIBED
                                                  ^             |
                                       /subscribe |             | /unsubscribe
                                                  |             v
                                                 UNSUBSCRIBED <-

``apply_command`` is the pure transition function. ``ChatCommandProcessor``
wires it to the subscriber repository (state and code lookups) and the
chat channel (replies).
"""

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from market_monitor.notifications.channels import ChatChannel
    from market_monitor.notifications.repository import SubscriberRepository

logger = logging.getLogger(__name__)


class ChatState(enum.Enum):
    """Where a chat handle is in the link/subscribe lifecycle."""
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"

    @property
    def is_verified(self) -> bool:
        return self != ChatState.UNVERIFIED

    @property
    def receives_alerts(self) -> bool:
        return self == ChatState.SUBSCRIBED


COMMANDS: frozenset[str] = frozenset(
    {"start", "verify", "subscribe", "unsubscribe", "status", "help"}
)

# Accepted spellings that map onto a canonical command.
ALIASES = {"stop": "unsubscribe"}

HELP_TEXT = (
    "<b>❓ Help</b>\n\n"
    "This bot sends real-time market alerts.\n\n"
    "<b>Commands:</b>\n"
    "/verify &lt;code&gt; - Link this chat to your account\n"
    "/subscribe - Start receiving alerts\n"
    "/unsubscribe - Stop receiving alerts\n"
    "/status - Show your subscription status\n"
    "/help - Show this help"
)

_STATUS_LINES = {
    ChatState.UNVERIFIED: "🔒 This chat is not linked to an account yet.",
    ChatState.VERIFIED: "✅ Linked. Send /subscribe to start receiving alerts.",
    ChatState.SUBSCRIBED: "📱 You are subscribed to market alerts.",
    ChatState.UNSUBSCRIBED: "🔕 You are unsubscribed. Send /subscribe to resume.",
}


@dataclass(frozen=True)
class Command:
    name: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True)
class CommandResult:
    """New state plus the reply to send back."""

    state: ChatState
    reply: str
    changed: bool = False


def parse_command(text: str | None) -> Command | None:
    """Parse ``/name[@bot] arg ...``; returns None for non-command text."""
    if not text:
        return None
    parts = text.strip().split()
    if not parts or not parts[0].startswith("/"):
        return None
    name = parts[0][1:].split("@", 1)[0].lower()
    name = ALIASES.get(name, name)
    return Command(name=name, args=tuple(parts[1:]))


def apply_command(
    state: ChatState,
    command: Command | None,
    code_valid: bool = False,
) -> CommandResult:
    """Pure transition function.

    Args:
        state: Current state of the chat handle.
        command: Parsed command (None for free text).
        code_valid: Whether the code given to /verify was accepted.

    Returns:
        The resulting state and reply text.
    """
    if command is None or command.name not in COMMANDS:
        return CommandResult(state, "Unknown command. Send /help for the list.")

    name = command.name

    if name == "help":
        return CommandResult(state, HELP_TEXT)

    if name == "status":
        return CommandResult(state, f"<b>📊 Status</b>\n\n{_STATUS_LINES[state]}")

    if name == "start":
        if state == ChatState.UNVERIFIED:
            return CommandResult(
                state,
                "<b>🚀 Welcome to Market Monitor!</b>\n\n"
                "Link this chat with /verify &lt;code&gt; using the code from "
                "your notification settings.",
            )
        return CommandResult(state, f"<b>🚀 Welcome back!</b>\n\n{_STATUS_LINES[state]}")

    if name == "verify":
        if state.is_verified:
            return CommandResult(state, "This chat is already linked.")
        if not command.args:
            return CommandResult(state, "Usage: /verify &lt;code&gt;")
        if not code_valid:
            return CommandResult(state, "❌ That code is invalid or has expired.")
        return CommandResult(
            ChatState.VERIFIED,
            "✅ Chat linked. Send /subscribe to start receiving alerts.",
            changed=True,
        )

    if not state.is_verified:
        return CommandResult(state, "Link this chat first with /verify &lt;code&gt;.")

    if name == "subscribe":
        if state == ChatState.SUBSCRIBED:
            return CommandResult(state, "You are already subscribed.")
        return CommandResult(
            ChatState.SUBSCRIBED, "✅ You will now receive market alerts.", changed=True,
        )

    # unsubscribe
    if state != ChatState.SUBSCRIBED:
        return CommandResult(state, "You are not subscribed.")
    return CommandResult(
        ChatState.UNSUBSCRIBED,
        "❌ You have been unsubscribed from market alerts.",
        changed=True,
    )


class ChatCommandProcessor:
    """Handles one incoming chat message end to end."""

    def __init__(
        self,
        repository: "SubscriberRepository",
        channel: "ChatChannel | None" = None,
    ) -> None:
        self._repo = repository
        self._channel = channel

    async def handle(self, handle: str, text: str | None) -> CommandResult:
        """Apply a message from ``handle`` and send the reply.

        Returns:
            The transition result.
        """
        command = parse_command(text)
        state = await self._repo.get_chat_state(handle)

        code_valid = False
        if (
            command is not None
            and command.name == "verify"
            and command.args
            and not state.is_verified
        ):
            code_valid = await self._repo.link_chat(handle, command.args[0]) is not None

        result = apply_command(state, command, code_valid=code_valid)

        if result.changed:
            await self._repo.set_chat_state(handle, result.state)
            logger.info(
                "Chat %s: %s → %s", handle, state.value, result.state.value,
            )

        if self._channel is not None:
            await self._channel.send_text(handle, result.reply)
        return result
