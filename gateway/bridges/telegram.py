"""Telegram control bot: create, list and stop sessions from a chat."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from gateway.bridges.pairing import qr_png
from gateway.errors import GatewayError
from gateway.session.state import Origin, Session
from gateway.utils import format_exception_for_user

if TYPE_CHECKING:
    from gateway.manager import SessionManager

log = logging.getLogger("bridges.telegram")

HELP_TEXT = (
    "Gateway control\n\n"
    "/connect [label] - start a new session and get its pairing code\n"
    "/stop <session> - log out, stop and delete a session (id or folder)\n"
    "/list - show the sessions started from this chat\n"
    "/help - show this message"
)


class TelegramBridge:
    """Supervisory bridge backed by a python-telegram-bot Application."""

    name = "telegram"

    def __init__(
        self,
        manager: "SessionManager",
        token: str,
        *,
        allowed_chats: frozenset[int] = frozenset(),
    ):
        self.manager = manager
        self.token = token
        self.allowed_chats = allowed_chats
        self.app: Application | None = None

    async def start(self) -> None:
        self.app = Application.builder().token(self.token).build()
        self.app.add_handler(CommandHandler(["start", "help"], self._cmd_help))
        self.app.add_handler(CommandHandler("connect", self._cmd_connect))
        self.app.add_handler(CommandHandler("stop", self._cmd_stop))
        self.app.add_handler(CommandHandler("list", self._cmd_list))

        log.info("Starting Telegram bot...")
        await self.app.initialize()
        await self.app.start()
        await self.app.updater.start_polling()

    async def stop(self) -> None:
        if self.app:
            await self.app.updater.stop()
            await self.app.stop()
            await self.app.shutdown()
            self.app = None

    def _is_authorized(self, update: Update) -> bool:
        chat = update.effective_chat
        if chat is None:
            return False
        return not self.allowed_chats or chat.id in self.allowed_chats

    def _origin(self, update: Update) -> Origin:
        return Origin(self.name, str(update.effective_chat.id))

    async def _send(self, chat_id: str | int, text: str) -> None:
        if self.app is None:
            log.debug("Bot not running; dropping message to %s", chat_id)
            return
        await self.app.bot.send_message(chat_id=int(chat_id), text=text)

    async def _send_photo(self, chat_id: str | int, photo: bytes, caption: str) -> None:
        if self.app is None:
            log.debug("Bot not running; dropping photo to %s", chat_id)
            return
        await self.app.bot.send_photo(chat_id=int(chat_id), photo=photo, caption=caption)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def _cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not self._is_authorized(update):
            return
        await update.message.reply_text(HELP_TEXT)

    async def _cmd_connect(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not self._is_authorized(update):
            return
        label = " ".join(context.args or []).strip().strip("\"'") or None
        origin = self._origin(update)
        try:
            session = await self.manager.create_session(origin=origin, label=label)
        except GatewayError as e:
            log.error("Session creation failed: %s", e)
            await update.message.reply_text(f"Could not start a session.\n{format_exception_for_user(e)}")
            return
        await update.message.reply_text(
            f"Session {session.folder_name} started ({session.session_id}).\n"
            "Waiting for the pairing code..."
        )

    async def _cmd_stop(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not self._is_authorized(update):
            return
        args = context.args or []
        if not args:
            await update.message.reply_text("Usage: /stop <session id or folder>")
            return
        ref = args[0]
        stopped = await self.manager.stop_session(
            ref, purge=True, requester=self._origin(update)
        )
        if stopped:
            await update.message.reply_text(f"Session {ref} stopped and removed.")
        else:
            await update.message.reply_text(f"No session {ref}.")

    async def _cmd_list(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not self._is_authorized(update):
            return
        rows = self.manager.list_sessions(origin=self._origin(update))
        if not rows:
            await update.message.reply_text("No sessions.")
            return
        lines = ["Sessions:"]
        for row in rows:
            owner = f" +{row['owner']}" if row.get("owner") else ""
            lines.append(
                f"- {row['folderName']} [{row['state']}] {row['label']}{owner}\n  {row['sessionId']}"
            )
        await update.message.reply_text("\n".join(lines))

    # -------------------------------------------------------------------------
    # Manager events
    # -------------------------------------------------------------------------

    async def pairing_ready(self, session: Session, artifact: str) -> None:
        await self._send_photo(
            session.origin.target,
            qr_png(artifact),
            f"Scan to link {session.folder_name} ({session.label}).\n\n{artifact}",
        )

    async def session_connected(self, session: Session) -> None:
        owner = f" as +{session.owner_identity}" if session.owner_identity else ""
        await self._send(session.origin.target, f"Session {session.folder_name} connected{owner}.")

    async def session_disconnected(self, session: Session, reason: int | None) -> None:
        detail = f" (reason {reason})" if reason is not None else ""
        await self._send(
            session.origin.target, f"Session {session.folder_name} disconnected{detail}."
        )

    async def notice(self, session: Session, text: str) -> None:
        await self._send(session.origin.target, text)
