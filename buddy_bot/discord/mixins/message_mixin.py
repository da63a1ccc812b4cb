from __future__ import annotations

import logging
from typing import Any

import discord

from ...dialogue.assembler import PromptRequest
from ...prompts.context import build_reply_context
from ..common import ReplyContext, chunk_text, collect_image_urls, collect_video_urls, truncate

logger = logging.getLogger("buddy_bot")

DISCORD_MESSAGE_LIMIT = 1900


class MessageMixin:
    async def _send_chunks(
        self,
        channel: discord.abc.Messageable,
        text: str,
        reference: discord.Message | None = None,
    ) -> list[discord.Message]:
        sent: list[discord.Message] = []
        for index, chunk in enumerate(chunk_text(text, DISCORD_MESSAGE_LIMIT)):
            kwargs: dict[str, Any] = {}
            if index == 0 and reference is not None:
                kwargs["reference"] = reference
                kwargs["mention_author"] = False
            sent.append(await channel.send(chunk, **kwargs))
        return sent

    async def _track_sent(self, sent: list[discord.Message], source: discord.Message | None = None) -> None:
        if source is not None and sent:
            self.edit_tracker.track_reply(source.id, sent[0].id)
        for item in sent:
            guild_id = str(item.guild.id) if item.guild else None
            await self.memory.track_bot_message(str(item.id), str(item.channel.id), guild_id)

    async def _fetch_reply_context(self, message: discord.Message) -> ReplyContext | None:
        reference = message.reference
        if reference is None or reference.message_id is None:
            return None
        referenced = reference.resolved if isinstance(reference.resolved, discord.Message) else None
        if referenced is None:
            try:
                referenced = await message.channel.fetch_message(reference.message_id)
            except (discord.NotFound, discord.Forbidden, discord.HTTPException) as exc:
                logger.info("Reply context unavailable for message %s: %s", message.id, exc)
                return None
        return ReplyContext(
            author=referenced.author.name if referenced.author else "Unknown",
            text=(referenced.content or "").strip(),
            images=collect_image_urls(referenced),
            videos=collect_video_urls(referenced),
        )

    async def _record_incoming(self, message: discord.Message, allow_memory: bool) -> bool:
        content = (message.content or "").strip()
        if not allow_memory or not content:
            return False
        if self.content_policy.is_banned(content):
            logger.info("Skipped recording message %s: banned content", message.id)
            return False
        await self.memory.record_message(
            str(message.author.id),
            str(message.channel.id),
            str(message.guild.id) if message.guild else None,
            content,
            display_name=self._display_name(message.author),
        )
        return True

    async def _build_prompt_request(
        self,
        message: discord.Message,
        *,
        allow_memory: bool,
        already_recorded: bool,
    ) -> PromptRequest | None:
        prompt = self._strip_bot_mention(message.content or "")
        reply = await self._fetch_reply_context(message)
        reply_text = ""
        image_urls = collect_image_urls(message)
        video_urls = collect_video_urls(message)
        if reply is not None:
            reply_text = build_reply_context(reply.author, reply.text, has_video=bool(reply.videos))
            image_urls.extend(url for url in reply.images if url not in image_urls)
            video_urls.extend(url for url in reply.videos if url not in video_urls)
        if not prompt and not image_urls and not video_urls and not reply_text:
            return None
        return PromptRequest(
            user_id=str(message.author.id),
            channel_id=str(message.channel.id),
            guild_id=str(message.guild.id) if message.guild else None,
            prompt=prompt,
            reply_context_text=reply_text,
            image_urls=image_urls,
            video_urls=video_urls,
            allow_memory=allow_memory,
            already_recorded=already_recorded,
            display_name=self._display_name(message.author),
        )

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        await self._safe_execute("on_message", self._handle_message(message), notify=message.channel)

    async def _handle_message(self, message: discord.Message) -> None:
        gate = await self._memory_gate(message)
        recorded = await self._record_incoming(message, gate.allow_memory)

        mentioned = self._is_mentioned(message)
        if not gate.is_direct and not mentioned and not gate.autoreply_enabled:
            return

        text = self._strip_bot_mention(message.content or "")
        routable = text and message.guild is not None and not self.content_policy.is_banned(text)
        if routable and self.intent_router is not None:
            routed = await self.intent_router.route(
                text,
                guild_id=str(message.guild.id),
                user_id=str(message.author.id),
            )
            if routed:
                sent = await self._send_chunks(message.channel, routed, reference=message)
                await self._track_sent(sent)
                return

        request = await self._build_prompt_request(
            message,
            allow_memory=gate.allow_memory,
            already_recorded=recorded,
        )
        if request is None:
            return

        async with message.channel.typing():
            reply = await self.assembler.handle(request)
        if not reply:
            return
        sent = await self._send_chunks(message.channel, reply, reference=message)
        await self._track_sent(sent, source=message)

    async def on_message_edit(self, before: discord.Message, after: discord.Message) -> None:
        if after.author.bot or before.content == after.content:
            return
        await self._safe_execute("on_message_edit", self._handle_edit(after), notify=after.channel)

    async def _handle_edit(self, message: discord.Message) -> None:
        gate = await self._memory_gate(message)
        recorded = await self._record_incoming(message, gate.allow_memory)

        if not self.edit_tracker.should_handle_edit(message.id):
            return
        if not gate.is_direct and not self._is_mentioned(message):
            return
        reply_id = self.edit_tracker.get_reply_id(message.id)
        if reply_id is None:
            return

        request = await self._build_prompt_request(
            message,
            allow_memory=gate.allow_memory,
            already_recorded=recorded,
        )
        if request is None:
            return

        reply = await self.assembler.handle(request)
        if not reply:
            return
        try:
            target = await message.channel.fetch_message(reply_id)
        except discord.NotFound:
            logger.info("Tracked reply %s was deleted; skipping edit", reply_id)
            return
        await target.edit(content=truncate(reply, DISCORD_MESSAGE_LIMIT))
