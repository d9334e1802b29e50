"""User actions issued against the backing store."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .backend import ChatContext
from .errors import AuthError, PartialFailure, TransientBackendError, ValidationError
from .models import Message, UploadFile, format_file_size

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SendResult:
    """Outcome of a send: the stored message plus anything left behind."""

    message: Message
    rejected: list[ValidationError] = field(default_factory=list)
    failures: list[PartialFailure] = field(default_factory=list)

    @property
    def errors(self) -> list[Exception]:
        """Problems to show the user; the message itself was sent."""

        return [*self.rejected, *self.failures]


class OutboundCommands:
    def __init__(self, context: ChatContext) -> None:
        self._context = context
        self._background: set[asyncio.Task[None]] = set()

    @property
    def pending_embeddings(self) -> int:
        return len(self._background)

    async def send_message(
        self,
        channel_id: str,
        content: str,
        files: Iterable[UploadFile] = (),
        reply_to: str | None = None,
    ) -> SendResult:
        """Upload attachments, insert the message and request its embedding.

        Files above the upload cap are rejected up front and reported in the
        result. Uploads run in parallel; a failed upload drops that file only.
        """

        limit = self._context.max_upload_size
        accepted: list[UploadFile] = []
        rejected: list[ValidationError] = []
        for upload in files:
            if upload.size > limit:
                rejected.append(
                    ValidationError(f"{upload.name} is larger than the {format_file_size(limit)} limit")
                )
            else:
                accepted.append(upload)

        if not content.strip() and not accepted:
            raise rejected[0] if rejected else ValidationError("Message is empty")

        attachments, failures = await self._upload_all(channel_id, accepted)
        if not content.strip() and not attachments:
            raise TransientBackendError("No attachment could be uploaded")

        record = await self._context.rows.insert_message(
            {
                "channel_id": channel_id,
                "user_id": self._context.user.id,
                "parent_message_id": reply_to,
                "content": content,
                "attachments": attachments,
            }
        )
        message = Message.from_record(record)
        self._request_embedding(message.id)
        return SendResult(message=message, rejected=rejected, failures=failures)

    async def _upload_all(
        self, channel_id: str, files: list[UploadFile]
    ) -> tuple[list[Mapping[str, Any]], list[PartialFailure]]:
        outcomes = await asyncio.gather(
            *(self._context.blobs.upload(channel_id, upload) for upload in files),
            return_exceptions=True,
        )
        attachments: list[Mapping[str, Any]] = []
        failures: list[PartialFailure] = []
        for upload, outcome in zip(files, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning("Upload of %s failed; sending without it", upload.name, exc_info=outcome)
                failures.append(PartialFailure(f"Could not upload {upload.name}", cause=outcome))
                continue
            attachments.append({"id": outcome["id"], "name": outcome["name"], "url": outcome["url"]})
        return attachments, failures

    def _request_embedding(self, message_id: str) -> None:
        task = asyncio.create_task(self._embed(message_id), name=f"embed-{message_id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _embed(self, message_id: str) -> None:
        try:
            await self._context.embeddings.request_embedding(message_id)
        except Exception:
            logger.warning("Embedding request for message %s failed", message_id, exc_info=True)

    async def toggle_reaction(self, message_id: str, emoji: str) -> Mapping[str, Any]:
        return await self._context.rows.toggle_reaction(message_id, self._context.user.id, emoji)

    async def edit_message(self, message: Message, content: str) -> Message:
        if message.user_id != self._context.user.id:
            raise AuthError("Only the author can edit this message")
        if not content.strip() and not message.attachments:
            raise ValidationError("Message is empty")
        record = await self._context.rows.update_message(message.id, content)
        edited = Message.from_record(record)
        self._request_embedding(edited.id)
        return edited

    async def delete_message(self, message: Message) -> None:
        """Delete a message the current user wrote; the server checks again."""

        if message.user_id != self._context.user.id:
            raise AuthError("Only the author can delete this message")
        await self._context.rows.delete_message(message.id)

    async def wait_background(self) -> None:
        """Let outstanding embedding requests finish; used on shutdown."""

        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
