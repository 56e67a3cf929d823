from typing import Iterable, Optional

from .models import AttachmentRef, CleanedMessage, RawMessage


def attachment_stub(filename: Optional[str], title: Optional[str]) -> str:
    stub = f"[Attachment {filename or ''}]"
    if title:
        stub = f"{stub} {title}"
    return stub


def normalize(raw: RawMessage, attachment_stub_enabled: bool = False) -> Optional[CleanedMessage]:
    """Map a backend message onto the persisted record.

    Returns None for kinds that never become a record of their own:
    reactions, edits, deletions and anything this exporter doesn't know.
    """
    content = raw.content
    fields = {}

    if content.type == "text":
        fields["text"] = content.body
        fields["reply_to"] = content.reply_to
    elif content.type == "attachment" and content.attachment is not None:
        attachment = content.attachment
        fields["attachment"] = AttachmentRef(
            path=attachment.path, asset_type=attachment.asset_type
        )
        if attachment_stub_enabled:
            fields["text"] = attachment_stub(attachment.filename, attachment.title)
        else:
            fields["text"] = attachment.title
        fields["reply_to"] = content.reply_to
    else:
        return None

    return CleanedMessage(
        id=raw.id,
        sent_at=raw.sent_at,
        sender_uid=raw.sender.uid,
        sender_username=raw.sender.username,
        device_id=raw.sender.device_id,
        device_name=raw.sender.device_name,
        revoked_device=raw.revoked_device,
        **fields,
    )


def normalize_chunk(
    chunk: Iterable[RawMessage], attachment_stub_enabled: bool = False
) -> list[CleanedMessage]:
    """Normalize a chunk, dropping what ``normalize`` drops and keeping order."""
    cleaned = (normalize(raw, attachment_stub_enabled) for raw in chunk)
    return [msg for msg in cleaned if msg is not None]
