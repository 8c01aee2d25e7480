from jobwalk.models.job import Job
from jobwalk.models.field_session import FieldSession, SessionStatus
from jobwalk.models.attachment import Attachment
from jobwalk.models.chunk import Chunk
from jobwalk.models.action_item import ActionItem
from jobwalk.models.notification import Notification
from jobwalk.models.chat_message import ChatMessage

__all__ = [
    "Job",
    "FieldSession",
    "SessionStatus",
    "Attachment",
    "Chunk",
    "ActionItem",
    "Notification",
    "ChatMessage",
]
