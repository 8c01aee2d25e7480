from jobwalk.db.base_class import Base  # noqa: F401

# Import all the models here so that Base has them registered
# This file should NOT be imported by models.
from jobwalk.models.job import Job  # noqa: F401
from jobwalk.models.field_session import FieldSession  # noqa: F401
from jobwalk.models.attachment import Attachment  # noqa: F401
from jobwalk.models.chunk import Chunk  # noqa: F401
from jobwalk.models.action_item import ActionItem  # noqa: F401
from jobwalk.models.notification import Notification  # noqa: F401
from jobwalk.models.chat_message import ChatMessage  # noqa: F401
