# SQLModel tables, imported so create_all sees every table.
from .base import UUIDMixin, TimestampMixin, SoftDeleteMixin  # noqa: F401
from .task import Task  # noqa: F401
from .subtask import Subtask  # noqa: F401
from .history import TaskHistory  # noqa: F401
