"""Database utilities for the AURA gateway."""

from .engine import get_async_engine, get_session_maker, init_db  # noqa: F401
from .models import Base  # noqa: F401
