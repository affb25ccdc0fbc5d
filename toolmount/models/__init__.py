"""
toolmount.models - SQLAlchemy Database Models

Models are organized by domain:
- base: Base model classes with common functionality
- primitive: Primitive definitions and execution history
- runtime_setting: Persisted runtime state (permission gate)
- primitive_data: JSON documents reachable from handlers

Usage:
    >>> from toolmount.models import Primitive
    >>> from toolmount.models.database import get_engine, get_sessionmaker
    >>>
    >>> sessionmaker = get_sessionmaker(get_engine())
    >>> async with sessionmaker() as session:
    ...     result = await session.execute(select(Primitive).where(Primitive.enabled.is_(True)))
"""

from toolmount.models.base import Base
from toolmount.models.primitive import Primitive, PrimitiveExecution
from toolmount.models.primitive_data import PrimitiveDocument
from toolmount.models.runtime_setting import RuntimeSetting

__all__ = [
    "Base",
    "Primitive",
    "PrimitiveDocument",
    "PrimitiveExecution",
    "RuntimeSetting",
]
