from .errors import DBCError, DBCIOError
from .models import ByteOrder, Database, ImportResult, Message, Signal, mask_for_length
from .parser import DBCParser
from .validator import ValidationResult, validate_messages
from .writer import DBCWriter

__all__ = [
    "ByteOrder",
    "Database",
    "DBCError",
    "DBCIOError",
    "DBCParser",
    "DBCWriter",
    "ImportResult",
    "Message",
    "Signal",
    "ValidationResult",
    "mask_for_length",
    "validate_messages",
]
