"""
SCALE SMS Ingestion

Turns mobile-money and bank notifications into transactions, persisting each
logical transaction exactly once.
"""

__version__ = "0.1.0"

from .config import IngestionConfig
from .models import Direction, IngestOutcome, OutcomeStatus, ParsedTransaction, RawMessage
from .parser import SmsParser, parse_sms
from .session import IngestionSession

__all__ = [
    "Direction",
    "IngestOutcome",
    "IngestionConfig",
    "IngestionSession",
    "OutcomeStatus",
    "ParsedTransaction",
    "RawMessage",
    "SmsParser",
    "parse_sms",
]
