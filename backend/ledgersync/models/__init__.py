"""
Models package - Import all models so metadata is complete
"""
from ledgersync.database import Base

from ledgersync.models.cafe_location import CafeLocation
from ledgersync.models.auto_send_setting import AutoSendSetting, AutoSendMode
from ledgersync.models.send_log import SendLog, SendStatus
from ledgersync.models.ledger_token import LedgerToken

__all__ = [
    "Base",
    "CafeLocation",
    "AutoSendSetting",
    "AutoSendMode",
    "SendLog",
    "SendStatus",
    "LedgerToken",
]
