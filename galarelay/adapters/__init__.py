from .crm import HighLevelCRM, FieldUpdate
from .ledger import CsvLedger
from .mailer import Mailer, SmtpConfig, EventInfo
from .sheets import SheetsLedger

__all__ = [
    "HighLevelCRM", "FieldUpdate", "CsvLedger", "Mailer", "SmtpConfig",
    "EventInfo", "SheetsLedger",
]
