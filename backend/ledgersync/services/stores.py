"""
Persistence surface for the sync engine.

Thin repositories over the SQLAlchemy models. Each call opens its own session
from the factory and closes it before returning; returned ORM rows are
detached but fully loaded.
"""
from typing import List, Optional
from datetime import date, datetime, timezone
from decimal import Decimal
import logging
import re

from sqlalchemy.exc import IntegrityError

from ledgersync.database import SessionLocal
from ledgersync.exceptions import DuplicateSendError, LocationNotFound
from ledgersync.models.auto_send_setting import AutoSendMode, AutoSendSetting
from ledgersync.models.cafe_location import CafeLocation
from ledgersync.models.ledger_token import LedgerToken
from ledgersync.models.send_log import SendLog, SendStatus
from ledgersync.schemas.cafe import CafeCredentials
from ledgersync.schemas.ledger import StoredToken, TokenPair
from ledgersync.utils.encryption import decrypt_secret, encrypt_secret

logger = logging.getLogger(__name__)

SCHEDULE_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SendLogStore:
    """Append-only log of ledger send attempts"""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def get_success(self, location_id: int, business_date: date) -> Optional[SendLog]:
        """The successful send for (location, business date), if any"""
        db = self.session_factory()
        try:
            return db.query(SendLog).filter(
                SendLog.location_id == location_id,
                SendLog.business_date == business_date.isoformat(),
                SendLog.status == SendStatus.SUCCESS,
            ).first()
        finally:
            db.close()

    def _append(self, log: SendLog) -> SendLog:
        db = self.session_factory()
        try:
            db.add(log)
            db.commit()
            db.refresh(log)
            return log
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def record_success(
        self,
        account_id: int,
        location_id: int,
        location_name: str,
        business_date: date,
        journal_entry_id: str,
        total_cash: Decimal,
        shift_count: int,
    ) -> SendLog:
        """
        Append the success row for (location, business date)

        Raises:
            DuplicateSendError: a success row already exists (unique index)
        """
        try:
            return self._append(SendLog(
                account_id=account_id,
                location_id=location_id,
                location_name=location_name,
                business_date=business_date.isoformat(),
                journal_entry_id=journal_entry_id,
                total_cash=total_cash,
                shift_count=shift_count,
                status=SendStatus.SUCCESS,
            ))
        except IntegrityError as e:
            existing = self.get_success(location_id, business_date)
            logger.error(
                "Journal entry %s posted but %s %s already had a successful send",
                journal_entry_id, location_name, business_date,
            )
            raise DuplicateSendError(
                location_id,
                business_date.isoformat(),
                existing.journal_entry_id if existing else None,
            ) from e

    def record_failure(
        self,
        account_id: int,
        location_id: int,
        location_name: str,
        business_date: date,
        error_message: str,
        total_cash: Optional[Decimal] = None,
        shift_count: Optional[int] = None,
        journal_entry_id: Optional[str] = None,
    ) -> SendLog:
        """
        Append a failed attempt

        journal_entry_id is set only when the ledger accepted the entry but the
        success row could not be written.
        """
        return self._append(SendLog(
            account_id=account_id,
            location_id=location_id,
            location_name=location_name,
            business_date=business_date.isoformat(),
            journal_entry_id=journal_entry_id,
            total_cash=total_cash,
            shift_count=shift_count,
            status=SendStatus.FAILED,
            error_message=error_message,
        ))

    def recent(self, account_id: int, limit: int = 50) -> List[SendLog]:
        """Most recent attempts for an account, newest first"""
        db = self.session_factory()
        try:
            return db.query(SendLog).filter(
                SendLog.account_id == account_id
            ).order_by(SendLog.sent_at.desc(), SendLog.id.desc()).limit(limit).all()
        finally:
            db.close()


class AutoSendSettingStore:
    """Per (account, location) auto-send schedules"""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def list_enabled(self) -> List[AutoSendSetting]:
        db = self.session_factory()
        try:
            return db.query(AutoSendSetting).filter(
                AutoSendSetting.enabled == True
            ).order_by(AutoSendSetting.id).all()
        finally:
            db.close()

    def get(self, account_id: int, location_id: int) -> Optional[AutoSendSetting]:
        db = self.session_factory()
        try:
            return db.query(AutoSendSetting).filter(
                AutoSendSetting.account_id == account_id,
                AutoSendSetting.location_id == location_id,
            ).first()
        finally:
            db.close()

    def upsert(
        self,
        account_id: int,
        location_id: int,
        enabled: bool,
        mode: AutoSendMode,
        schedule_time: Optional[str] = None,
    ) -> AutoSendSetting:
        """
        Create or update the setting for (account, location)

        Raises:
            ValueError: daily_time mode without a valid HH:MM schedule_time
        """
        mode = AutoSendMode(mode)
        if mode == AutoSendMode.DAILY_TIME and not (
            schedule_time and SCHEDULE_TIME_PATTERN.match(schedule_time)
        ):
            raise ValueError(f"daily_time mode needs an HH:MM schedule_time, got {schedule_time!r}")

        db = self.session_factory()
        try:
            setting = db.query(AutoSendSetting).filter(
                AutoSendSetting.account_id == account_id,
                AutoSendSetting.location_id == location_id,
            ).first()
            if setting is None:
                setting = AutoSendSetting(account_id=account_id, location_id=location_id)
                db.add(setting)
            setting.enabled = enabled
            setting.mode = mode
            setting.schedule_time = schedule_time
            db.commit()
            db.refresh(setting)
            return setting
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class LedgerTokenStore:
    """Encrypted QuickBooks tokens, one row per account"""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    @staticmethod
    def _to_stored(row: LedgerToken) -> StoredToken:
        return StoredToken(
            account_id=row.account_id,
            realm_id=row.realm_id,
            company_name=row.company_name,
            access_token=decrypt_secret(row.access_token_encrypted),
            refresh_token=decrypt_secret(row.refresh_token_encrypted),
            access_token_expires_at=_from_utc_naive(row.access_token_expires_at),
            refresh_token_expires_at=_from_utc_naive(row.refresh_token_expires_at),
        )

    @staticmethod
    def _apply(row: LedgerToken, tokens: TokenPair) -> None:
        row.access_token_encrypted = encrypt_secret(tokens.access_token)
        row.refresh_token_encrypted = encrypt_secret(tokens.refresh_token)
        row.access_token_expires_at = _to_utc_naive(tokens.access_token_expires_at)
        row.refresh_token_expires_at = _to_utc_naive(tokens.refresh_token_expires_at)

    def get(self, account_id: int) -> Optional[StoredToken]:
        db = self.session_factory()
        try:
            row = db.query(LedgerToken).filter(LedgerToken.account_id == account_id).first()
            return self._to_stored(row) if row else None
        finally:
            db.close()

    def save(
        self,
        account_id: int,
        realm_id: str,
        tokens: TokenPair,
        company_name: Optional[str] = None,
    ) -> StoredToken:
        """Store a new connection (replacing any previous one for the account)"""
        db = self.session_factory()
        try:
            row = db.query(LedgerToken).filter(LedgerToken.account_id == account_id).first()
            if row is None:
                row = LedgerToken(account_id=account_id)
                db.add(row)
            row.realm_id = realm_id
            row.company_name = company_name
            self._apply(row, tokens)
            db.commit()
            db.refresh(row)
            return self._to_stored(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def update_tokens(self, account_id: int, tokens: TokenPair) -> StoredToken:
        """
        Persist a rotated token pair

        Raises:
            LookupError: the account has no stored connection
        """
        db = self.session_factory()
        try:
            row = db.query(LedgerToken).filter(LedgerToken.account_id == account_id).first()
            if row is None:
                raise LookupError(f"No ledger token stored for account {account_id}")
            self._apply(row, tokens)
            db.commit()
            db.refresh(row)
            return self._to_stored(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete(self, account_id: int) -> bool:
        db = self.session_factory()
        try:
            deleted = db.query(LedgerToken).filter(LedgerToken.account_id == account_id).delete()
            db.commit()
            return deleted > 0
        finally:
            db.close()


class LocationStore:
    """Read-only access to cafe locations and their decrypted credentials"""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def get(self, account_id: int, location_id: int) -> CafeCredentials:
        """
        Credentials for an active location

        Raises:
            LocationNotFound: no such location for the account, or it is deactivated
        """
        db = self.session_factory()
        try:
            location = db.query(CafeLocation).filter(
                CafeLocation.id == location_id,
                CafeLocation.account_id == account_id,
            ).first()
            if location is None:
                raise LocationNotFound(f"Location {location_id} not found for account {account_id}")
            if not location.is_active:
                raise LocationNotFound(f"Location {location_id} ({location.name}) is deactivated")
            return CafeCredentials(
                location_id=location.id,
                account_id=location.account_id,
                name=location.name,
                cafe_id=location.icafe_cafe_id,
                api_key=decrypt_secret(location.api_key_encrypted),
            )
        finally:
            db.close()
