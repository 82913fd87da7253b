from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from kakeibo import models
from kakeibo.errors import HolidayNotFound, PersistenceFailed, ValidationFailed

logger = logging.getLogger(__name__)


class CustomHolidayService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_all(self) -> list[models.CustomHoliday]:
        return self.db.query(models.CustomHoliday).order_by(models.CustomHoliday.date, models.CustomHoliday.id).all()

    def create(self, *, day: date, name: str, is_recurring: bool = False) -> models.CustomHoliday:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed(["name must not be empty"])
        row = models.CustomHoliday(date=day, name=name, is_recurring=is_recurring)
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ValidationFailed([f"holiday already exists: {day.isoformat()} {name}"])
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Commit failed")
            raise PersistenceFailed(exc) from exc
        logger.info("Custom holiday added: %s %s", day, name)
        self.db.refresh(row)
        return row

    def delete(self, holiday_id: int) -> None:
        row = self.db.get(models.CustomHoliday, holiday_id)
        if row is None:
            raise HolidayNotFound(holiday_id)
        self.db.delete(row)
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Commit failed")
            raise PersistenceFailed(exc) from exc
