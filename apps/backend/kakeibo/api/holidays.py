from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kakeibo.core.database import get_db
from kakeibo.core.deps import get_business_day_resolver
from kakeibo.schemas import BusinessDayOut, CustomHolidayCreate, CustomHolidayOut
from kakeibo.services.business_days import BusinessDayResolver, ShiftDirection
from kakeibo.services.holiday_service import CustomHolidayService


router = APIRouter(prefix="/holidays", tags=["holidays"])


@router.get("", response_model=list[CustomHolidayOut])
def list_custom_holidays(db: Session = Depends(get_db)):
    return CustomHolidayService(db).get_all()


@router.post("", response_model=CustomHolidayOut, status_code=201)
def create_custom_holiday(payload: CustomHolidayCreate, db: Session = Depends(get_db)):
    return CustomHolidayService(db).create(day=payload.date, name=payload.name, is_recurring=payload.is_recurring)


@router.delete("/{holiday_id}", status_code=204)
def delete_custom_holiday(holiday_id: int, db: Session = Depends(get_db)):
    CustomHolidayService(db).delete(holiday_id)


@router.get("/business-day", response_model=BusinessDayOut)
def business_day(
    day: date = Query(..., alias="date"),
    direction: ShiftDirection = Query(ShiftDirection.NEXT),
    resolver: BusinessDayResolver = Depends(get_business_day_resolver),
):
    return BusinessDayOut(
        date=day,
        is_business_day=resolver.is_business_day(day),
        shifted=resolver.shift(day, direction),
    )
