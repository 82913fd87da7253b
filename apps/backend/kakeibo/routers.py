from fastapi import APIRouter

from .api.holidays import router as holidays_router
from .api.recurring_payments import router as recurring_payments_router
from .api.savings_goals import router as savings_goals_router

router = APIRouter()
router.include_router(recurring_payments_router)
router.include_router(holidays_router)
router.include_router(savings_goals_router)
