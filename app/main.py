from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import CORS_ORIGINS
from app.db import engine, Base
from app.logging_config import configure_logging

from app.models.occasion import Occasion
from app.models.wishlist_item import WishlistItem
from app.models.auto_gifting_settings import AutoGiftingSettings
from app.models.auto_gift_rule import AutoGiftRule
from app.models.auto_gift_execution import AutoGiftExecution
from app.models.approval_token import ApprovalToken
from app.models.gift_order import GiftOrder
from app.models.zma_funding_schedule import ZMAFundingSchedule
from app.models.zma_funding_alert import ZMAFundingAlert
from app.models.internal_job import InternalJob
from app.models.onboarding_progress import OnboardingProgress
from app.models.payment_attempt import PaymentAttempt

from app.routes.occasions import router as occasions_router
from app.routes.wishlist import router as wishlist_router
from app.routes.auto_gift_rules import router as auto_gift_rules_router
from app.routes.auto_gifting_settings import router as auto_gifting_settings_router
from app.routes.executions import router as executions_router
from app.routes.approvals import router as approvals_router
from app.routes.orders import router as orders_router
from app.routes.funding import router as funding_router
from app.routes.internal_jobs import router as internal_jobs_router
from app.routes.onboarding import router as onboarding_router

configure_logging()

app = FastAPI(title="Auto-Gift Engine")

# ─── CORS ─────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup():
    Base.metadata.create_all(bind=engine)


app.include_router(occasions_router)
app.include_router(wishlist_router)
app.include_router(auto_gift_rules_router)
app.include_router(auto_gifting_settings_router)
app.include_router(executions_router)
app.include_router(approvals_router)
app.include_router(orders_router)
app.include_router(funding_router)
app.include_router(internal_jobs_router)
app.include_router(onboarding_router)


@app.get("/")
def read_root():
    return {"message": "Auto-Gift Engine is running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8001, reload=True)
