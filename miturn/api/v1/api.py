from fastapi import APIRouter
from miturn.api.v1.endpoints import circles, transactions, recurring, goals, passes

api_router = APIRouter()
api_router.include_router(circles.router, prefix="/circles", tags=["circles"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
api_router.include_router(recurring.router, prefix="/recurring-contributions", tags=["recurring-contributions"])
api_router.include_router(goals.router, prefix="/goals", tags=["goals"])
api_router.include_router(passes.router, prefix="/passes", tags=["passes"])
