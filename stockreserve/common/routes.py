from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.common.constants import logger
from stockreserve.db.dependencies import get_session

home_router = APIRouter()


@home_router.get("/health")
async def health_check(session:AsyncSession=Depends(get_session)):
    try:
        await session.execute(select(1))
    except SQLAlchemyError as e:
        logger.error("health.db_unreachable", extra={"error": str(e)})
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database connection error")

    return {"status": "healthy"}
