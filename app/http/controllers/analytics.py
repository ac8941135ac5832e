"""
Analytics routes
"""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from app.database import get_db
from app.models import User
from app.auth import get_current_user, require_organization
from app.services.sales_velocity import calculate_sales_velocity_ranking

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/sales-velocity")
async def sales_velocity_ranking(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Products ranked by units sold in the last 60 days, with velocity and stock days remaining."""
    organization_id = require_organization(current_user)
    try:
        result = calculate_sales_velocity_ranking(db, organization_id=organization_id)
    except Exception as e:
        logger.exception("Sales velocity ranking failed for org %s: %s", organization_id, e)
        raise HTTPException(status_code=500, detail="Could not calculate sales velocity")
    return {"success": True, "data": result["products"], "summary": result["summary"]}
