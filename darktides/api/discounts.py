from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from darktides.infrastructure.db import get_db
from darktides.application.discounts import DiscountService
from darktides.application.schemas import DiscountValidateRequest, DiscountResult

router = APIRouter(prefix="/discounts", tags=["discounts"])

@router.post("/validate", response_model=DiscountResult)
def validate_discount(payload: DiscountValidateRequest, db: Session = Depends(get_db)):
    return DiscountService(db).validate(payload.code, payload.subtotal)
