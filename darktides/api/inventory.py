from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session
from typing import Optional
from darktides.infrastructure.db import get_db
from darktides.application.inventory import InventoryService, new_session_id
from darktides.application.schemas import (
    AvailabilityResult, ReservationRequest, ReservationResult, ReservationRead, SessionRead,
)
from .deps import session_id_header, require_session

router = APIRouter(tags=["inventory"])

@router.post("/sessions", response_model=SessionRead, status_code=201)
def create_session():
    return SessionRead(session_id=new_session_id())

@router.get("/inventory/{product_id}/availability", response_model=AvailabilityResult)
def check_availability(
    product_id: str,
    quantity: int = Query(1, ge=1),
    session_id: Optional[str] = Depends(session_id_header),
    db: Session = Depends(get_db),
):
    return InventoryService(db).check_availability(product_id, quantity, session_id=session_id)

@router.post("/inventory/reservations", response_model=ReservationResult)
def reserve(
    payload: ReservationRequest,
    response: Response,
    session_id: str = Depends(require_session),
    db: Session = Depends(get_db),
):
    result = InventoryService(db).reserve(payload.product_id, payload.quantity, session_id)
    response.status_code = 201 if result.success else 409
    return result

@router.get("/inventory/reservations", response_model=list[ReservationRead])
def list_reservations(session_id: str = Depends(require_session), db: Session = Depends(get_db)):
    return InventoryService(db).session_reservations(session_id)

@router.delete("/inventory/reservations/{reservation_id}", status_code=204)
def release(reservation_id: str, session_id: str = Depends(require_session), db: Session = Depends(get_db)):
    if not InventoryService(db).release(reservation_id, session_id=session_id):
        raise HTTPException(status_code=404, detail="Reservation not found")
    return Response(status_code=204)
