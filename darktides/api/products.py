from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from darktides.infrastructure.db import get_db
from darktides.application.products import ProductService
from darktides.application.schemas import ProductPublic
from darktides.domain.models import Product

router = APIRouter(prefix="/products", tags=["products"])

@router.get("/", response_model=list[ProductPublic])
def list_products(db: Session = Depends(get_db)):
    return ProductService(db).list_active()

@router.get("/{product_id}", response_model=ProductPublic)
def get_product(product_id: str, db: Session = Depends(get_db)):
    product = db.query(Product).filter(Product.id == product_id, Product.is_active.is_(True)).first()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product
