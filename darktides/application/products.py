from sqlalchemy.orm import Session
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from darktides.core import get_logger
from darktides.domain.models import Product, InventoryTransaction
from .errors import DuplicateError, NotFoundError, StorefrontError
from .schemas import ProductCreate, ProductUpdate

logger = get_logger(__name__)

class ProductService:
    def __init__(self, db: Session):
        self.db = db

    def list_active(self):
        return (
            self.db.query(Product)
            .filter(Product.is_active.is_(True))
            .order_by(Product.display_order.is_(None), Product.display_order, Product.name)
            .all()
        )

    def list(self):
        return self.db.query(Product).order_by(Product.display_order.is_(None), Product.display_order, Product.id).all()

    def get(self, product_id: str) -> Product:
        product = self.db.query(Product).filter(Product.id == product_id).populate_existing().first()
        if not product:
            raise NotFoundError(f"product {product_id} not found", "Product not found")
        return product

    def create(self, data: ProductCreate) -> Product:
        product = Product(**data.model_dump(), reserved_quantity=0)
        self.db.add(product)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateError(f"product {data.id} exists", "A product with this id or SKU already exists")
        self.db.refresh(product)
        if product.stock_quantity:
            self._record(product.id, "adjustment", product.stock_quantity, product.stock_quantity, {"note": "initial stock"})
            self.db.commit()
        logger.info(f"Product {product.id} created")
        return product

    def update(self, product_id: str, data: ProductUpdate) -> Product:
        product = self.get(product_id)
        for key, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(product, key, value)
        self.db.commit()
        self.db.refresh(product)
        return product

    def set_stock(self, product_id: str, stock_quantity: int, note: str = None) -> Product:
        """Set physical stock. Refused when it would drop below units currently held."""
        if stock_quantity < 0:
            raise StorefrontError("negative stock", "Stock cannot be negative")
        product = self.get(product_id)
        previous = product.stock_quantity
        result = self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.reserved_quantity <= stock_quantity)
            .values(stock_quantity=stock_quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise StorefrontError(
                f"stock {stock_quantity} below reserved for {product_id}",
                "Stock cannot be set below the quantity currently reserved",
            )
        self._record(product_id, "adjustment", stock_quantity - previous, stock_quantity, {"note": note} if note else None)
        self.db.commit()
        logger.info(f"Stock for {product_id} set to {stock_quantity} (was {previous})")
        return self.get(product_id)

    def toggle(self, product_id: str) -> Product:
        product = self.get(product_id)
        product.is_active = not product.is_active
        self.db.commit()
        self.db.refresh(product)
        return product

    def delete(self, product_id: str) -> None:
        product = self.get(product_id)
        self.db.delete(product)
        self.db.commit()
        logger.info(f"Product {product_id} deleted")

    def transactions(self, product_id: str = None, limit: int = 100):
        query = self.db.query(InventoryTransaction)
        if product_id:
            query = query.filter(InventoryTransaction.product_id == product_id)
        return query.order_by(InventoryTransaction.id.desc()).limit(limit).all()

    def _record(self, product_id, transaction_type, change, balance, details=None):
        self.db.add(InventoryTransaction(
            product_id=product_id,
            transaction_type=transaction_type,
            quantity_change=change,
            balance_after=balance,
            details=details,
        ))
