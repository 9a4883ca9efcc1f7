"""Interactive product manager for the store back office.

Runs against the store database directly:

    darktides-products
"""

from decimal import Decimal, InvalidOperation
from pydantic import ValidationError

from darktides.application.errors import StorefrontError
from darktides.application.products import ProductService
from darktides.application.schemas import ProductCreate, ProductUpdate

MENU = """
=== Main Menu ===
1. Add New Product
2. Update Stock Quantity
3. Edit Product Details (name, price, description)
4. Toggle Product Active Status (hide/show)
5. View Inventory
6. Delete Product (Permanent)
7. Exit"""

class ProductManager:
    def __init__(self, session_factory, ask=input, out=print):
        self.session_factory = session_factory
        self.ask = ask
        self.out = out

    def _pick(self, service: ProductService, label: str, describe):
        products = service.list()
        if not products:
            self.out("No products found.")
            return None
        self.out("\nCurrent Products:")
        for i, p in enumerate(products, start=1):
            self.out(f"{i}. {describe(p)}")
        answer = self.ask(f"\nSelect product number{label}: ").strip()
        if not answer.isdigit() or not 1 <= int(answer) <= len(products):
            self.out("Invalid selection.")
            return None
        return products[int(answer) - 1]

    def add_product(self, service: ProductService):
        self.out("\n=== Add New Product ===\n")
        prompts = [
            ("id", "Product ID (e.g., bpc157-10): "),
            ("name", "Product Name (e.g., BPC-157 10mg): "),
            ("short_name", "Short Name (e.g., BPC-157): "),
            ("dosage", "Dosage (e.g., 10 MG): "),
            ("price", "Price (e.g., 40.00): "),
            ("old_price", "Old Price (e.g., 60.00, Enter for none): "),
            ("sku", "SKU (e.g., DT-BPC-010): "),
            ("description", "Description: "),
            ("stock_quantity", "Initial Stock Quantity: "),
            ("display_order", "Display Order (1-100): "),
        ]
        answers = {field: self.ask(prompt).strip() for field, prompt in prompts}
        # blank optional answers fall back to the model defaults
        data = ProductCreate(**{field: value for field, value in answers.items() if value})
        service.create(data)
        self.out("\nProduct added successfully!")

    def update_stock(self, service: ProductService):
        self.out("\n=== Update Product Stock ===")
        product = self._pick(service, "", lambda p: f"{p.name} - Current Stock: {p.stock_quantity}")
        if not product:
            return
        answer = self.ask(f"New stock quantity for {product.name}: ").strip()
        if not answer.isdigit():
            self.out("Invalid quantity.")
            return
        service.set_stock(product.id, int(answer), note="product manager")
        self.out("\nStock updated successfully!")

    def edit_details(self, service: ProductService):
        self.out("\n=== Edit Product Details ===")
        product = self._pick(service, " to edit", lambda p: f"{p.name} - ${p.price}")
        if not product:
            return
        self.out(f"\nEditing: {product.name}")
        self.out("(Press Enter to keep current value)\n")
        name = self.ask(f"Name [{product.name}]: ").strip()
        price = self.ask(f"Price [{product.price}]: ").strip()
        old_price = self.ask(f"Old Price [{product.old_price or 'none'}]: ").strip()
        description = self.ask("Description [current]: ").strip()
        try:
            changes = ProductUpdate(
                name=name or None,
                price=Decimal(price) if price else None,
                old_price=Decimal(old_price) if old_price else None,
                description=description or None,
            )
        except InvalidOperation:
            self.out("Invalid price.")
            return
        service.update(product.id, changes)
        self.out("\nProduct updated successfully!")

    def toggle_active(self, service: ProductService):
        self.out("\n=== Toggle Product Active Status ===")
        product = self._pick(
            service, " to toggle",
            lambda p: f"{p.name} - {'Active' if p.is_active else 'Inactive'}",
        )
        if not product:
            return
        product = service.toggle(product.id)
        self.out(f"\nProduct {product.name} is now {'active' if product.is_active else 'inactive'}!")

    def view_inventory(self, service: ProductService):
        self.out("\n=== Current Inventory ===\n")
        products = service.list()
        if not products:
            self.out("No products found.")
            return
        self.out(f"{'ID':<16}{'Name':<32}{'Stock':>7}{'Reserved':>10}  Active")
        self.out("-" * 80)
        for p in products:
            self.out(
                f"{p.id:<16}{p.name[:30]:<32}{p.stock_quantity:>7}{p.reserved_quantity:>10}  "
                f"{'yes' if p.is_active else 'no'}"
            )

    def delete_product(self, service: ProductService):
        self.out("\n=== Delete Product (Permanent) ===\n")
        self.out("WARNING: This will permanently delete the product!")
        self.out('Tip: Consider using "Toggle Active Status" to hide products instead.')
        product = self._pick(service, " to DELETE", lambda p: f"{p.name} - Stock: {p.stock_quantity}")
        if not product:
            return
        confirm = self.ask(f'\nType "DELETE" to confirm removal of "{product.name}": ')
        if confirm.strip() != "DELETE":
            self.out("\nDeletion cancelled.")
            return
        service.delete(product.id)
        self.out(f'\nProduct "{product.name}" deleted permanently.')

    def run(self):
        actions = {
            "1": self.add_product,
            "2": self.update_stock,
            "3": self.edit_details,
            "4": self.toggle_active,
            "5": self.view_inventory,
            "6": self.delete_product,
        }
        self.out("\nDarkTides Research - Product Manager\n")
        while True:
            self.out(MENU)
            choice = self.ask("\nSelect an option (1-7): ").strip()
            if choice == "7":
                self.out("\nGoodbye!")
                return
            action = actions.get(choice)
            if not action:
                self.out("\nInvalid option. Please try again.")
                continue
            db = self.session_factory()
            try:
                action(ProductService(db))
            except ValidationError as e:
                self.out(f"\nInvalid input: {e.error_count()} field(s) rejected")
            except StorefrontError as e:
                self.out(f"\nError: {e.public_message}")
            finally:
                db.close()

def main():
    from darktides.infrastructure.db import SessionLocal, init_models
    init_models()
    try:
        ProductManager(SessionLocal).run()
    except (KeyboardInterrupt, EOFError):
        print("\nGoodbye!")

if __name__ == "__main__":
    main()
