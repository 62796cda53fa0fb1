import os
import random
from datetime import datetime, timedelta, timezone

# Add 'backend' folder to Python path
import sys
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Database models and setup
from models.users import User
from models.restaurant import Restaurant, empty_rating
from models.category import Category
from models.product import Product
from models.order import Order, OrderItem, OrderStatus, PaymentMethod
from database import SessionLocal, init_db
from utils.tokenJWT import create_access_token

# Configuration
ADMIN_EMAIL = "admin@foodapp.pk"
CUSTOMER_EMAIL = "customer@foodapp.pk"
RESTAURANT_NAME = "Karachi Grill House"
HISTORY_DAYS = 45 # Spread of demo orders for the sales report
HISTORY_ORDERS = 60

MENU = {
    "Starters": [
        ("Chicken Samosa", 150.0, "Crispy pastry with spiced chicken"),
        ("Aloo Pakora", 120.0, "Potato fritters with mint chutney"),
    ],
    "Mains": [
        ("Chicken Karahi", 1450.0, "Half kilo, wok-cooked with tomatoes"),
        ("Beef Nihari", 1100.0, "Slow-cooked shank stew"),
        ("Chicken Biryani", 650.0, "Single plate, with raita"),
    ],
    "Drinks": [
        ("Mint Margarita", 300.0, None),
        ("Sweet Lassi", 250.0, None),
    ],
}
# End Configuration


def _get_or_create_user(session, email, name, role):
    user = session.query(User).filter(User.email == email).first()
    if not user:
        user = User(email=email, name=name, role=role)
        session.add(user)
        session.flush()
    return user


def seed_catalog(session, admin):
    """Creates the demo restaurant with its menu (idempotent by name)."""
    restaurant = session.query(Restaurant).filter(Restaurant.name == RESTAURANT_NAME).first()
    if restaurant:
        print(f"Restaurant '{RESTAURANT_NAME}' already exists, skipping catalog.")
        return restaurant

    restaurant = Restaurant(
        name=RESTAURANT_NAME,
        description="Charcoal grills and karahi since 1998.",
        admin_id=admin.id,
        address_street="Shahrah-e-Faisal 12",
        address_city="Karachi",
        address_country="Pakistan",
        address_postal_code="75350",
        contact_phone="+92 21 1234567",
        contact_email="grill@foodapp.pk",
        cuisine_types=["Pakistani", "BBQ"],
        delivery_available=True,
        minimum_order_amount=500.0,
        average_delivery_time=40,
        rating=empty_rating(),
    )
    session.add(restaurant)
    session.flush()
    admin.restaurant_id = restaurant.id

    for category_name, dishes in MENU.items():
        category = Category(name=category_name, restaurant_id=restaurant.id)
        session.add(category)
        session.flush()
        for name, price, description in dishes:
            session.add(Product(
                name=name,
                description=description,
                price=price,
                stock=random.randint(20, 80),
                category_id=category.id,
                restaurant_id=restaurant.id,
                created_by=admin.id,
            ))
    session.flush()
    print(f"Created restaurant '{RESTAURANT_NAME}' with {sum(len(d) for d in MENU.values())} products.")
    return restaurant


def seed_order_history(session, customer, restaurant):
    """Backdated delivered orders so the sales report has data to show."""
    products = session.query(Product).filter(Product.restaurant_id == restaurant.id).all()
    if not products:
        return
    now = datetime.now(timezone.utc)

    for _ in range(HISTORY_ORDERS):
        picked = random.sample(products, k=random.randint(1, 3))
        order = Order(
            user_id=customer.id,
            restaurant_id=restaurant.id,
            status=random.choice([OrderStatus.DELIVERED.value] * 4 + [OrderStatus.CANCELLED.value]),
            delivery_address="House 7, Block 2, Clifton, Karachi",
            payment_method=random.choice([m.value for m in PaymentMethod]),
            created_at=now - timedelta(days=random.uniform(0, HISTORY_DAYS)),
        )
        total = 0.0
        for p in picked:
            qty = random.randint(1, 3)
            # History only: catalog stock is left untouched
            order.items.append(OrderItem(product_id=p.id, product_name=p.name, quantity=qty, price=p.price))
            total += p.price * qty
        order.total_price = round(total, 2)
        session.add(order)

    print(f"Inserted {HISTORY_ORDERS} historical orders.")


def populate_database(with_history=True):
    """Main execution function to populate database."""
    init_db()
    session = SessionLocal()
    try:
        admin = _get_or_create_user(session, ADMIN_EMAIL, "Demo Admin", "admin")
        customer = _get_or_create_user(session, CUSTOMER_EMAIL, "Demo Customer", "customer")
        restaurant = seed_catalog(session, admin)
        if with_history and not session.query(Order).filter(Order.restaurant_id == restaurant.id).first():
            seed_order_history(session, customer, restaurant)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    # Tokens for trying the API locally
    print(f"Admin token:    {create_access_token({'sub': ADMIN_EMAIL})}")
    print(f"Customer token: {create_access_token({'sub': CUSTOMER_EMAIL})}")


if __name__ == "__main__":
    populate_database(with_history="--no-history" not in sys.argv)
