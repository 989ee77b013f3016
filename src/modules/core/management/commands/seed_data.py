from __future__ import annotations

import random
from datetime import timedelta
from decimal import Decimal
from typing import Iterable

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.utils import timezone

from modules.customers.models import Customer, CustomerType
from modules.customers.repositories.django_repository import CustomerDjangoRepository
from modules.orders.constants import BillingFrequency, OrderType, RecurringFrequency
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO, CreatePackagingDTO
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderService
from modules.products.models import PackagingType, PriceVariation, Product
from modules.products.repositories.django_repository import ProductDjangoRepository
from modules.recurrence.services import RecurrenceScheduler


class Command(BaseCommand):
    help = "Seed database with realistic development data."

    def handle(self, *args, **options):
        random.seed(42)
        self.stdout.write("Seeding development data...")

        users_created = self._seed_users()
        customers = self._seed_customers()
        products = self._seed_products()
        packaging = self._seed_packaging()
        orders_created = self._seed_orders(customers, products, packaging)
        templates_created = self._seed_templates(customers, products, packaging)

        self.stdout.write(
            self.style.SUCCESS(
                "Seed completed: "
                f"users={users_created}, "
                f"customers={len(customers)}, "
                f"products={len(products)}, "
                f"orders={orders_created}, "
                f"templates={templates_created}"
            )
        )

    def _seed_users(self) -> int:
        User = get_user_model()
        created = 0
        if not User.objects.filter(username="admin").exists():
            User.objects.create_superuser("admin", password="admin123")
            created += 1
        if not User.objects.filter(username="grower").exists():
            User.objects.create_user("grower", password="grower123", is_staff=True)
            created += 1
        return created

    def _seed_customers(self) -> list[Customer]:
        self.stdout.write("Creating customers...")
        customers: list[Customer] = []
        seed_customers = [
            ("Harbour Bistro", "orders@harbourbistro.example", CustomerType.WHOLESALE, Decimal("15")),
            ("Green Table Cafe", "kitchen@greentable.example", CustomerType.WHOLESALE, None),
            ("Kits Grocery Co-op", "buying@kitscoop.example", CustomerType.WHOLESALE, Decimal("20")),
            ("Maya Chen", "maya@example.com", CustomerType.RETAIL, None),
            ("Omar Haddad", "omar@example.com", CustomerType.RETAIL, None),
            ("Priya Nair", "priya@example.com", CustomerType.RETAIL, None),
        ]
        repository = CustomerDjangoRepository()
        for name, email, customer_type, discount in seed_customers:
            customer = repository.get_by_email(email)
            if customer is None:
                customer = repository.save(
                    Customer(
                        name=name,
                        email=email,
                        customer_type=customer_type,
                        wholesale_discount_percentage=discount,
                    )
                )
            customers.append(customer)
        self.stdout.write(self.style.SUCCESS("Creating customers... Done!"))
        return customers

    def _seed_products(self) -> list[Product]:
        self.stdout.write("Creating products...")
        products: list[Product] = []
        catalog = [
            ("SUN-001", "Sunflower", Decimal("6.50"), True),
            ("PEA-001", "Pea Shoots", Decimal("6.00"), True),
            ("RAD-001", "Radish Triton", Decimal("7.00"), True),
            ("BRO-001", "Broccoli", Decimal("7.50"), True),
            ("MIX-001", "Spicy Salad Mix", Decimal("8.00"), True),
            ("DEL-001", "Delivery Fee", Decimal("5.00"), False),
        ]
        repository = ProductDjangoRepository()
        for sku, name, price, grown in catalog:
            product = repository.get_by_sku(sku)
            if product is None:
                product = repository.save(
                    Product(
                        sku=sku,
                        name=name,
                        base_price=price,
                        wholesale_discount_percentage=Decimal("10") if grown else None,
                        requires_crop_production=grown,
                    )
                )
                if grown:
                    PriceVariation.objects.create(
                        product=product, name="Clamshell 100g", price=price, is_default=True
                    )
                    PriceVariation.objects.create(
                        product=product, name="Bulk 1kg", price=price * 8
                    )
            products.append(product)
        self.stdout.write(self.style.SUCCESS("Creating products... Done!"))
        return products

    def _seed_packaging(self) -> list[PackagingType]:
        packaging: list[PackagingType] = []
        for name, grams, cost in (
            ("Clamshell 100g", 100, Decimal("0.35")),
            ("Compostable bag 1kg", 1000, Decimal("0.60")),
        ):
            packaging_type, _ = PackagingType.objects.get_or_create(
                name=name,
                defaults={"capacity_grams": grams, "cost_per_unit": cost},
            )
            packaging.append(packaging_type)
        return packaging

    def _order_service(self) -> OrderService:
        return OrderService(
            order_repository=OrderDjangoRepository(),
            customer_repository=CustomerDjangoRepository(),
            product_repository=ProductDjangoRepository(),
        )

    def _seed_orders(
        self,
        customers: Iterable[Customer],
        products: list[Product],
        packaging: list[PackagingType],
    ) -> int:
        self.stdout.write("Creating orders...")
        customers_list = list(customers)
        grown = [product for product in products if product.requires_crop_production]
        if not customers_list or not grown:
            self.stdout.write(self.style.WARNING("Skipping orders (no customers/products)."))
            return 0

        service = self._order_service()
        orders_created = 0
        for i in range(20):
            key = f"seed-order-{i + 1}"
            if Order.objects.filter(idempotency_key=key).exists():
                continue
            customer = random.choice(customers_list)
            delivery = timezone.localdate() + timedelta(days=random.randint(3, 14))
            items = [
                CreateOrderItemDTO(
                    product_id=product.id,
                    quantity=Decimal(random.randint(1, 6)),
                )
                for product in random.sample(grown, k=random.randint(1, 3))
            ]
            service.create_order(
                CreateOrderDTO(
                    customer_id=customer.id,
                    items=items,
                    packaging=[
                        CreatePackagingDTO(
                            packaging_type_id=packaging[0].id, quantity=len(items)
                        )
                    ],
                    order_type=OrderType.B2B if customer.is_wholesale else OrderType.WEBSITE,
                    billing_frequency=(
                        BillingFrequency.MONTHLY
                        if customer.is_wholesale
                        else BillingFrequency.IMMEDIATE
                    ),
                    harvest_date=delivery - timedelta(days=1),
                    delivery_date=delivery,
                    notes=f"Seed order {i + 1}",
                    idempotency_key=key,
                )
            )
            orders_created += 1

        self.stdout.write(self.style.SUCCESS("Creating orders... Done!"))
        return orders_created

    def _seed_templates(
        self,
        customers: Iterable[Customer],
        products: list[Product],
        packaging: list[PackagingType],
    ) -> int:
        self.stdout.write("Creating recurring templates...")
        wholesale = [customer for customer in customers if customer.is_wholesale]
        grown = [product for product in products if product.requires_crop_production]
        scheduler = RecurrenceScheduler(order_service=self._order_service())

        created = 0
        frequencies = [RecurringFrequency.WEEKLY, RecurringFrequency.BIWEEKLY]
        for customer, frequency in zip(wholesale, frequencies):
            key = f"seed-template-{customer.email}"
            if Order.objects.filter(idempotency_key=key).exists():
                continue
            scheduler.create_template(
                CreateOrderDTO(
                    customer_id=customer.id,
                    items=[
                        CreateOrderItemDTO(product_id=product.id, quantity=Decimal("4"))
                        for product in grown[:2]
                    ],
                    packaging=[
                        CreatePackagingDTO(packaging_type_id=packaging[1].id, quantity=2)
                    ],
                    order_type=OrderType.B2B,
                    billing_frequency=BillingFrequency.MONTHLY,
                    notes="Standing order",
                    idempotency_key=key,
                    is_recurring=True,
                    recurring_frequency=frequency,
                    recurring_start_date=timezone.localdate(),
                )
            )
            created += 1

        self.stdout.write(self.style.SUCCESS("Creating recurring templates... Done!"))
        return created
