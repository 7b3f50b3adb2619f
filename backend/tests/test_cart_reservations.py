import os
import random
import sys
import unittest
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

os.environ.setdefault("RESERVATION_TTL_MINUTES", "30")

from storefront.db.models import Base, CartProduct, Product, User
from storefront.db.transaction import transaction_scope
from storefront.errors import (
    InsufficientStockError,
    NotFoundError,
    OutOfStockError,
    StockConflictError,
)
from storefront.services import cart_s
from storefront.services.cart_s import (
    add_to_cart,
    count_cart,
    get_cart_product,
    list_cart,
    modify_cart_product_quantity,
    remove_from_cart,
)
from storefront.services.stock_ledger_s import get_available_quantity

NOW = datetime(2026, 3, 1, 12, 0, 0)


class CartReservationTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.TestSession = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=cls.engine,
        )

    @classmethod
    def tearDownClass(cls) -> None:
        cls.engine.dispose()

    def setUp(self) -> None:
        Base.metadata.drop_all(bind=self.engine)
        Base.metadata.create_all(bind=self.engine)
        self.user_id = self._seed_user("ana@example.com")
        self.product_id = self._seed_product(stock=5)

    def _seed_user(self, email: str) -> int:
        with transaction_scope(self.TestSession) as session:
            user = User(name="Ana", email=email)
            session.add(user)
            session.flush()
            return user.id

    def _seed_product(self, *, stock: int, price: float = 20.0) -> int:
        with transaction_scope(self.TestSession) as session:
            product = Product(
                name="Dog bed",
                price=price,
                image="bed.png",
                sizes=["S", "M", "L"],
                colours=["red"],
                count_in_stock=stock,
            )
            session.add(product)
            session.flush()
            return product.id

    def _available(self, product_id: int | None = None) -> int:
        with transaction_scope(self.TestSession) as session:
            return get_available_quantity(product_id or self.product_id, session)

    def _reserved_total(self, product_id: int | None = None) -> int:
        with transaction_scope(self.TestSession) as session:
            lines = (
                session.query(CartProduct)
                .filter(
                    CartProduct.product_id == (product_id or self.product_id),
                    CartProduct.reserved.is_(True),
                )
                .all()
            )
            return sum(int(line.quantity) for line in lines)

    def _add(self, **kwargs):
        with transaction_scope(self.TestSession) as session:
            return add_to_cart(self.user_id, self.product_id, session, now=NOW, **kwargs)

    def test_add_reserves_stock_and_snapshots_product(self) -> None:
        line, created = self._add(quantity=3, selected_size="M")

        self.assertTrue(created)
        self.assertEqual(line["quantity"], 3)
        self.assertTrue(line["reserved"])
        self.assertEqual(line["reservation_expiry"], NOW + timedelta(minutes=30))
        self.assertEqual(line["product_name"], "Dog bed")
        self.assertEqual(line["product_price"], 20.0)
        self.assertEqual(self._available(), 2)

    def test_adding_beyond_available_fails_and_keeps_stock(self) -> None:
        self._add(quantity=3, selected_size="M")

        with self.assertRaises(OutOfStockError):
            self._add(quantity=3, selected_size="M")

        self.assertEqual(self._available(), 2)
        with transaction_scope(self.TestSession) as session:
            cart = list_cart(self.user_id, session)
        self.assertEqual(len(cart), 1)
        self.assertEqual(cart[0]["quantity"], 3)

    def test_adding_same_variant_increments_by_one(self) -> None:
        first, _ = self._add(quantity=2, selected_size="M")
        second, created = self._add(quantity=1, selected_size="M")

        self.assertFalse(created)
        self.assertEqual(second["id"], first["id"])
        self.assertEqual(second["quantity"], 3)
        self.assertEqual(self._available(), 2)

    def test_different_variant_gets_its_own_line(self) -> None:
        self._add(quantity=1, selected_size="M")
        self._add(quantity=1, selected_size="L")
        self._add(quantity=1)

        with transaction_scope(self.TestSession) as session:
            self.assertEqual(count_cart(self.user_id, session), 3)
        self.assertEqual(self._available(), 2)

    def test_adding_to_a_reaped_line_reserves_it_again(self) -> None:
        line, _ = self._add(quantity=2)
        with transaction_scope(self.TestSession) as session:
            cart_product = session.get(CartProduct, line["id"])
            cart_product.reserved = False
            product = session.get(Product, self.product_id)
            product.count_in_stock = 5

        updated, created = self._add(quantity=1)

        self.assertFalse(created)
        self.assertTrue(updated["reserved"])
        self.assertEqual(updated["quantity"], 3)
        self.assertEqual(self._available(), 2)

    def test_add_unknown_product_or_user(self) -> None:
        with transaction_scope(self.TestSession) as session:
            with self.assertRaises(NotFoundError):
                add_to_cart(self.user_id, self.product_id + 50, session)
        with transaction_scope(self.TestSession) as session:
            with self.assertRaises(NotFoundError):
                add_to_cart(self.user_id + 50, self.product_id, session)

    def test_lost_race_raises_conflict_and_leaves_no_line(self) -> None:
        with patch.object(cart_s, "reserve_stock", return_value=False):
            with self.assertRaises(StockConflictError):
                self._add(quantity=1)

        self.assertEqual(self._available(), 5)
        with transaction_scope(self.TestSession) as session:
            self.assertEqual(count_cart(self.user_id, session), 0)

    def test_remove_reserved_line_returns_stock(self) -> None:
        with transaction_scope(self.TestSession) as session:
            product = session.get(Product, self.product_id)
            product.count_in_stock = 4
        line, _ = self._add(quantity=4)
        self.assertEqual(self._available(), 0)

        with transaction_scope(self.TestSession) as session:
            removed = remove_from_cart(self.user_id, line["id"], session)

        self.assertEqual(removed["id"], line["id"])
        self.assertEqual(self._available(), 4)
        with transaction_scope(self.TestSession) as session:
            self.assertEqual(list_cart(self.user_id, session), [])

    def test_remove_unreserved_line_leaves_stock_alone(self) -> None:
        line, _ = self._add(quantity=2)
        with transaction_scope(self.TestSession) as session:
            session.get(CartProduct, line["id"]).reserved = False

        with transaction_scope(self.TestSession) as session:
            remove_from_cart(self.user_id, line["id"], session)

        self.assertEqual(self._available(), 3)

    def test_remove_line_of_another_user_is_not_found(self) -> None:
        line, _ = self._add(quantity=1)
        other_user_id = self._seed_user("bob@example.com")

        with transaction_scope(self.TestSession) as session:
            with self.assertRaises(NotFoundError):
                remove_from_cart(other_user_id, line["id"], session)
        self.assertEqual(self._available(), 4)

    def test_modify_above_available_fails_and_keeps_quantity(self) -> None:
        line, _ = self._add(quantity=2)

        with transaction_scope(self.TestSession) as session:
            with self.assertRaises(InsufficientStockError):
                modify_cart_product_quantity(self.user_id, line["id"], 4, session, now=NOW)

        with transaction_scope(self.TestSession) as session:
            self.assertEqual(get_cart_product(self.user_id, line["id"], session)["quantity"], 2)
        self.assertEqual(self._available(), 3)

    def test_modify_moves_only_the_delta(self) -> None:
        line, _ = self._add(quantity=2)

        with transaction_scope(self.TestSession) as session:
            grown = modify_cart_product_quantity(self.user_id, line["id"], 3, session, now=NOW)
        self.assertEqual(grown["quantity"], 3)
        self.assertEqual(self._available(), 2)

        with transaction_scope(self.TestSession) as session:
            shrunk = modify_cart_product_quantity(self.user_id, line["id"], 1, session, now=NOW)
        self.assertEqual(shrunk["quantity"], 1)
        self.assertEqual(self._available(), 4)

    def test_modify_reaped_line_reserves_full_quantity(self) -> None:
        line, _ = self._add(quantity=2)
        with transaction_scope(self.TestSession) as session:
            session.get(CartProduct, line["id"]).reserved = False
            session.get(Product, self.product_id).count_in_stock = 5

        later = NOW + timedelta(hours=2)
        with transaction_scope(self.TestSession) as session:
            updated = modify_cart_product_quantity(self.user_id, line["id"], 3, session, now=later)

        self.assertTrue(updated["reserved"])
        self.assertEqual(updated["reservation_expiry"], later + timedelta(minutes=30))
        self.assertEqual(self._available(), 2)

    def test_modify_rejects_non_positive_quantity(self) -> None:
        line, _ = self._add(quantity=1)
        with transaction_scope(self.TestSession) as session:
            with self.assertRaises(ValueError):
                modify_cart_product_quantity(self.user_id, line["id"], 0, session)

    def test_list_cart_flags_out_of_stock_and_missing_products(self) -> None:
        line, _ = self._add(quantity=3)
        with transaction_scope(self.TestSession) as session:
            gone = CartProduct(
                user_id=self.user_id,
                product_id=None,
                quantity=1,
                product_name="Old toy",
                product_image="",
                product_price=3.0,
                reserved=False,
                reservation_expiry=NOW,
            )
            session.add(gone)

        with transaction_scope(self.TestSession) as session:
            cart = list_cart(self.user_id, session)
            single = get_cart_product(self.user_id, line["id"], session)

        by_id = {item["id"]: item for item in cart}
        # 2 left on the shelf against a line of 3.
        self.assertTrue(by_id[line["id"]]["product_exists"])
        self.assertTrue(by_id[line["id"]]["product_out_of_stock"])
        self.assertFalse(single["product_out_of_stock"])
        missing = [item for item in cart if item["product_id"] is None][0]
        self.assertFalse(missing["product_exists"])

    def test_stock_is_conserved_across_random_operations(self) -> None:
        rng = random.Random(7)
        initial = 12
        product_id = self._seed_product(stock=initial)
        sizes = [None, "S", "M"]

        for _ in range(60):
            with transaction_scope(self.TestSession) as session:
                lines = (
                    session.query(CartProduct.id)
                    .filter(CartProduct.user_id == self.user_id, CartProduct.product_id == product_id)
                    .all()
                )
                line_ids = [row.id for row in lines]
            action = rng.choice(["add", "modify", "remove"])
            try:
                with transaction_scope(self.TestSession) as session:
                    if action == "add" or not line_ids:
                        add_to_cart(
                            self.user_id,
                            product_id,
                            session,
                            quantity=rng.randint(1, 4),
                            selected_size=rng.choice(sizes),
                            now=NOW,
                        )
                    elif action == "modify":
                        modify_cart_product_quantity(
                            self.user_id,
                            rng.choice(line_ids),
                            rng.randint(1, 5),
                            session,
                            now=NOW,
                        )
                    else:
                        remove_from_cart(self.user_id, rng.choice(line_ids), session)
            except OutOfStockError:
                pass

            available = self._available(product_id)
            self.assertGreaterEqual(available, 0)
            self.assertEqual(available + self._reserved_total(product_id), initial)


if __name__ == "__main__":
    unittest.main()
