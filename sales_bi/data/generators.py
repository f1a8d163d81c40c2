"""
Synthetic Raw Data Generator

Generates deterministic, deliberately messy raw extracts for development
and tests. Includes:
- Duplicate keys and padded strings
- Mixed-case, mailto: and #fragment emails
- Formatted phone numbers
- ISO, US and day-first order dates
- Orphan references, non-positive and non-castable values
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional

import numpy as np
import polars as pl
from faker import Faker

from sales_bi.schemas import RAW_CATEGORIES, RAW_COLUMNS, RAW_CUSTOMERS, RAW_ORDERS, RAW_PRODUCTS


# =============================================================================
# CONFIGURATION
# =============================================================================

CATEGORIES = [
    ("Bikes", "bk", ["Mountain Bike", "Road Bike", "City Bike", "Kids Bike"]),
    ("Components", "cp", ["Chain", "Brake Set", "Pedals", "Derailleur"]),
    ("Clothing", "cl", ["Jersey", "Gloves", "Socks", "Cap"]),
    ("Accessories", "ac", ["Helmet", "Bottle", "Lock", "Pump", "Light"]),
    ("Electronics", "el", ["Bike Computer", "Heart Rate Monitor", "GPS Unit"]),
    ("Outdoor", "od", ["Tent", "Sleeping Bag", "Backpack"]),
]

PRICE_RANGES = {
    "Bikes": (150.0, 900.0),
    "Components": (12.0, 120.0),
    "Clothing": (8.0, 60.0),
    "Accessories": (5.0, 80.0),
    "Electronics": (40.0, 300.0),
    "Outdoor": (20.0, 250.0),
}

CITIES = [
    "Springfield", "Riverside", "Franklin", "Greenville", "Bristol",
    "Clinton", "Fairview", "Salem", "Madison", "Georgetown",
]


@dataclass
class MessRates:
    """Probability of each kind of defect"""
    duplicate: float = 0.03
    padded: float = 0.10
    bad_email: float = 0.05
    bad_numeric: float = 0.02
    non_positive: float = 0.02
    orphan: float = 0.02
    bad_date: float = 0.01


class RawDataGenerator:
    """
    Generate the four raw extracts.

    Example:
        raw = RawDataGenerator(seed=7).generate(n_customers=200, n_orders=2000)
        raw["raw_orders"]
    """

    def __init__(
        self,
        seed: int = 42,
        start_date: date = date(2020, 1, 1),
        end_date: date = date(2021, 12, 31),
        mess: Optional[MessRates] = None,
    ):
        self.rng = np.random.default_rng(seed)
        self.fake = Faker()
        self.fake.seed_instance(seed)
        self.start_date = start_date
        self.end_date = end_date
        self.mess = mess or MessRates()

    def _chance(self, p: float) -> bool:
        return bool(self.rng.random() < p)

    def _pad(self, value: str) -> str:
        return f"  {value} " if self._chance(self.mess.padded) else value

    def _with_duplicates(self, rows: List[dict]) -> List[dict]:
        """Re-emit some rows later in the extract (first occurrence should win)"""
        out = list(rows)
        for row in rows:
            if self._chance(self.mess.duplicate):
                out.append(dict(row))
        return out

    def _frame(self, relation: str, rows: List[dict]) -> pl.DataFrame:
        schema = {c: pl.Utf8 for c in RAW_COLUMNS[relation]}
        return pl.DataFrame(rows, schema=schema)

    def categories(self) -> pl.DataFrame:
        rows = [
            {
                "CategoryID": str(i),
                "CategoryName": self._pad(name),
                "CategoryAbbreviation": abbreviation,
            }
            for i, (name, abbreviation, _) in enumerate(CATEGORIES, start=1)
        ]
        return self._frame(RAW_CATEGORIES, self._with_duplicates(rows))

    def products(self) -> pl.DataFrame:
        rows = []
        number = 0
        for category_id, (category, _, names) in enumerate(CATEGORIES, start=1):
            low, high = PRICE_RANGES[category]
            for name in names:
                number += 1
                price = f"{self.rng.uniform(low, high):.2f}"
                if self._chance(self.mess.bad_numeric):
                    price = "n/a"
                elif self._chance(self.mess.non_positive):
                    price = "0"
                rows.append(
                    {
                        "ProdNumber": self._pad(f"P{number:04d}"),
                        "ProdName": self._pad(name),
                        "Category": str(category_id),
                        "Price": price,
                    }
                )
        return self._frame(RAW_PRODUCTS, self._with_duplicates(rows))

    def _email(self, first: str, last: str, i: int) -> str:
        email = f"{first}.{last}{i}@{self.fake.free_email_domain()}".lower()
        roll = self.rng.random()
        if roll < self.mess.bad_email:
            return f"mailto:{email.upper()}"
        if roll < 2 * self.mess.bad_email:
            return f"{email}#home"
        if roll < 3 * self.mess.bad_email:
            return email.title()
        return self._pad(email)

    def customers(self, n: int) -> pl.DataFrame:
        rows = []
        for i in range(1, n + 1):
            first, last = self.fake.first_name(), self.fake.last_name()
            customer_id = f"x{i}" if self._chance(self.mess.bad_numeric) else str(i)
            rows.append(
                {
                    "CustomerID": customer_id,
                    "FirstName": self._pad(first),
                    "LastName": last,
                    "CustomerEmail": self._email(first, last, i),
                    "CustomerPhone": self.fake.numerify("(###) ###-####"),
                    "CustomerAddress": self.fake.street_address(),
                    "CustomerCity": self._pad(str(self.rng.choice(CITIES))),
                    "CustomerState": self.fake.state_abbr().lower(),
                    "CustomerZip": self.fake.postcode(),
                }
            )
        return self._frame(RAW_CUSTOMERS, self._with_duplicates(rows))

    def _format_date(self, day: date) -> str:
        roll = self.rng.random()
        if roll < self.mess.bad_date:
            return "not a date"
        if roll < 0.25:
            return day.strftime("%m/%d/%Y")
        # Day-first only where it cannot be mistaken for US month/day
        if roll < 0.35 and day.day > 12:
            return day.strftime("%d/%m/%Y")
        return day.isoformat()

    def orders(self, n: int, n_customers: int, n_products: int) -> pl.DataFrame:
        span = (self.end_date - self.start_date).days
        # Skewed popularity so tiers and Pareto have something to find
        customer_weights = self.rng.pareto(1.5, n_customers) + 1
        customer_weights /= customer_weights.sum()
        product_weights = self.rng.pareto(1.2, n_products) + 1
        product_weights /= product_weights.sum()

        rows = []
        for order_id in range(1, n + 1):
            customer = int(self.rng.choice(n_customers, p=customer_weights)) + 1
            product = int(self.rng.choice(n_products, p=product_weights)) + 1
            quantity = str(int(self.rng.integers(1, 6)))

            if self._chance(self.mess.orphan):
                customer = n_customers + 1000
            if self._chance(self.mess.orphan):
                product = 9000 + product
            if self._chance(self.mess.non_positive):
                quantity = str(int(self.rng.integers(-2, 1)))
            elif self._chance(self.mess.bad_numeric):
                quantity = "two"

            rows.append(
                {
                    "OrderID": str(order_id),
                    "Date": self._format_date(self.start_date + timedelta(days=int(self.rng.integers(0, span + 1)))),
                    "CustomerID": str(customer),
                    "ProdNumber": self._pad(f"P{product:04d}"),
                    "Quantity": quantity,
                }
            )
        return self._frame(RAW_ORDERS, self._with_duplicates(rows))

    def generate(self, n_customers: int = 500, n_orders: int = 5000) -> Dict[str, pl.DataFrame]:
        categories = self.categories()
        products = self.products()
        n_products = sum(len(names) for _, _, names in CATEGORIES)
        return {
            RAW_CATEGORIES: categories,
            RAW_PRODUCTS: products,
            RAW_CUSTOMERS: self.customers(n_customers),
            RAW_ORDERS: self.orders(n_orders, n_customers, n_products),
        }


def generate_raw_dataset(
    n_customers: int = 500,
    n_orders: int = 5000,
    seed: int = 42,
) -> Dict[str, pl.DataFrame]:
    """Convenience wrapper returning the four raw relations"""
    return RawDataGenerator(seed=seed).generate(n_customers=n_customers, n_orders=n_orders)
