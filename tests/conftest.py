"""Shared pytest fixtures.

Every test gets a fresh in-memory MongoDB (mongomock) and, for API tests, a
TestClient whose ``get_db`` dependency points at it.
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict

import mongomock
import pytest
import structlog
from fastapi.testclient import TestClient

import main
from database import get_db
from security import create_access_token


@pytest.fixture(autouse=True)
def configure_structlog_for_tests() -> None:
    """Send structlog output to stdout so capsys can capture it."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def _insert_user(db, email: str, role: str) -> Dict[str, Any]:
    result = db["user"].insert_one({
        "name": email.split("@")[0].title(),
        "email": email,
        "password_hash": "not-used",
        "role": role,
        "status": "active",
        "order_history": 0,
        "orders": 0,
        "created_at": datetime.now(timezone.utc),
    })
    return {"id": str(result.inserted_id), "email": email, "role": role}


@pytest.fixture
def admin_user(db) -> Dict[str, Any]:
    return _insert_user(db, "admin@example.com", "admin")


@pytest.fixture
def customer_user(db) -> Dict[str, Any]:
    return _insert_user(db, "jane@example.com", "customer")


@pytest.fixture
def admin_headers(admin_user) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': admin_user['id']})}"}


@pytest.fixture
def customer_headers(customer_user) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': customer_user['id']})}"}


@pytest.fixture
def make_product(db) -> Callable[..., str]:
    """Insert a product document directly and return its id."""
    counter = {"n": 0}

    def _make(**overrides: Any) -> str:
        counter["n"] += 1
        doc: Dict[str, Any] = {
            "name": f"Product {counter['n']}",
            "description": "",
            "price": 1000,
            "category": "cameras",
            "images": [],
            "unlimited": False,
            "stock": 10,
            "stock_status": "limited",
            "has_discount": False,
            "discount_percentage": 0,
            "discounted_price": None,
            "discount_end_date": None,
            "sales_count": 0,
            "created_at": datetime(2024, 1, 1) + timedelta(minutes=counter["n"]),
        }
        doc.update(overrides)
        return str(db["product"].insert_one(doc).inserted_id)

    return _make


@pytest.fixture
def shipping_info() -> Dict[str, Any]:
    return {
        "name": "Jane Doe",
        "email": "jane@example.com",
        "phone": "0612345678",
        "address": "12 Rue de la Paix",
        "apartment": None,
        "city": "Casablanca",
        "state": "Casablanca-Settat",
        "zip": "20000",
        "country": "Morocco",
    }
