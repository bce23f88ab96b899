"""
Shared test fixtures — SQLite file database, test client, actor tokens, a
gateway bound to a fresh session, and a small product catalog.
"""

import os
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Set JWT_SECRET before importing app modules
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["DATABASE_URL"] = "sqlite:///./test.db"

from insulquote import models
from insulquote.auth import create_access_token
from insulquote.database import Base, get_db
from insulquote.gateway import QuoteGateway
from insulquote.main import app


TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def db():
    """Direct database session for test setup/assertions."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway(db):
    return QuoteGateway(db)


@pytest.fixture
def actor_headers():
    token = create_access_token("estimator@example.com")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def product(db):
    """Ceiling blanket: 13.5 m² per pack at $120."""
    p = models.Product(
        sku="CEIL-R32-1200",
        description="Ceiling blanket R3.2 1200mm",
        category="ceiling",
        r_value="R3.2",
        bale_size_sqm=Decimal("13.5"),
        pack_price=Decimal("120.00"),
        cost_price=Decimal("96.00"),
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@pytest.fixture
def second_product(db):
    p = models.Product(
        sku="UFL-R14-PAD",
        description="Underfloor pads R1.4",
        category="underfloor",
        r_value="R1.4",
        bale_size_sqm=Decimal("8.6"),
        pack_price=Decimal("89.00"),
        cost_price=Decimal("71.20"),
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


ACTOR = "estimator@example.com"


@pytest.fixture
def draft_quote(gateway, product):
    """
    Version 1 of a new quote: one "Ceiling" section with a 40 m² Retail
    ceiling blanket line and its labour row. Returns the version id.
    """
    from insulquote import quote_builder

    quote = quote_builder.create_quote(gateway, ACTOR, customer_name="J Smith",
                                       site_address="12 Kauri Rd", quote_number="Q-1001")
    version_id = quote.id
    section = quote_builder.add_section(gateway, version_id, ACTOR, "Ceiling")
    quote_builder.add_line_item(gateway, section.id, ACTOR, 40, product_id=product.id, with_labour=True)
    return version_id
