"""Shared fixtures: an in-memory database per test and factories for stock and orders."""

import os

# Point the app at a throwaway database before alufab.config is imported
os.environ["DATABASE_URL"] = "sqlite://"

import uuid
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from alufab import models, schemas
from alufab.crud import materials as crud_materials
from alufab.crud import orders as crud_orders
from alufab.database import Base, get_db
from alufab.main import app
from alufab.services.material_ledger import MaterialLedgerService


@pytest.fixture
def engine():
    """Create a fresh in-memory database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    """Create a test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    """Create a test client whose requests use the test database."""
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def company_id():
    return uuid.uuid4()


@pytest.fixture
def headers(company_id):
    return {"X-Company-Id": str(company_id), "X-User-Id": str(uuid.uuid4())}


@pytest.fixture
def make_profile(db, company_id):
    """Factory for a profile material stocked in 12 ft and 15 ft."""
    def _make(name="3-Track Bottom", lengths=(("12", "ft"), ("15", "ft")), gauges=(("20G", "0.35"),), kerf="0"):
        return crud_materials.create_material(
            db,
            schemas.MaterialCreate(
                name=name,
                category=models.MaterialCategory.PROFILE,
                stock_unit="pcs",
                usage_unit="ft",
                kerf_length=Decimal(kerf),
                standard_lengths=[schemas.StandardLengthBase(length=Decimal(l), unit=u) for l, u in lengths],
                gauge_weights=[
                    schemas.GaugeWeightBase(gauge=g, weight_per_unit_length=Decimal(w), unit_length="ft")
                    for g, w in gauges
                ],
            ),
            company_id=company_id,
        )
    return _make


@pytest.fixture
def make_glass(db, company_id):
    def _make(name="Clear Glass 5mm"):
        return crud_materials.create_material(
            db,
            schemas.MaterialCreate(
                name=name,
                category=models.MaterialCategory.GLASS,
                stock_unit="sqft",
                usage_unit="sqft",
            ),
            company_id=company_id,
        )
    return _make


@pytest.fixture
def make_mesh(db, company_id):
    """Factory for wire mesh stocked by area in 3 ft and 4 ft rolls."""
    def _make(name="SS Mosquito Mesh", widths=(("3", "ft"), ("4", "ft"))):
        return crud_materials.create_material(
            db,
            schemas.MaterialCreate(
                name=name,
                category=models.MaterialCategory.WIRE_MESH,
                stock_unit="sqft",
                usage_unit="sqft",
                standard_lengths=[schemas.StandardLengthBase(length=Decimal(w), unit=u) for w, u in widths],
            ),
            company_id=company_id,
        )
    return _make


@pytest.fixture
def add_batch(db):
    """Factory that records an inward batch through the ledger."""
    def _add(material, quantity, rate, purchased, length=None, unit="ft", gauge="20G", **extra):
        quantity = Decimal(str(quantity))
        data = schemas.InwardCreate(
            quantity=quantity,
            total_cost_paid=quantity * Decimal(str(rate)),
            length=Decimal(str(length)) if length is not None else None,
            length_unit=unit if length is not None else None,
            gauge=gauge if length is not None else None,
            purchase_date=purchased,
            **extra,
        )
        return MaterialLedgerService(db).record_inward(material, data)
    return _add


@pytest.fixture
def make_order(db, company_id):
    """Factory for an order that is ready for optimization."""
    def _make(cuts=(), demands=(), status=models.OrderStatus.READY_FOR_OPTIMIZATION):
        return crud_orders.create_order(
            db,
            schemas.OrderCreate(
                client_name="Sharma Residence",
                status=status,
                required_cuts=[schemas.RequiredCutCreate(**c) for c in cuts],
                material_demands=[schemas.MaterialDemandCreate(**d) for d in demands],
            ),
            company_id=company_id,
        )
    return _make

