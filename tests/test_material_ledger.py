"""Tests for inward stock, manual consumption, corrections and the append-only ledger."""

from datetime import datetime
from decimal import Decimal

import pytest

from alufab import models, schemas
from alufab.crud import materials as crud_materials
from alufab.errors import (
    ImmutableLedgerError, InsufficientStockError, LedgerError, StockContentionError,
)
from alufab.services.batch_planner import plan
from alufab.services.id_generator import FrontendIDGenerator
from alufab.services.material_ledger import MaterialLedgerService, apply_consumption

JAN_1 = datetime(2026, 1, 1, 9, 0)
FEB_1 = datetime(2026, 2, 1, 9, 0)


def transactions_of(db, material, transaction_type=None):
    query = db.query(models.StockTransaction).filter(models.StockTransaction.material_id == material.id)
    if transaction_type:
        query = query.filter(models.StockTransaction.type == transaction_type)
    return query.order_by(models.StockTransaction.transaction_date, models.StockTransaction.sequence).all()


class TestInward:
    def test_profile_batch_rates_and_transaction(self, db, make_profile, add_batch):
        material = make_profile()
        batch = add_batch(material, 5, 700, JAN_1, length=15, actual_total_weight=Decimal("50"))

        assert batch.rate_per_piece == Decimal("700")
        assert batch.rate_per_kg == Decimal("70")
        assert batch.current_quantity == batch.original_quantity == Decimal("5")
        assert FrontendIDGenerator.validate_frontend_id("profile_batch", batch.frontend_id)
        assert batch.batch_code == batch.frontend_id

        inward = transactions_of(db, material)
        assert len(inward) == 1
        assert inward[0].type == models.TransactionType.INWARD.value
        assert inward[0].quantity_change == Decimal("5")
        assert inward[0].total_value_change == Decimal("3500")
        assert inward[0].related_document_id == batch.id

        db.refresh(material)
        assert material.total_current_stock == Decimal("5")
        assert material.total_current_value == Decimal("3500")
        assert material.total_current_weight == Decimal("50")
        assert material.average_rate_per_piece == Decimal("700")

    def test_new_length_registered_as_standard(self, db, make_profile, add_batch):
        material = make_profile()
        add_batch(material, 2, 900, JAN_1, length=18)

        db.refresh(material)
        assert sorted(s.length for s in material.standard_lengths) == [Decimal("12"), Decimal("15"), Decimal("18")]

    def test_known_length_in_other_unit_not_duplicated(self, db, make_profile, add_batch):
        material = make_profile()
        add_batch(material, 2, 700, JAN_1, length=180, unit="inches")

        db.refresh(material)
        assert len(material.standard_lengths) == 2

    def test_initial_stock_type(self, db, make_profile, add_batch):
        material = make_profile()
        add_batch(material, 3, 700, JAN_1, length=15, is_initial_stock=True)
        assert transactions_of(db, material)[0].type == models.TransactionType.INITIAL_STOCK.value

    def test_profile_requires_gauge(self, db, make_profile, add_batch):
        material = make_profile()
        with pytest.raises(LedgerError):
            add_batch(material, 3, 700, JAN_1, length=15, gauge=None)
        assert transactions_of(db, material) == []

    def test_profile_requires_whole_pipes(self, make_profile, add_batch):
        material = make_profile()
        with pytest.raises(LedgerError):
            add_batch(material, "2.5", 700, JAN_1, length=15)

    def test_simple_batch(self, db, make_glass, add_batch):
        glass = make_glass()
        batch = add_batch(glass, "40", "95.5", JAN_1)

        assert isinstance(batch, models.SimpleBatch)
        assert batch.unit == "sqft"
        assert batch.rate_per_unit == Decimal("95.5")
        assert FrontendIDGenerator.validate_frontend_id("simple_batch", batch.frontend_id)


class TestManualConsumption:
    def test_fifo_across_batches(self, db, make_profile, add_batch):
        material = make_profile()
        a = add_batch(material, 5, 700, JAN_1, length=15)
        b = add_batch(material, 5, 750, FEB_1, length=15)

        transactions = MaterialLedgerService(db).consume_manual(
            material,
            schemas.ManualConsumeRequest(quantity=Decimal("7"), length=Decimal("15"), length_unit="ft", gauge="20G"),
        )

        assert [(t.batch_id, t.quantity_change, t.unit_rate_at_transaction) for t in transactions] == [
            (a.id, Decimal("-5"), Decimal("700")),
            (b.id, Decimal("-2"), Decimal("750")),
        ]
        assert [t.total_value_change for t in transactions] == [Decimal("-3500"), Decimal("-1500")]
        assert all(t.type == models.TransactionType.OUTWARD_MANUAL.value for t in transactions)
        assert len({t.frontend_id for t in transactions}) == 2

        db.refresh(a)
        db.refresh(b)
        assert (a.current_quantity, a.is_completed) == (Decimal("0"), True)
        assert (b.current_quantity, b.is_completed) == (Decimal("3"), False)

        db.refresh(material)
        assert material.total_current_stock == Decimal("3")
        assert material.total_current_value == Decimal("2250")

    def test_shortfall_leaves_stock_untouched(self, db, make_profile, add_batch):
        material = make_profile()
        a = add_batch(material, 5, 700, JAN_1, length=15)

        with pytest.raises(InsufficientStockError):
            MaterialLedgerService(db).consume_manual(
                material,
                schemas.ManualConsumeRequest(quantity=Decimal("6"), length=Decimal("15"), length_unit="ft", gauge="20G"),
            )

        db.refresh(a)
        assert a.current_quantity == Decimal("5")
        assert len(transactions_of(db, material)) == 1

    def test_profile_consumption_requires_gauge(self, db, make_profile, add_batch):
        material = make_profile()
        a = add_batch(material, 5, 700, JAN_1, length=15)
        add_batch(material, 5, 650, JAN_1, length=15, gauge="18G")

        with pytest.raises(LedgerError):
            MaterialLedgerService(db).consume_manual(
                material,
                schemas.ManualConsumeRequest(quantity=Decimal("1"), length=Decimal("15"), length_unit="ft"),
            )

        db.refresh(a)
        assert a.current_quantity == Decimal("5")
        assert transactions_of(db, material, models.TransactionType.OUTWARD_MANUAL.value) == []

    def test_scrap_of_simple_material(self, db, make_glass, add_batch):
        glass = make_glass()
        add_batch(glass, 10, 95, JAN_1)

        transactions = MaterialLedgerService(db).consume_manual(
            glass,
            schemas.ManualConsumeRequest(
                quantity=Decimal("1.5"), transaction_type=models.TransactionType.SCRAP, notes="Cracked sheet"
            ),
        )
        assert transactions[0].type == models.TransactionType.SCRAP.value
        assert transactions[0].quantity_change == Decimal("-1.5")

    def test_only_outward_types_accepted(self):
        with pytest.raises(ValueError):
            schemas.ManualConsumeRequest(quantity=Decimal("1"), transaction_type=models.TransactionType.INWARD)

    def test_changed_batch_is_contention(self, db, make_profile, add_batch):
        material = make_profile()
        batch = add_batch(material, 5, 700, JAN_1, length=15)
        consumption = plan(material, {(Decimal("15"), "ft"): 2}, gauge="20G")

        # Stock moves between planning and applying
        MaterialLedgerService(db).record_correction(batch, Decimal("4"))

        with pytest.raises(StockContentionError):
            apply_consumption(
                db, material, consumption.instructions,
                transaction_type=models.TransactionType.OUTWARD_MANUAL.value,
                company_id=material.company_id,
            )
        db.rollback()

        db.refresh(batch)
        assert batch.current_quantity == Decimal("4")



class TestWireMesh:
    def test_inward_records_roll_width(self, db, make_mesh, add_batch):
        mesh = make_mesh()
        batch = add_batch(mesh, 100, 25, JAN_1, width=Decimal("5"), width_unit="ft")

        assert isinstance(batch, models.SimpleBatch)
        assert (batch.width, batch.width_unit, batch.unit) == (Decimal("5"), "ft", "sqft")
        assert transactions_of(db, mesh)[0].width == Decimal("5")

        db.refresh(mesh)
        assert sorted(s.length for s in mesh.standard_lengths) == [Decimal("3"), Decimal("4"), Decimal("5")]

    def test_inward_requires_width(self, db, make_mesh, add_batch):
        mesh = make_mesh()
        with pytest.raises(LedgerError):
            add_batch(mesh, 100, 25, JAN_1)
        assert transactions_of(db, mesh) == []

    def test_consumption_draws_only_the_roll_width(self, db, make_mesh, add_batch):
        mesh = make_mesh()
        add_batch(mesh, 100, 22, JAN_1, width=Decimal("3"), width_unit="ft")
        four = add_batch(mesh, 60, 25, FEB_1, width=Decimal("4"), width_unit="ft")

        transactions = MaterialLedgerService(db).consume_manual(
            mesh,
            schemas.ManualConsumeRequest(quantity=Decimal("12.5"), width=Decimal("48"), width_unit="inches"),
        )

        assert [(t.batch_id, t.quantity_change, t.width) for t in transactions] == [
            (four.id, Decimal("-12.5"), Decimal("4")),
        ]

    def test_consumption_requires_width(self, db, make_mesh, add_batch):
        mesh = make_mesh()
        add_batch(mesh, 100, 22, JAN_1, width=Decimal("3"), width_unit="ft")
        with pytest.raises(LedgerError):
            MaterialLedgerService(db).consume_manual(mesh, schemas.ManualConsumeRequest(quantity=Decimal("2")))

    def test_mesh_must_be_stocked_by_area(self, db, company_id):
        with pytest.raises(LedgerError):
            crud_materials.create_material(
                db,
                schemas.MaterialCreate(
                    name="Fibre Mesh", category=models.MaterialCategory.WIRE_MESH,
                    stock_unit="ft", usage_unit="ft",
                ),
                company_id=company_id,
            )

class TestCorrections:
    def test_correction_records_difference(self, db, make_profile, add_batch):
        material = make_profile()
        batch = add_batch(material, 5, 700, JAN_1, length=15)

        transaction = MaterialLedgerService(db).record_correction(batch, Decimal("3"), notes="Stock count")

        assert transaction.type == models.TransactionType.CORRECTION.value
        assert transaction.quantity_change == Decimal("-2")
        assert transaction.total_value_change == Decimal("-1400")
        db.refresh(batch)
        assert batch.current_quantity == Decimal("3")

    def test_correction_to_zero_completes_batch(self, db, make_profile, add_batch):
        material = make_profile()
        batch = add_batch(material, 5, 700, JAN_1, length=15)
        MaterialLedgerService(db).record_correction(batch, Decimal("0"))
        db.refresh(batch)
        assert batch.is_completed is True

    @pytest.mark.parametrize("quantity", ["6", "5", "-1"])
    def test_invalid_corrections(self, db, make_profile, add_batch, quantity):
        material = make_profile()
        batch = add_batch(material, 5, 700, JAN_1, length=15)
        with pytest.raises(LedgerError):
            MaterialLedgerService(db).record_correction(batch, Decimal(quantity))
        assert len(transactions_of(db, material)) == 1


class TestImmutableLedger:
    def test_transaction_cannot_be_modified(self, db, make_profile, add_batch):
        material = make_profile()
        add_batch(material, 5, 700, JAN_1, length=15)
        transaction = transactions_of(db, material)[0]

        transaction.notes = "edited"
        with pytest.raises(ImmutableLedgerError):
            db.commit()
        db.rollback()

    def test_transaction_cannot_be_deleted(self, db, make_profile, add_batch):
        material = make_profile()
        add_batch(material, 5, 700, JAN_1, length=15)
        transaction = transactions_of(db, material)[0]

        db.delete(transaction)
        with pytest.raises(ImmutableLedgerError):
            db.commit()
        db.rollback()
        assert len(transactions_of(db, material)) == 1


class TestReports:
    def test_stock_summary_groups_by_length_and_gauge(self, db, make_profile, add_batch):
        material = make_profile()
        add_batch(material, 5, 700, JAN_1, length=15)
        add_batch(material, 5, 750, FEB_1, length=15)
        add_batch(material, 4, 600, FEB_1, length=12)
        add_batch(material, 2, 800, FEB_1, length=15, gauge="18G")

        db.refresh(material)
        report = MaterialLedgerService.stock_summary(material)

        lines = {(line["length"], line["gauge"]): line for line in report["breakdown"]}
        assert lines[(Decimal("15"), "20G")]["quantity"] == Decimal("10")
        assert lines[(Decimal("15"), "20G")]["average_rate"] == Decimal("725")
        assert lines[(Decimal("12"), "20G")]["batch_count"] == 1
        assert lines[(Decimal("15"), "18G")]["value"] == Decimal("1600")
        assert report["total_current_stock"] == Decimal("16")

    def test_stock_summary_groups_mesh_by_width(self, db, make_mesh, add_batch):
        mesh = make_mesh()
        add_batch(mesh, 100, 22, JAN_1, width=Decimal("3"), width_unit="ft")
        add_batch(mesh, 50, 25, JAN_1, width=Decimal("4"), width_unit="ft")
        add_batch(mesh, 30, 26, FEB_1, width=Decimal("48"), width_unit="inches")

        db.refresh(mesh)
        report = MaterialLedgerService.stock_summary(mesh)

        lines = {(line["width"], line["width_unit"]): line for line in report["breakdown"]}
        assert set(lines) == {(Decimal("3"), "ft"), (Decimal("4"), "ft")}
        assert lines[(Decimal("4"), "ft")]["quantity"] == Decimal("80")
        assert lines[(Decimal("4"), "ft")]["batch_count"] == 2

    def test_batch_history_filters(self, db, make_profile, add_batch):
        material = make_profile()
        a = add_batch(material, 5, 700, JAN_1, length=15, supplier="Jindal")
        add_batch(material, 5, 750, FEB_1, length=15, supplier="Hindalco")
        MaterialLedgerService(db).record_correction(a, Decimal("0"))

        service = MaterialLedgerService(db)
        db.refresh(material)
        assert len(service.batch_history(material)) == 2
        assert [b.supplier for b in service.batch_history(material, include_completed=False)] == ["Hindalco"]
        assert [b.supplier for b in service.batch_history(material, supplier="Jindal")] == ["Jindal"]
        assert len(service.batch_history(material, date_from=datetime(2026, 1, 15))) == 1
