"""Tests for cutting plan generation, discard and the atomic commit against stock."""

from datetime import datetime
from decimal import Decimal
import gc

import pytest
from sqlalchemy import update

from alufab import models, schemas
from alufab.crud import stock_transactions as crud_transactions
from alufab.errors import (
    AlreadyCommittedError, InfeasibleCutError, InsufficientStockError, InvalidCutError,
    InvalidStatusTransitionError, PlanNotFoundError, StockContentionError,
)
from alufab.services.order_workflow import OrderWorkflowService
from alufab.services.plan_commit import CuttingPlanCommitService, MaterialLockRegistry
from alufab.services.plan_generator import CuttingPlanGenerator

JAN_1 = datetime(2026, 1, 1, 9, 0)
FEB_1 = datetime(2026, 2, 1, 9, 0)


def window_cuts(material, *lengths, gauge="20G"):
    return [
        {"material_id": material.id, "length": Decimal(str(length)), "length_unit": "ft",
         "gauge": gauge, "identifier": f"W1-{i}"}
        for i, length in enumerate(lengths)
    ]


def assert_stock_conserved(db):
    for batch in db.query(models.ProfileBatch).all():
        moved = sum(
            t.quantity_change for t in db.query(models.StockTransaction)
            .filter(models.StockTransaction.batch_id == batch.id).all()
        )
        assert batch.current_quantity == moved
        assert batch.current_quantity >= 0


def outward(db):
    return db.query(models.StockTransaction).filter(
        models.StockTransaction.type == models.TransactionType.OUTWARD_ORDER_CUT.value
    ).all()


@pytest.fixture
def stocked_profile(make_profile, add_batch):
    """12 ft pipes: 2 from January at 700, 5 from February at 750."""
    material = make_profile()
    add_batch(material, 2, 700, JAN_1, length=12)
    add_batch(material, 5, 750, FEB_1, length=12)
    return material


class TestGenerate:
    def test_generated_plan(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10, 10, 6))

        plan = CuttingPlanGenerator(db).generate(order.id)

        assert plan.status == models.CuttingPlanStatus.GENERATED.value
        assert plan.shortfall_warnings == []
        material_plan = plan.material_plans[0]
        assert material_plan["gauge_snapshot"] == "20G"
        assert [(Decimal(e["length"]), e["quantity"]) for e in material_plan["total_pipes_per_length"]] == [
            (Decimal("12"), 3)
        ]
        assert sum(Decimal(p["scrap_length"]) for p in material_plan["pipes_used"]) == Decimal("10")
        # 12 ft x 0.35 kg/ft per pipe
        assert Decimal(material_plan["total_weight"]) == Decimal("12.6")

        db.refresh(order)
        assert order.status == models.OrderStatus.OPTIMIZATION_COMPLETE.value
        assert order.cutting_plan_status == models.OrderCuttingPlanStatus.GENERATED.value
        assert order.status_history[-1].status == models.OrderStatus.OPTIMIZATION_COMPLETE.value

    def test_generation_does_not_consume_stock(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10, 10, 6))
        CuttingPlanGenerator(db).generate(order.id)
        assert outward(db) == []

    def test_shortfall_is_a_warning(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, *([10] * 9)))

        plan = CuttingPlanGenerator(db).generate(order.id)

        warning = plan.shortfall_warnings[0]
        assert Decimal(warning["short"]) == Decimal("2")
        assert warning["message"] == "3-Track Bottom: need 2 more 12 ft pipes of gauge 20G"
        assert plan.status == models.CuttingPlanStatus.GENERATED.value

    def test_regenerate_replaces_plan(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10, 6))
        generator = CuttingPlanGenerator(db)
        first = generator.generate(order.id)
        first_id = first.id

        second = generator.generate(order.id, overrides=schemas.CuttingPlanGenerate(kerf=Decimal("0.5")))

        assert second.id != first_id
        assert db.query(models.CuttingPlan).filter(models.CuttingPlan.order_id == order.id).count() == 1

    def test_infeasible_cut_fails_order(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 20))

        with pytest.raises(InfeasibleCutError):
            CuttingPlanGenerator(db).generate(order.id)

        db.refresh(order)
        assert order.status == models.OrderStatus.OPTIMIZATION_FAILED.value
        assert order.cutting_plan_status == models.OrderCuttingPlanStatus.FAILED.value
        with pytest.raises(PlanNotFoundError):
            CuttingPlanGenerator(db).get_plan_for_order(order.id)

    def test_profile_cut_without_gauge_rejected(self, db, stocked_profile, make_order):
        with pytest.raises(InvalidCutError):
            make_order(cuts=window_cuts(stocked_profile, 10, gauge=None))
        assert db.query(models.Order).count() == 0

    def test_preview_shares_stock_between_plans(self, db, stocked_profile):
        material_plan = {
            "material_id": str(stocked_profile.id),
            "gauge_snapshot": "20G",
            "total_pipes_per_length": [{"length": "12", "unit": "ft", "quantity": 4}],
        }

        warnings = CuttingPlanGenerator(db)._preview_shortfalls([material_plan, dict(material_plan)])

        assert [Decimal(w["short"]) for w in warnings] == [Decimal("1")]

    def test_pending_order_cannot_be_optimized(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10), status=models.OrderStatus.PENDING)
        with pytest.raises(InvalidStatusTransitionError):
            CuttingPlanGenerator(db).generate(order.id)

    def test_discard(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10))
        generator = CuttingPlanGenerator(db)
        generator.generate(order.id)

        generator.discard(order.id)

        db.refresh(order)
        assert order.status == models.OrderStatus.READY_FOR_OPTIMIZATION.value
        assert order.cutting_plan_status == models.OrderCuttingPlanStatus.PENDING.value
        with pytest.raises(PlanNotFoundError):
            generator.get_plan_for_order(order.id)


class TestCommit:
    def test_commit_consumes_fifo(self, db, stocked_profile, make_order, company_id):
        order = make_order(cuts=window_cuts(stocked_profile, 10, 10, 6))
        plan = CuttingPlanGenerator(db).generate(order.id)

        result = CuttingPlanCommitService(db).commit(order.id, company_id)

        assert result.plan.status == models.CuttingPlanStatus.COMMITTED.value
        assert result.plan.committed_at is not None
        assert result.order.status == models.OrderStatus.CUTTING.value
        assert result.order.cutting_plan_status == models.OrderCuttingPlanStatus.COMMITTED.value

        assert [(t.quantity_change, t.unit_rate_at_transaction) for t in result.transactions] == [
            (Decimal("-2"), Decimal("700")),
            (Decimal("-1"), Decimal("750")),
        ]
        assert [t.sequence for t in result.transactions] == [0, 1]
        assert all(t.related_document_id == plan.id for t in result.transactions)
        assert all(t.related_document_type == "CuttingPlan" for t in result.transactions)
        assert result.total_value_consumed == Decimal("2150")

        ledger = crud_transactions.get_document_transactions(db, "CuttingPlan", plan.id)
        assert [t.id for t in ledger] == [t.id for t in result.transactions]

        batches = sorted(stocked_profile.profile_batches, key=lambda b: b.purchase_date)
        for batch in batches:
            db.refresh(batch)
        assert [(b.current_quantity, b.is_completed) for b in batches] == [
            (Decimal("0"), True), (Decimal("4"), False),
        ]

    def test_stock_is_conserved(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10, 10, 6))
        CuttingPlanGenerator(db).generate(order.id)
        CuttingPlanCommitService(db).commit(order.id)

        assert_stock_conserved(db)

    def test_plans_of_one_material_draw_in_sequence(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10, 10, 6))
        plan = CuttingPlanGenerator(db).generate(order.id)
        material_plan = plan.material_plans[0]
        twelve_ft = material_plan["total_pipes_per_length"][0]
        plan.material_plans = [
            dict(material_plan, total_pipes_per_length=[dict(twelve_ft, quantity=1)]),
            dict(material_plan, total_pipes_per_length=[dict(twelve_ft, quantity=2)]),
        ]
        db.commit()

        result = CuttingPlanCommitService(db).commit(order.id)

        assert [(t.quantity_change, t.unit_rate_at_transaction) for t in result.transactions] == [
            (Decimal("-1"), Decimal("700")),
            (Decimal("-1"), Decimal("700")),
            (Decimal("-1"), Decimal("750")),
        ]
        assert_stock_conserved(db)

    def test_batch_changed_after_locking_is_contention(self, db, stocked_profile, make_order, monkeypatch):
        order = make_order(cuts=window_cuts(stocked_profile, 10, 10, 6))
        CuttingPlanGenerator(db).generate(order.id)
        read_batches = CuttingPlanCommitService._locked_batches

        def read_then_other_writer(service, material):
            batches = read_batches(service, material)
            oldest = min(batches, key=lambda b: b.purchase_date)
            # Another commit takes a pipe after this one read the batches
            service.db.execute(
                update(models.ProfileBatch)
                .where(models.ProfileBatch.id == oldest.id)
                .values(current_quantity=oldest.current_quantity - 1)
                .execution_options(synchronize_session=False)
            )
            return batches

        monkeypatch.setattr(CuttingPlanCommitService, "_locked_batches", read_then_other_writer)
        with pytest.raises(StockContentionError) as exc_info:
            CuttingPlanCommitService(db).commit(order.id)
        assert exc_info.value.retryable is True
        assert outward(db) == []
        assert sum(b.current_quantity for b in db.query(models.ProfileBatch).all()) == Decimal("7")

        monkeypatch.undo()
        result = CuttingPlanCommitService(db).commit(order.id)
        assert len(result.transactions) == 2
        assert_stock_conserved(db)

    def test_competing_orders_cannot_overdraw(self, db, stocked_profile, make_order):
        first = make_order(cuts=window_cuts(stocked_profile, *([10] * 5)))
        second = make_order(cuts=window_cuts(stocked_profile, *([10] * 5)))
        generator = CuttingPlanGenerator(db)
        # Each plan fits the 7 pipes on its own
        assert generator.generate(first.id).shortfall_warnings == []
        assert generator.generate(second.id).shortfall_warnings == []

        CuttingPlanCommitService(db).commit(first.id)
        with pytest.raises(InsufficientStockError) as exc_info:
            CuttingPlanCommitService(db).commit(second.id)

        assert exc_info.value.shortfalls[0].available == Decimal("2")
        assert len(outward(db)) == 2
        assert sum(b.current_quantity for b in db.query(models.ProfileBatch).all()) == Decimal("2")
        assert_stock_conserved(db)
        db.refresh(second)
        assert second.status == models.OrderStatus.OPTIMIZATION_COMPLETE.value

    def test_second_commit_rejected(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10, 10, 6))
        CuttingPlanGenerator(db).generate(order.id)
        service = CuttingPlanCommitService(db)
        service.commit(order.id)

        with pytest.raises(AlreadyCommittedError):
            service.commit(order.id)

        assert len(outward(db)) == 2

    def test_committed_plan_cannot_be_regenerated_or_discarded(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10))
        generator = CuttingPlanGenerator(db)
        generator.generate(order.id)
        CuttingPlanCommitService(db).commit(order.id)

        with pytest.raises(AlreadyCommittedError):
            generator.generate(order.id)
        with pytest.raises(AlreadyCommittedError):
            generator.discard(order.id)

    def test_shortfall_rolls_back_everything(self, db, stocked_profile, make_order, make_glass, add_batch):
        glass = make_glass()
        add_batch(glass, 50, 95, JAN_1)
        order = make_order(
            cuts=window_cuts(stocked_profile, *([10] * 9)),
            demands=[{"material_id": glass.id, "quantity": Decimal("12"), "unit": "sqft"}],
        )
        CuttingPlanGenerator(db).generate(order.id)

        with pytest.raises(InsufficientStockError) as exc_info:
            CuttingPlanCommitService(db).commit(order.id)
        assert exc_info.value.shortfalls[0].short == Decimal("2")

        assert outward(db) == []
        assert sum(b.current_quantity for b in db.query(models.ProfileBatch).all()) == Decimal("7")
        assert db.query(models.SimpleBatch).one().current_quantity == Decimal("50")
        db.refresh(order)
        assert order.status == models.OrderStatus.OPTIMIZATION_COMPLETE.value
        plan = CuttingPlanGenerator(db).get_plan_for_order(order.id)
        assert plan.status == models.CuttingPlanStatus.GENERATED.value

    def test_unit_demand_consumed_with_profiles(self, db, stocked_profile, make_order, make_glass, add_batch):
        glass = make_glass()
        add_batch(glass, 10, 95, JAN_1)
        add_batch(glass, 10, 100, FEB_1)
        order = make_order(
            cuts=window_cuts(stocked_profile, 10),
            demands=[
                {"material_id": glass.id, "quantity": Decimal("8"), "unit": "sqft"},
                {"material_id": glass.id, "quantity": Decimal("4.5"), "unit": "sqft"},
            ],
        )
        CuttingPlanGenerator(db).generate(order.id)

        result = CuttingPlanCommitService(db).commit(order.id)

        glass_moves = [t for t in result.transactions if t.material_id == glass.id]
        assert [(t.quantity_change, t.unit_rate_at_transaction) for t in glass_moves] == [
            (Decimal("-10"), Decimal("95")),
            (Decimal("-2.5"), Decimal("100")),
        ]
        assert [t.sequence for t in result.transactions] == [0, 1, 2]

    def test_commit_waits_for_material_lock(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10))
        CuttingPlanGenerator(db).generate(order.id)
        locks = MaterialLockRegistry()

        with locks.hold([stocked_profile.id], timeout=1):
            with pytest.raises(StockContentionError) as exc_info:
                CuttingPlanCommitService(db, lock_timeout=0.05, locks=locks).commit(order.id)
        assert exc_info.value.retryable is True
        assert outward(db) == []

        result = CuttingPlanCommitService(db, lock_timeout=0.05, locks=locks).commit(order.id)
        assert len(result.transactions) == 1

    def test_commit_requires_optimization_complete(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10))
        CuttingPlanGenerator(db).generate(order.id)
        OrderWorkflowService(db).advance(order, models.OrderStatus.ON_HOLD)

        with pytest.raises(InvalidStatusTransitionError):
            CuttingPlanCommitService(db).commit(order.id)
        assert outward(db) == []



class TestWireMeshPlans:
    def mesh_order(self, make_order, mesh, width, length, pieces="2"):
        return make_order(demands=[{
            "material_id": mesh.id, "quantity": Decimal(pieces), "unit": "pcs",
            "width": Decimal(width), "length": Decimal(length), "dimension_unit": "ft",
        }])

    def test_mesh_sized_and_committed_by_roll_width(self, db, make_mesh, add_batch, make_order):
        mesh = make_mesh()
        add_batch(mesh, 100, 22, JAN_1, width=Decimal("3"), width_unit="ft")
        four = add_batch(mesh, 60, 25, FEB_1, width=Decimal("4"), width_unit="ft")
        order = self.mesh_order(make_order, mesh, "3.5", "6")

        plan = CuttingPlanGenerator(db).generate(order.id)

        material_plan = plan.material_plans[0]
        assert [(Decimal(w["width"]), w["unit"], Decimal(w["area"])) for w in material_plan["widths_used"]] == [
            (Decimal("4"), "ft", Decimal("48")),
        ]
        assert Decimal(material_plan["required_quantity"]) == Decimal("48")
        assert Decimal(material_plan["widths_used"][0]["pieces"][0]["required_area"]) == Decimal("42")
        assert plan.shortfall_warnings == []

        result = CuttingPlanCommitService(db).commit(order.id)

        assert [(t.batch_id, t.quantity_change, t.unit_rate_at_transaction) for t in result.transactions] == [
            (four.id, Decimal("-48"), Decimal("25")),
        ]

    def test_wider_roll_never_substitutes(self, db, make_mesh, add_batch, make_order):
        mesh = make_mesh()
        add_batch(mesh, 100, 22, JAN_1, width=Decimal("4"), width_unit="ft")
        order = self.mesh_order(make_order, mesh, "2.5", "5")

        plan = CuttingPlanGenerator(db).generate(order.id)

        warning = plan.shortfall_warnings[0]
        assert (Decimal(warning["width"]), Decimal(warning["short"])) == (Decimal("3"), Decimal("30"))
        with pytest.raises(InsufficientStockError):
            CuttingPlanCommitService(db).commit(order.id)

    def test_piece_wider_than_every_roll_fails_order(self, db, make_mesh, make_order):
        mesh = make_mesh()
        order = self.mesh_order(make_order, mesh, "5", "6")

        with pytest.raises(InfeasibleCutError):
            CuttingPlanGenerator(db).generate(order.id)

        db.refresh(order)
        assert order.status == models.OrderStatus.OPTIMIZATION_FAILED.value

    def test_mesh_demand_needs_piece_size(self, db, make_mesh, make_order):
        mesh = make_mesh()
        with pytest.raises(InvalidCutError):
            make_order(demands=[{"material_id": mesh.id, "quantity": Decimal("2"), "unit": "pcs"}])


class TestMaterialLockRegistry:
    def test_released_locks_are_dropped(self):
        registry = MaterialLockRegistry()
        with registry.hold(["mesh", "profile"], timeout=1):
            assert set(registry._locks) == {"mesh", "profile"}

        gc.collect()
        assert len(registry._locks) == 0

    def test_held_lock_is_shared(self):
        registry = MaterialLockRegistry()
        with registry.hold(["profile"], timeout=1):
            with pytest.raises(StockContentionError):
                with registry.hold(["profile"], timeout=0.01):
                    pass

class TestOrderWorkflow:
    def test_system_statuses_not_set_by_users(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10))
        with pytest.raises(InvalidStatusTransitionError):
            OrderWorkflowService(db).advance(order, models.OrderStatus.OPTIMIZATION_COMPLETE)

    def test_cutting_needs_committed_plan(self, db, stocked_profile, make_order):
        order = make_order(cuts=window_cuts(stocked_profile, 10))
        CuttingPlanGenerator(db).generate(order.id)
        with pytest.raises(InvalidStatusTransitionError):
            OrderWorkflowService(db).advance(order, models.OrderStatus.CUTTING, system=True)

    def test_invalid_transition(self, db, make_order):
        order = make_order(status=models.OrderStatus.PENDING)
        with pytest.raises(InvalidStatusTransitionError):
            OrderWorkflowService(db).advance(order, models.OrderStatus.DELIVERED)

    def test_history_appended(self, db, make_order):
        order = make_order(status=models.OrderStatus.PENDING)
        service = OrderWorkflowService(db)
        service.advance(order, models.OrderStatus.MEASUREMENT_CONFIRMED, notes="Site visit done")
        service.advance(order, models.OrderStatus.READY_FOR_OPTIMIZATION)

        assert [h.status for h in order.status_history] == [
            "Pending", "Measurement Confirmed", "Ready for Optimization",
        ]
        assert order.status_history[1].notes == "Site visit done"
