import importlib
import os
import sys
import tempfile
import unittest
import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker


class ConsumptionEngineTestCase(unittest.TestCase):
    def setUp(self):
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        if "app" in sys.modules:
            self.app_module = importlib.reload(sys.modules["app"])
        else:
            self.app_module = importlib.import_module("app")

        self.app = self.app_module.create_app()
        self.app.testing = True
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.app_module.db.create_all()

        from blending import get_blending_store

        self.store = get_blending_store(self.app)
        db = self.app_module.db
        models = importlib.import_module("models")
        self.models = models

        self.f1 = models.Fibre(fibre_code="F1", fibre_name="Cotton", stock_kg=Decimal("1000"))
        self.f2 = models.Fibre(fibre_code="F2", fibre_name="Polyester", stock_kg=Decimal("1000"))
        self.buyer = models.Buyer(name="Knit House")
        self.blend = models.Blend(blend_code="PC-6040")
        db.session.add_all([self.f1, self.f2, self.buyer, self.blend])
        db.session.flush()
        self.blend.fibres.append(models.BlendFibre(fibre_id=self.f1.id, percentage=Decimal("60"), position=0))
        self.blend.fibres.append(models.BlendFibre(fibre_id=self.f2.id, percentage=Decimal("40"), position=1))
        db.session.commit()

    def tearDown(self):
        self.app_module.db.session.remove()
        self.app_module.db.drop_all()
        self.ctx.pop()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def _order(self, *, realisation="50", quantity="100", blend=None):
        from blending import create_order

        payload = {
            "buyer_id": str(self.buyer.id),
            "blend_id": str((blend or self.blend).id),
            "quantity_kg": quantity,
            "delivery_date": "2024-06-30",
        }
        if realisation is not None:
            payload["realisation"] = realisation
        return create_order(self.store, payload)

    def _stock(self, fibre):
        return self.app_module.db.session.get(self.models.Fibre, fibre.id).stock_kg

    def _used(self, fibre):
        return [
            log.used_kg
            for log in self.models.FibreUsageLog.query.filter_by(fibre_id=fibre.id).order_by(self.models.FibreUsageLog.id)
        ]

    def test_required_input_grosses_up_by_realisation(self):
        from blending import required_input_kg

        self.assertEqual(required_input_kg(Decimal("100"), Decimal("50")), Decimal("200"))
        self.assertEqual(required_input_kg(Decimal("100"), Decimal("100")), Decimal("100"))

    def test_start_production_debits_each_fibre_once(self):
        from blending import OrderConsumptionEngine

        order = self._order()
        updated = OrderConsumptionEngine(self.store).transition(order.id, "in_progress")

        self.assertEqual(updated.status, self.models.OrderStatus.in_progress)
        self.assertEqual(self._used(self.f1), [Decimal("120")])
        self.assertEqual(self._used(self.f2), [Decimal("80")])
        self.assertEqual(sum(self._used(self.f1) + self._used(self.f2)), Decimal("200"))
        self.assertEqual(self._stock(self.f1), Decimal("880"))
        self.assertEqual(self._stock(self.f2), Decimal("920"))

        logs = self.models.FibreUsageLog.query.all()
        self.assertTrue(all(log.order_id == order.id for log in logs))

    def test_uneven_split_draws_add_up_to_rounded_input(self):
        from blending import OrderConsumptionEngine

        models = self.models
        even = models.Blend(blend_code="PC-5050")
        self.app_module.db.session.add(even)
        self.app_module.db.session.flush()
        even.fibres.append(models.BlendFibre(fibre_id=self.f1.id, percentage=Decimal("50"), position=0))
        even.fibres.append(models.BlendFibre(fibre_id=self.f2.id, percentage=Decimal("50"), position=1))
        self.app_module.db.session.commit()

        # 100 kg at 30% needs 333.333... kg; half of it is 166.6666... per fibre.
        order = self._order(realisation="30", blend=even)
        preview = OrderConsumptionEngine(self.store).fibre_requirements(order.id)
        self.assertEqual(preview["total_input_kg"], Decimal("333.333"))
        self.assertEqual(
            [row["required_kg"] for row in preview["fibres"]],
            [Decimal("166.667"), Decimal("166.666")],
        )

        OrderConsumptionEngine(self.store).transition(order.id, "in_progress")

        self.assertEqual(self._used(self.f1), [Decimal("166.667")])
        self.assertEqual(self._used(self.f2), [Decimal("166.666")])
        self.assertEqual(sum(self._used(self.f1) + self._used(self.f2)), Decimal("333.333"))
        self.assertEqual(self._stock(self.f1), Decimal("833.333"))
        self.assertEqual(self._stock(self.f2), Decimal("833.334"))

    def test_missing_realisation_blocks_start(self):
        from blending import MissingRealisationError, OrderConsumptionEngine

        order = self._order(realisation=None)
        with self.assertRaises(MissingRealisationError):
            OrderConsumptionEngine(self.store).transition(order.id, "in_progress")

        self.assertEqual(self.store.get_order(order.id).status, self.models.OrderStatus.pending)
        self.assertEqual(self._stock(self.f1), Decimal("1000"))
        self.assertEqual(self.models.FibreUsageLog.query.count(), 0)

    def test_missing_fibre_aborts_before_any_debit(self):
        from blending import FibreNotFoundError, OrderConsumptionEngine

        models = self.models
        broken = models.Blend(blend_code="BROKEN")
        self.app_module.db.session.add(broken)
        self.app_module.db.session.flush()
        broken.fibres.append(models.BlendFibre(fibre_id=self.f1.id, percentage=Decimal("50"), position=0))
        # SQLite does not enforce the foreign key, which lets the blend point at a fibre that is gone.
        broken.fibres.append(models.BlendFibre(fibre_id=uuid.uuid4(), percentage=Decimal("50"), position=1))
        self.app_module.db.session.commit()

        order = self._order(blend=broken)
        with self.assertRaises(FibreNotFoundError):
            OrderConsumptionEngine(self.store).transition(order.id, "in_progress")

        self.assertEqual(self.store.get_order(order.id).status, self.models.OrderStatus.pending)
        self.assertEqual(self._stock(self.f1), Decimal("1000"))
        self.assertEqual(self.models.FibreUsageLog.query.count(), 0)

    def test_failure_mid_loop_rolls_back_earlier_debits(self):
        from blending import OrderConsumptionEngine, StockLedger

        class FailingLedger(StockLedger):
            calls = 0

            def debit(self, fibre_id, amount, *, order_id=None):
                FailingLedger.calls += 1
                if FailingLedger.calls == 2:
                    raise RuntimeError("connection lost")
                return super().debit(fibre_id, amount, order_id=order_id)

        order = self._order()
        engine = OrderConsumptionEngine(self.store, ledger=FailingLedger(self.store))
        with self.assertRaises(RuntimeError):
            engine.transition(order.id, "in_progress")

        self.assertEqual(FailingLedger.calls, 2)
        self.assertEqual(self.store.get_order(order.id).status, self.models.OrderStatus.pending)
        self.assertEqual(self._stock(self.f1), Decimal("1000"))
        self.assertEqual(self._stock(self.f2), Decimal("1000"))
        self.assertEqual(self.models.FibreUsageLog.query.count(), 0)

    def test_only_forward_edges_are_allowed(self):
        from blending import InvalidStatusTransitionError, OrderConsumptionEngine

        engine = OrderConsumptionEngine(self.store)
        order = self._order()

        with self.assertRaises(InvalidStatusTransitionError):
            engine.transition(order.id, "completed")
        with self.assertRaises(InvalidStatusTransitionError):
            engine.transition(order.id, "pending")

        engine.transition(order.id, "in_progress")
        with self.assertRaises(InvalidStatusTransitionError):
            engine.transition(order.id, "in_progress")
        with self.assertRaises(InvalidStatusTransitionError):
            engine.transition(order.id, "pending")

        completed = engine.transition(order.id, "completed")
        self.assertEqual(completed.status, self.models.OrderStatus.completed)
        # Completing draws nothing further.
        self.assertEqual(self._used(self.f1), [Decimal("120")])

    def test_unknown_status_and_order(self):
        from blending import BlendingValidationError, OrderConsumptionEngine, OrderNotFoundError

        engine = OrderConsumptionEngine(self.store)
        order = self._order()
        with self.assertRaises(BlendingValidationError):
            engine.transition(order.id, "shipped")
        with self.assertRaises(OrderNotFoundError):
            engine.transition(uuid.uuid4(), "in_progress")

    def test_fibre_requirements_preview_writes_nothing(self):
        from blending import OrderConsumptionEngine

        self.f2.stock_kg = Decimal("30")
        self.app_module.db.session.commit()
        order = self._order(realisation=None)

        preview = OrderConsumptionEngine(self.store).fibre_requirements(order.id)

        self.assertTrue(preview["realisation_assumed"])
        self.assertEqual(preview["total_input_kg"], Decimal("100"))
        by_code = {row["fibre_code"]: row for row in preview["fibres"]}
        self.assertTrue(by_code["F1"]["sufficient"])
        self.assertEqual(by_code["F2"]["shortage_kg"], Decimal("10"))
        self.assertFalse(preview["can_start"])
        self.assertEqual(self.models.FibreUsageLog.query.count(), 0)
        self.assertEqual(OrderConsumptionEngine(self.store).count_fibre_shortages(), 1)


class ConcurrentTransitionTestCase(unittest.TestCase):
    """Two sessions race to start the same order against a file database."""

    def setUp(self):
        from extensions import db

        models = importlib.import_module("models")
        self.models = models

        self.tmpdir = tempfile.TemporaryDirectory()
        self.engine = create_engine(f"sqlite:///{os.path.join(self.tmpdir.name, 'race.db')}")
        self.metadata = db.metadata
        self.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)

        with self.Session() as session:
            fibre_a = models.Fibre(fibre_code="F1", fibre_name="Cotton", stock_kg=Decimal("1000"))
            fibre_b = models.Fibre(fibre_code="F2", fibre_name="Polyester", stock_kg=Decimal("1000"))
            buyer = models.Buyer(name="Knit House")
            blend = models.Blend(blend_code="PC-6040")
            session.add_all([fibre_a, fibre_b, buyer, blend])
            session.flush()
            blend.fibres.append(models.BlendFibre(fibre_id=fibre_a.id, percentage=Decimal("60"), position=0))
            blend.fibres.append(models.BlendFibre(fibre_id=fibre_b.id, percentage=Decimal("40"), position=1))
            order = models.Order(
                order_number="ORD00001",
                buyer_id=buyer.id,
                blend_id=blend.id,
                quantity_kg=Decimal("100"),
                realisation=Decimal("50"),
                delivery_date=date(2024, 6, 30),
            )
            session.add(order)
            session.commit()
            self.order_id = order.id
            self.fibre_ids = (fibre_a.id, fibre_b.id)

    def tearDown(self):
        self.metadata.drop_all(self.engine)
        self.engine.dispose()
        self.tmpdir.cleanup()

    def test_second_transition_loses_the_compare_and_swap(self):
        from blending import BlendingStore, InvalidStatusTransitionError, OrderConsumptionEngine

        session_a = self.Session(expire_on_commit=False)
        session_b = self.Session()
        try:
            engine_a = OrderConsumptionEngine(BlendingStore(session_factory=lambda: session_a))
            engine_b = OrderConsumptionEngine(BlendingStore(session_factory=lambda: session_b))

            # Request A has already read the order as pending when B wins.
            stale = session_a.get(self.models.Order, self.order_id)
            self.assertEqual(stale.status, self.models.OrderStatus.pending)
            session_a.commit()

            engine_b.transition(self.order_id, "in_progress")

            with self.assertRaises(InvalidStatusTransitionError):
                engine_a.transition(self.order_id, "in_progress")
        finally:
            session_a.close()
            session_b.close()

        with self.Session() as session:
            order = session.get(self.models.Order, self.order_id)
            self.assertEqual(order.status, self.models.OrderStatus.in_progress)
            log_count = session.execute(select(func.count(self.models.FibreUsageLog.id))).scalar_one()
            self.assertEqual(log_count, 2)
            stocks = [session.get(self.models.Fibre, fibre_id).stock_kg for fibre_id in self.fibre_ids]
            self.assertEqual(stocks, [Decimal("880"), Decimal("920")])


if __name__ == "__main__":
    unittest.main()
