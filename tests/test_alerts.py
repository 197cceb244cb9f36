# -*- coding: utf-8 -*-
import asyncio

from conftest import FakeSender, make_record
from price_relay.alerts import AlertEngine
from price_relay.models import AlertType, CycleState
from price_relay.storage import init_db, query_alerts


async def _engine(tmp_path, sender=None, threshold=3):
    db = await init_db(tmp_path / "alerts.db")
    sender = sender or FakeSender(True)
    return db, sender, AlertEngine(db, sender, threshold=threshold)


def test_threshold_debounce(tmp_path):
    async def case():
        db, sender, engine = await _engine(tmp_path)
        state = CycleState()
        try:
            assert await engine.report_failure(state, AlertType.FETCH_FAILURE, "e1") is None
            assert await engine.report_failure(state, AlertType.FETCH_FAILURE, "e2") is None
            alert = await engine.report_failure(state, AlertType.FETCH_FAILURE, "e3")
            assert alert is not None and alert.type == AlertType.FETCH_FAILURE
            assert "e3" in alert.message
            assert state.failures[AlertType.FETCH_FAILURE] == 0

            # 再来两次不足阈值
            await engine.report_failure(state, AlertType.FETCH_FAILURE, "e4")
            await engine.report_failure(state, AlertType.FETCH_FAILURE, "e5")
            assert len(await query_alerts(db, since_ms=0)) == 1
            assert sender.payloads == [{"type": "text", "content": {"text": alert.message}}]
        finally:
            await db.close()

    asyncio.run(case())


def test_success_resets_counter(tmp_path):
    async def case():
        db, _, engine = await _engine(tmp_path)
        state = CycleState()
        try:
            await engine.report_failure(state, AlertType.FETCH_FAILURE, "x")
            await engine.report_failure(state, AlertType.FETCH_FAILURE, "x")
            engine.report_success(state, AlertType.FETCH_FAILURE)
            assert state.failures[AlertType.FETCH_FAILURE] == 0
            await engine.report_failure(state, AlertType.FETCH_FAILURE, "x")
            await engine.report_failure(state, AlertType.FETCH_FAILURE, "x")
            assert await query_alerts(db, since_ms=0) == []
        finally:
            await db.close()

    asyncio.run(case())


def test_counters_are_independent(tmp_path):
    async def case():
        db, _, engine = await _engine(tmp_path)
        state = CycleState()
        try:
            for _ in range(2):
                await engine.report_failure(state, AlertType.FETCH_FAILURE, "f")
                await engine.report_failure(state, AlertType.DELIVERY_FAILURE, "d")
            engine.report_success(state, AlertType.DELIVERY_FAILURE)
            alert = await engine.report_failure(state, AlertType.FETCH_FAILURE, "f")
            assert alert is not None
            assert state.failures[AlertType.DELIVERY_FAILURE] == 0
            types = [a.type for a in await query_alerts(db, since_ms=0)]
            assert types == [AlertType.FETCH_FAILURE]
        finally:
            await db.close()

    asyncio.run(case())


def test_anomaly_reported_every_time(tmp_path):
    async def case():
        db, sender, engine = await _engine(tmp_path)
        try:
            for avg in (0, None, -5.0):
                alert = await engine.report_anomaly(make_record(avg_price=avg))
                assert alert.type == AlertType.ANOMALOUS_DATA
            rows = await query_alerts(db, since_ms=0, alert_type=AlertType.ANOMALOUS_DATA)
            assert len(rows) == 3
            assert len(sender.payloads) == 3
            assert "2026-10-16" in rows[0].message
        finally:
            await db.close()

    asyncio.run(case())


def test_failed_alert_send_is_only_logged(tmp_path):
    async def case():
        sender = FakeSender([False, RuntimeError("boom")])
        db, _, engine = await _engine(tmp_path, sender=sender, threshold=1)
        state = CycleState()
        try:
            a1 = await engine.report_failure(state, AlertType.DELIVERY_FAILURE, "d1")
            a2 = await engine.report_anomaly(make_record(avg_price=0))
            assert a1 is not None and a2 is not None
            assert len(await query_alerts(db, since_ms=0)) == 2
        finally:
            await db.close()

    asyncio.run(case())
