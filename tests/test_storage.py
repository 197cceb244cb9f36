# -*- coding: utf-8 -*-
"""
tests/test_storage.py
验证 price_relay/storage.py 与 Record / Alert 模型对接：
1) init_db -> insert_record
2) has_record_for_date / has_record / latest_record / query_records 能查回
3) insert_alert -> query_alerts 时间区间与类型筛选
"""
import asyncio

from conftest import TODAY, YESTERDAY, make_record
from price_relay.models import Alert, AlertType
from price_relay.storage import (
    has_record,
    has_record_for_date,
    init_db,
    insert_alert,
    insert_record,
    latest_record,
    query_alerts,
    query_records,
)


def test_records_roundtrip_and_queries(tmp_path):
    async def case():
        db = await init_db(tmp_path / "sub" / "price.db")
        try:
            assert await latest_record(db) is None
            assert not await has_record_for_date(db, TODAY)

            rec = make_record(date=YESTERDAY)
            rid = await insert_record(db, rec)
            assert rid > 0
            assert rec.created_at > 0
            await insert_record(db, make_record("电解铜", date=TODAY, avg_price=None))

            assert await has_record_for_date(db, TODAY)
            assert await has_record(db, "A00铝", YESTERDAY)
            assert not await has_record(db, "A00铝", TODAY)

            latest = await latest_record(db)
            assert latest.name == "电解铜" and latest.avg_price is None

            rows = await query_records(db, date_from=YESTERDAY, date_to=YESTERDAY)
            assert [r.name for r in rows] == ["A00铝"]
            assert rows[0].avg_price == 20310.0
            assert [r.date for r in await query_records(db)] == [TODAY, YESTERDAY]
            assert await query_records(db, name="锌锭") == []
            assert len(await query_records(db, limit=1)) == 1
        finally:
            await db.close()

    asyncio.run(case())


def test_alerts_range_and_type_filter(tmp_path):
    async def case():
        db = await init_db(tmp_path / "price.db")
        try:
            await insert_alert(db, Alert(AlertType.FETCH_FAILURE, "连续 3 次抓取失败", 1_000))
            await insert_alert(db, Alert(AlertType.ANOMALOUS_DATA, "均价异常", 2_000))
            await insert_alert(db, Alert(AlertType.DELIVERY_FAILURE, "连续 3 次推送失败", 3_000))

            rows = await query_alerts(db, since_ms=0)
            assert [a.created_at for a in rows] == [3_000, 2_000, 1_000]

            rows = await query_alerts(db, since_ms=1_500, until_ms=2_500)
            assert [a.type for a in rows] == [AlertType.ANOMALOUS_DATA]

            rows = await query_alerts(db, since_ms=0, alert_type=AlertType.FETCH_FAILURE)
            assert rows[0].message == "连续 3 次抓取失败"

            # 默认只回溯最近 7 天
            assert await query_alerts(db) == []
        finally:
            await db.close()

    asyncio.run(case())
