# price_relay/main.py
# 串起：registry -> collector -> storage -> notifier / alerts，外加每日定时与午夜重置
# 用法：python -m price_relay.main run | once | status | sources ...

from __future__ import annotations
import argparse
import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from price_relay.alerts import AlertEngine
from price_relay.collector import HtmlTableExtractor
from price_relay.models import SourceDescriptor
from price_relay.notifier import DeliveryGate, build_adapter
from price_relay.orchestrator import Orchestrator
from price_relay.registry import RegistryError, SourceRegistry
from price_relay.storage import has_record_for_date, init_db, latest_record, query_alerts
from price_relay.utils import format_day_key, is_trading_day, setup_logging, today_key

logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[1]


DEFAULT_CFG = {
    "schedule": {
        "daily_time": "10:30",
        "retry_interval_sec": 300,
        "run_on_startup": True,
        # 额外休市日，YYYYMMDD
        "holidays": [],
    },
    "alerts": {
        "threshold": 3,
    },
    "delivery": {
        "url": "",
        "token": "",
        "timeout_sec": 10,
    },
    "alert_channel": {
        "url": "",
        "token": "",
        "timeout_sec": 10,
    },
    "extractor": {
        "timeout_sec": 15,
        "user_agent": "price-relay/1.0",
    },
    "storage": {
        "db_path": "price.db",
    },
    "sources_path": "ops/sources.yml",
    "logging": {
        "level": "INFO",
        "file": "",
    },
}


def load_cfg(path: Optional[Path] = None) -> dict:
    """ops/config.yml 可选；不存在就用默认。每个段落浅合并。"""
    cfg_path = Path(path) if path else ROOT / "ops" / "config.yml"
    data: dict = {}
    if cfg_path.exists():
        try:
            data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("读取 %s 失败，使用默认。err=%s", cfg_path, e)
            data = {}

    out = {**DEFAULT_CFG, **data}
    for key, default in DEFAULT_CFG.items():
        if isinstance(default, dict):
            out[key] = {**default, **(data.get(key) or {})}

    # 密钥优先取配置，其次环境变量
    out["delivery"]["url"] = out["delivery"]["url"] or os.environ.get("PRICE_WEBHOOK_URL", "").strip()
    out["delivery"]["token"] = out["delivery"]["token"] or os.environ.get("PRICE_WEBHOOK_TOKEN", "").strip()
    out["alert_channel"]["url"] = out["alert_channel"]["url"] or os.environ.get("ALERT_WEBHOOK_URL", "").strip()
    out["alert_channel"]["token"] = out["alert_channel"]["token"] or os.environ.get("ALERT_WEBHOOK_TOKEN", "").strip()
    return out


def _resolve(p: str) -> Path:
    path = Path(p)
    return path if path.is_absolute() else ROOT / path


@dataclass
class App:
    orchestrator: Orchestrator
    registry: SourceRegistry
    extractor: HtmlTableExtractor
    gate: DeliveryGate
    alert_sender: object
    db: object

    async def close(self) -> None:
        await self.orchestrator.close()
        await self.extractor.close()
        await self.gate.close()
        await self.alert_sender.close()
        await self.db.close()


async def build_app(cfg: dict) -> App:
    db = await init_db(_resolve(cfg["storage"]["db_path"]))
    registry = SourceRegistry.load(_resolve(cfg["sources_path"]))

    alert_cfg = cfg["alert_channel"]
    alert_sender = build_adapter(
        alert_cfg["url"], alert_cfg["token"],
        timeout_sec=float(alert_cfg["timeout_sec"]), label="alert",
    )
    alerts = AlertEngine(db, alert_sender, threshold=int(cfg["alerts"]["threshold"]))

    delivery_cfg = cfg["delivery"]
    sender = build_adapter(
        delivery_cfg["url"], delivery_cfg["token"],
        timeout_sec=float(delivery_cfg["timeout_sec"]), label="delivery",
    )
    gate = DeliveryGate(sender, alerts)

    ext_cfg = cfg["extractor"]
    extractor = HtmlTableExtractor(
        timeout_sec=float(ext_cfg["timeout_sec"]),
        user_agent=str(ext_cfg["user_agent"]),
    )

    orch = Orchestrator(
        db, registry, extractor, gate, alerts,
        retry_interval_sec=float(cfg["schedule"]["retry_interval_sec"]),
    )
    return App(orch, registry, extractor, gate, alert_sender, db)


# ------------------------------------------------------------
# 定时器（APScheduler）
# ------------------------------------------------------------

async def daily_job(orch: Orchestrator, holidays=(), day: Optional[date] = None):
    """每日定时点触发；非交易日跳过。cycle 在独立任务中执行。"""
    day = day or date.today()
    if not is_trading_day(day, holidays):
        logger.info("%s 非交易日，跳过", day)
        return None
    return orch.spawn_cycle(daily=True)


async def midnight_job(orch: Orchestrator):
    orch.reset_daily()


def build_scheduler(orch: Orchestrator, sched: dict) -> AsyncIOScheduler:
    hh, mm = str(sched["daily_time"]).split(":")
    holidays = sched.get("holidays") or []
    scheduler = AsyncIOScheduler()
    # 周末由 cron 过滤，额外休市日在 daily_job 里判断
    scheduler.add_job(
        daily_job, CronTrigger(day_of_week="mon-fri", hour=int(hh), minute=int(mm)),
        args=[orch, holidays], id="daily_cycle",
        coalesce=True, max_instances=1, misfire_grace_time=300,
    )
    scheduler.add_job(
        midnight_job, CronTrigger(hour=0, minute=0),
        args=[orch], id="midnight_reset",
        coalesce=True, max_instances=1, misfire_grace_time=300,
    )
    return scheduler


async def main(cfg: dict, run_seconds: int = 0):
    app = await build_app(cfg)
    sched = cfg["schedule"]
    holidays = sched.get("holidays") or []

    scheduler = build_scheduler(app.orchestrator, sched)
    scheduler.start()
    logger.info("scheduler started (daily %s, midnight reset)", sched["daily_time"])

    now = datetime.now()
    if sched.get("run_on_startup") and is_trading_day(now.date(), holidays) \
            and now.strftime("%H:%M") >= sched["daily_time"]:
        # 当天定时点已过（比如进程重启），先补跑一次
        app.orchestrator.spawn_cycle(daily=True)

    logger.info("running%s …", f" for {run_seconds}s" if run_seconds > 0 else "")
    try:
        if run_seconds and run_seconds > 0:
            await asyncio.sleep(run_seconds)
        else:
            await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        await app.close()
        logger.info("finished")


# ------------------------------------------------------------
# 命令行
# ------------------------------------------------------------

async def run_once(cfg: dict) -> int:
    app = await build_app(cfg)
    try:
        outcomes = await app.orchestrator.run_all_sources()
    finally:
        # 单次模式不保留重试循环
        await app.close()
    if not outcomes:
        print("今日已有记录，无需抓取")
        return 0
    for o in outcomes:
        rec = o.record
        extra = f" date={rec.date} avg={rec.avg_price}" if rec else ""
        print(f"{o.name:12} {o.status.value:16}{extra} {o.detail}")
    return 0 if any(o.carries_date(today_key()) for o in outcomes) else 1


async def show_status(cfg: dict, alerts_limit: int = 10) -> int:
    db = await init_db(_resolve(cfg["storage"]["db_path"]))
    try:
        today = today_key()
        done = await has_record_for_date(db, today)
        print(f"今日 {format_day_key(today)}：{'已完成' if done else '未完成'}")
        rec = await latest_record(db)
        if rec:
            print(f"最新记录：{rec.name} {format_day_key(rec.date)} 区间={rec.price_range} "
                  f"均价={rec.avg_price} 涨跌={rec.change} {rec.unit}")
        else:
            print("最新记录：无")
        rows = await query_alerts(db, limit=alerts_limit)
        print(f"最近告警（{len(rows)}）：")
        for a in rows:
            ts = datetime.fromtimestamp(a.created_at / 1000).strftime("%Y-%m-%d %H:%M:%S")
            print(f"  {ts} [{a.type.value}] {a.message}")
    finally:
        await db.close()
    return 0


def manage_sources(cfg: dict, args) -> int:
    reg = SourceRegistry.load(_resolve(cfg["sources_path"]))
    try:
        if args.action == "list":
            for d in reg.cycle_sources():
                flag = " (主)" if d.name == reg.primary.name else ""
                print(f"{d.name}{flag}\t{d.location}\t{d.match_key}")
            return 0
        if args.action == "add":
            reg.add(SourceDescriptor(args.name, args.url, args.match_key))
        elif args.action == "update":
            cur = reg.get(args.old_name)
            if cur is None:
                raise RegistryError(f"数据源 {args.old_name} 不存在")
            reg.update(args.old_name, SourceDescriptor(
                args.name or cur.name, args.url or cur.location, args.match_key or cur.match_key,
            ))
        elif args.action == "delete":
            reg.delete(args.name)
    except RegistryError as e:
        print(f"未生效：{e}")
        return 2
    reg.save()
    print("已生效")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="price-relay")
    parser.add_argument("--config", type=Path, default=None, help="默认 ops/config.yml")
    sub = parser.add_subparsers(dest="command", required=True)

    p_run = sub.add_parser("run", help="常驻运行（定时抓取 + 午夜重置）")
    p_run.add_argument("--run-seconds", type=int, default=0, help="0 表示永久运行")

    sub.add_parser("once", help="立即跑一轮")

    p_status = sub.add_parser("status", help="查看今日状态、最新记录、最近告警")
    p_status.add_argument("--alerts", type=int, default=10)

    p_src = sub.add_parser("sources", help="管理数据源")
    src_sub = p_src.add_subparsers(dest="action", required=True)
    src_sub.add_parser("list")
    p_add = src_sub.add_parser("add")
    p_add.add_argument("name")
    p_add.add_argument("url")
    p_add.add_argument("match_key")
    p_upd = src_sub.add_parser("update")
    p_upd.add_argument("old_name")
    p_upd.add_argument("--name")
    p_upd.add_argument("--url")
    p_upd.add_argument("--match-key", dest="match_key")
    p_del = src_sub.add_parser("delete")
    p_del.add_argument("name")
    return parser


def cli(argv=None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_cfg(args.config)
    setup_logging(cfg["logging"]["level"], cfg["logging"].get("file") or None)

    if args.command == "run":
        asyncio.run(main(cfg, run_seconds=args.run_seconds))
        return 0
    if args.command == "once":
        return asyncio.run(run_once(cfg))
    if args.command == "status":
        return asyncio.run(show_status(cfg, args.alerts))
    return manage_sources(cfg, args)


if __name__ == "__main__":
    raise SystemExit(cli())
