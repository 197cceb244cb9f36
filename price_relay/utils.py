"""
工具函数：时间/日期键、日期文本归一化、数字解析、交易日判断、日志初始化。
"""

import logging
import re
import time
from datetime import date, datetime
from typing import Iterable, Optional


def now_ms() -> int:
    """当前 UTC 毫秒时间戳"""
    return int(time.time() * 1000)


def day_key(d: date) -> int:
    """date -> YYYYMMDD 整数"""
    return d.year * 10000 + d.month * 100 + d.day


def today_key() -> int:
    return day_key(date.today())


def key_to_date(key: int) -> date:
    return date(key // 10000, key // 100 % 100, key % 100)


def format_day_key(key: int) -> str:
    """20240521 -> '2024-05-21'"""
    return key_to_date(key).isoformat()


_FULL_DATE_RE = re.compile(r"(\d{4})\D{0,3}(\d{1,2})\D{0,3}(\d{1,2})")
_MONTH_DAY_RE = re.compile(r"(\d{1,2})\s*[-/.月]\s*(\d{1,2})")
_DAY_RE = re.compile(r"^(\d{1,2})\s*日?$")


def normalize_date_token(token: str, today: Optional[date] = None) -> int:
    """
    把页面上的日期文本还原成 YYYYMMDD。
    页面通常只给 "05-21" / "5月21日" 这种，不带年份，用本地当前年份补齐；
    只有日（"21日"）时再用当前月份补齐。无法识别抛 ValueError。
    """
    today = today or date.today()
    t = (token or "").strip()
    if not t:
        raise ValueError("empty date token")

    compact = t.replace(" ", "")
    if compact.isdigit() and len(compact) == 8:
        return day_key(datetime.strptime(compact, "%Y%m%d").date())

    m = _FULL_DATE_RE.search(t)
    if m:
        return day_key(date(int(m.group(1)), int(m.group(2)), int(m.group(3))))

    m = _MONTH_DAY_RE.search(t)
    if m:
        return day_key(date(today.year, int(m.group(1)), int(m.group(2))))

    m = _DAY_RE.match(t)
    if m:
        return day_key(date(today.year, today.month, int(m.group(1))))

    raise ValueError(f"unrecognized date token: {token!r}")


def parse_number(s: Optional[str]) -> Optional[float]:
    """'20,310' -> 20310.0；'+100' -> 100.0；'-' / '' -> None"""
    if s is None:
        return None
    t = str(s).strip().replace(",", "").replace("，", "")
    # 全角 / Unicode 正负号
    t = t.replace("\u2212", "-").replace("－", "-").replace("＋", "+")
    t = re.sub(r"[^0-9.\-+]", "", t)
    if not t or t in {"-", "+", "."}:
        return None
    try:
        return float(t)
    except ValueError:
        return None


def is_trading_day(d: date, holidays: Iterable[int] = ()) -> bool:
    """周一到周五，且不在节假日列表（YYYYMMDD）里"""
    return d.weekday() < 5 and day_key(d) not in set(holidays)


def setup_logging(level: str = "INFO", file: Optional[str] = None) -> None:
    handlers = [logging.StreamHandler()]
    if file:
        handlers.append(logging.FileHandler(file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
        handlers=handlers,
        force=True,
    )
