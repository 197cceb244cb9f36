"""
本地 dummy 数据源：location 以 dummy:// 开头时使用，
生成一张带随机报价的 HTML 表，走和真实页面相同的解析流程，方便离线联调。
"""

import random
from datetime import date
from typing import Optional


def generate_table(match_key: str, today: Optional[date] = None) -> str:
    """
    生成一张只有一行报价的 HTML 表格。

    参数:
        match_key: 行首文本
        today: 日期列用它的 月-日

    返回:
        HTML 文本
    """
    today = today or date.today()
    avg = random.randint(19000, 21000)
    half = random.randint(10, 40)
    change = random.randint(-200, 200)

    return (
        "<table>"
        "<tr><th>品名</th><th>价格区间</th><th>均价</th><th>涨跌</th><th>单位</th><th>日期</th></tr>"
        f"<tr><td>{match_key}</td><td>{avg - half}-{avg + half}</td><td>{avg}</td>"
        f"<td>{change:+d}</td><td>元/吨</td><td>{today:%m-%d}</td></tr>"
        "</table>"
    )
