"""
HTML 报价表解析器

页面结构（ccmn.cn 首页报价表）：
    <table>
      <tr><td>A00铝</td><td>20290-20330</td><td>20310</td><td>+100</td><td>元/吨</td><td>05-21</td></tr>
      ...
    </table>
"""

from datetime import date
from typing import Optional

from bs4 import BeautifulSoup

from price_relay.models import Record
from price_relay.utils import normalize_date_token, parse_number

# 名称 / 价格区间 / 均价 / 涨跌 / 单位 / 日期
MIN_CELLS = 6


class RowFormatError(ValueError):
    """命中的行结构不对（列数不够、日期解析失败）"""


def parse_price_table(html: str, match_key: str, today: Optional[date] = None) -> Optional[Record]:
    """
    找到第一行首列包含 match_key 的 <tr>，转换成 Record。

    参数:
        html: 页面 HTML
        match_key: 匹配文本
        today: 用于补全年份，默认本地今天

    返回:
        Record；没有命中的行返回 None
    """
    soup = BeautifulSoup(html or "", "html.parser")

    for row in soup.select("table tr"):
        tds = row.find_all("td")
        if not tds or match_key not in tds[0].get_text(strip=True):
            continue

        cells = [td.get_text(strip=True) for td in tds]
        if len(cells) < MIN_CELLS:
            raise RowFormatError(f"{match_key} 行只有 {len(cells)} 列")

        try:
            day = normalize_date_token(cells[5], today=today)
        except ValueError as e:
            raise RowFormatError(f"{match_key} 日期无法解析: {cells[5]!r}") from e

        return Record(
            name=cells[0],
            price_range=cells[1],
            avg_price=parse_number(cells[2]),
            change=parse_number(cells[3]),
            unit=cells[4],
            date=day,
        )

    return None
