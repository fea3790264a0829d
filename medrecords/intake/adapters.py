"""
具体 Adapter 实现。

新增导出格式：在此文件添加一个类，然后在 factory.py 注册即可。

已注册格式：
  walgreens_csv            WalgreensCSVAdapter          (CSV 文本)
  walgreens_spreadsheet    WalgreensSpreadsheetAdapter  (xlsx 工作簿，第一个 sheet)
"""

from .base import BasePharmacyAdapter
from .readers import Rows, read_csv_rows, read_xlsx_rows
from .types import FormatKind


# ── WalgreensCSVAdapter ────────────────────────────────────────────────────
#
# Walgreens "Confidential Prescription Records" 导出（CSV）:
#
# Confidential Prescription Records,,,,,,,,,
# ,,,,,,,,,
# Rune Larsen,,,,,,,,,                          ← 患者信息没有标签，每行一个字段
# 555 n danebo ave spc 34,,,,,,,,,
# "eugene, OR 974022230",,,,,,,,,
# 5416062179,,,,,,,,,
# 01/14/1971,,,,,,,,,
# Male,,,,,,,,,
# ,,,,,,,,,
# 09/08/2025 to 09/13/2025,,,,,,,,,"Showing  Prescriptions, Sorted By fill date (...)"
# Fill Date,Prescription,Rx #,Qty,Prescriber,Pharmacist,NDC#,Insurance,Claim Reference #,Price
# 09/08/2025,Cyclobenzaprine 10mg Tablets,185848411643,90,"Wilson,Erica",SMM,29300041510,APM,252514899525277999,$0.00
# ,,,,,,,,Total ,$0.00                          ← 页脚，表体到此结束
# ,,,,,,,,Generics Saved You ,$0.00
#
# 另一种带标签的变体（"Patient Name:,John Smith"）由基类的 header 提取同样支持。

class WalgreensCSVAdapter(BasePharmacyAdapter):
    kind = FormatKind.WALGREENS_CSV

    def parse(self) -> Rows:
        self._rows = read_csv_rows(self._source.raw)
        return self._rows


# ── WalgreensSpreadsheetAdapter ────────────────────────────────────────────
#
# 同样的布局，保存成 xlsx。与 CSV 的差异：
#   1. 日期单元格是真正的日期类型 → readers 统一渲染成 MM/DD/YYYY
#   2. Rx # / NDC# 常被存成数字 → readers 去掉 ".0"
#   3. 只读第一个 sheet

class WalgreensSpreadsheetAdapter(BasePharmacyAdapter):
    kind = FormatKind.WALGREENS_SPREADSHEET

    def parse(self) -> Rows:
        self._rows = read_xlsx_rows(self._source.raw)
        return self._rows
