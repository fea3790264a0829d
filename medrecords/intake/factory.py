"""
工厂函数：根据 Format Detector 的结果返回对应 Adapter。

新增导出格式只需：
  1. 在 adapters.py 新建 Adapter 类
  2. 在此处 _build_registry() 加一行
  不需要修改任何业务代码。
"""

from ..exceptions import UnrecognizedFormat
from .base import BasePharmacyAdapter
from .header import DEFAULT_LOOKAHEAD
from .types import DetectedFormat, FormatKind, ImportSource


# ── 注册表 ──────────────────────────────────────────────────────────────────
# key: FormatKind
# value: Adapter 类（未实例化）
def _build_registry() -> dict[FormatKind, type[BasePharmacyAdapter]]:
    # 延迟导入，避免循环依赖
    from .adapters import WalgreensCSVAdapter, WalgreensSpreadsheetAdapter

    return {
        FormatKind.WALGREENS_CSV:         WalgreensCSVAdapter,
        FormatKind.WALGREENS_SPREADSHEET: WalgreensSpreadsheetAdapter,
    }


def get_adapter(
    source: ImportSource,
    detected: DetectedFormat,
    lookahead: int = DEFAULT_LOOKAHEAD,
) -> BasePharmacyAdapter:
    """
    根据 detected.kind 返回已实例化的 Adapter。

    Args:
        source:    上传文件（字节 + 文件名）
        detected:  detect_format() 的结果
        lookahead: 患者信息扫描窗口（行数）

    Raises:
        UnrecognizedFormat: 没有为该格式注册 Adapter（包括 UNKNOWN）
    """
    registry = _build_registry()
    adapter_cls = registry.get(detected.kind)

    if adapter_cls is None:
        raise UnrecognizedFormat(
            message=f"No adapter registered for format {detected.kind.value!r}.",
            code="UNSUPPORTED_FORMAT",
            detail={"known_formats": [kind.value for kind in registry]},
        )

    return adapter_cls(source=source, detected=detected, lookahead=lookahead)
