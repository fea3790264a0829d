"""
Header Extractor：从表头上方的自由格式区域提取患者身份信息。

两种布局：
  labeled     第一个非空单元格是标签（"Patient Name:"），右侧第一个非空单元格是值；
              也接受同一单元格里的 "Patient Name: John Smith"
  positional  Walgreens 实际导出的布局：没有标签，每行一个字段，按形状识别
              （姓名 / 街道 / 城市州邮编 / 10 位电话 / MM/DD/YYYY 生日 / 性别）

只要扫描窗口内出现任何一个标签行，就按 labeled 处理，不再做形状猜测。

扫描是纯函数：输入行列表 + 表头位置，输出 PatientContext 或抛出致命异常。
"""

import re
from dataclasses import dataclass, field

from ..exceptions import PatientHeaderNotFound, PatientNameMissing
from .tokenizer import parse_date
from .types import PatientContext

DEFAULT_LOOKAHEAD = 20

VENDOR_MARKER = "confidential prescription records"

# ── 标签表 ──────────────────────────────────────────────────────────────────
# key: 标签文本（小写、去掉结尾冒号）
# value: PatientContext 字段
LABELS: dict[str, str] = {
    "patient name":  "name",
    "patient":       "name",
    "name":          "name",
    "member name":   "name",
    "date of birth": "dob",
    "birth date":    "dob",
    "dob":           "dob",
    "address":       "address",
    "street":        "address",
    "city/state/zip": "city",
    "phone":         "phone",
    "phone number":  "phone",
    "telephone":     "phone",
    "gender":        "gender",
    "sex":           "gender",
}

_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z\s.'-]+$")
_PHONE_DIGITS_RE = re.compile(r"\D")
_DOB_RE = re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$")
_STREET_RE = re.compile(r"\d+.*[A-Za-z]")
_CITY_RE = re.compile(r"^[A-Za-z .'-]+,\s*[A-Za-z]{2}\b")
_PERIOD_RE = re.compile(r"^\d{1,2}/\d{1,2}/\d{4}\s+to\s+\d{1,2}/\d{1,2}/\d{4}$", re.IGNORECASE)
_GENDERS = {"male": "Male", "female": "Female"}

# 与 FamilyMember 字段长度一致；超长的可选字段丢弃并给警告，不能让每一行都校验失败
NAME_MAX_LENGTH = 200
NAME_PART_MAX_LENGTH = 100
OPTIONAL_MAX_LENGTHS = {"address": 300, "phone": 20, "gender": 20}


@dataclass
class PatientHeader:
    """extract_header() 的完整产出，除 PatientContext 外还带报告期和文件级警告。"""

    patient: PatientContext
    mode: str
    report_period: str = ""
    warnings: list[dict] = field(default_factory=list)


def _clean(cell: str) -> str:
    return " ".join((cell or "").split())


def _label_key(cell: str) -> str:
    return _clean(cell).rstrip(":").strip().lower()


def _first_cells(row: list[str]) -> list[str]:
    return [_clean(c) for c in row if _clean(c)]


def _is_noise(text: str) -> bool:
    lowered = text.lower()
    return lowered.startswith(VENDOR_MARKER) or lowered.startswith("showing")


def _normalize_phone(text: str) -> str:
    digits = _PHONE_DIGITS_RE.sub("", text)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits if len(digits) == 10 else ""


def _parse_label_row(cells: list[str]) -> tuple[str, str] | None:
    """返回 (字段, 值)；不是标签行返回 None。"""
    first = cells[0]
    if ":" in first:
        label, _, inline_value = first.partition(":")
        key = _label_key(label)
        if key in LABELS:
            value = _clean(inline_value) or (cells[1] if len(cells) > 1 else "")
            return LABELS[key], value
    return None


def _scan_labeled(window: list[list[str]]) -> dict[str, str] | None:
    found: dict[str, str] = {}
    saw_label = False
    for row in window:
        cells = _first_cells(row)
        if not cells:
            continue
        parsed = _parse_label_row(cells)
        if parsed is None:
            # 不认识的标签行：跳过，不致命
            continue
        saw_label = True
        field_name, value = parsed
        if value and field_name not in found:
            found[field_name] = value
    return found if saw_label else None


def _scan_positional(window: list[list[str]]) -> dict[str, str]:
    found: dict[str, str] = {}
    for row in window:
        cells = _first_cells(row)
        if not cells:
            continue
        line = cells[0].rstrip(",").strip()
        if _is_noise(line) or _PERIOD_RE.match(line):
            continue

        lowered = line.lower()
        if lowered in _GENDERS:
            found.setdefault("gender", _GENDERS[lowered])
        elif _DOB_RE.match(line):
            found.setdefault("dob", line)
        elif _normalize_phone(line) and re.fullmatch(r"[\d\s().+-]+", line):
            found.setdefault("phone", line)
        elif "address" in found and "city" not in found and _CITY_RE.match(line):
            found["city"] = line
        elif "address" not in found and _STREET_RE.search(line):
            found["address"] = line
        elif "name" not in found and _NAME_RE.match(line) and 3 < len(line) < 50:
            found["name"] = line
    return found


def _find_period(window: list[list[str]]) -> str:
    for row in window:
        for cell in _first_cells(row):
            if _PERIOD_RE.match(cell):
                return cell
    return ""


def extract_header(rows: list[list[str]], header_index: int, lookahead: int = DEFAULT_LOOKAHEAD) -> PatientHeader:
    """
    扫描 rows[0 : min(header_index, lookahead)]，提取患者信息。

    Raises:
        PatientHeaderNotFound: 窗口内没有任何身份字段
        PatientNameMissing:    有身份字段但没有姓名；positional 姓名没有 DOB/电话佐证；姓名超长
    """
    window = rows[:max(0, min(header_index, lookahead))]

    found = _scan_labeled(window)
    mode = "labeled"
    if found is None:
        found = _scan_positional(window)
        mode = "positional"

    if not found:
        raise PatientHeaderNotFound(
            message=f"No patient identity fields found in the first {len(window)} rows.",
            detail={"scanned_rows": len(window), "lookahead": lookahead},
        )

    name = found.get("name", "").strip()
    if not name:
        raise PatientNameMissing(
            message="Patient name is missing from the export header.",
            detail={"fields_found": sorted(found), "mode": mode},
        )
    if mode == "positional" and not (found.get("dob") or found.get("phone")):
        # 只按形状猜出的姓名可能是标题行（"Walgreens Pharmacy"），必须有 DOB 或电话佐证
        raise PatientNameMissing(
            message=f"Could not confirm {name!r} as the patient name: no date of birth or phone near it.",
            detail={"fields_found": sorted(found), "mode": mode, "reason": "name not backed by DOB or phone"},
        )
    parts = name.split()
    if len(name) > NAME_MAX_LENGTH or len(parts[0]) > NAME_PART_MAX_LENGTH or len(parts[-1]) > NAME_PART_MAX_LENGTH:
        raise PatientNameMissing(
            message=f"Patient name is longer than {NAME_MAX_LENGTH} characters and cannot be stored.",
            detail={"fields_found": sorted(found), "mode": mode, "reason": "name too long"},
        )

    warnings = []
    dob = None
    if found.get("dob"):
        dob = parse_date(found["dob"])
        if dob is None:
            warnings.append({
                "code": "UNPARSEABLE_DOB",
                "message": f"Date of birth {found['dob']!r} could not be parsed and was ignored.",
            })

    address = found.get("address", "")
    if found.get("city"):
        address = f"{address}, {found['city']}" if address else found["city"]

    phone = found.get("phone", "")
    if phone and not _normalize_phone(phone):
        warnings.append({
            "code": "UNPARSEABLE_PHONE",
            "message": f"Phone {phone!r} is not a 10-digit number and was ignored.",
        })
    phone = _normalize_phone(phone)

    gender = found.get("gender", "")
    values = {
        "address": address,
        "phone": phone,
        "gender": _GENDERS.get(gender.lower(), gender),
    }
    for field_name, max_length in OPTIONAL_MAX_LENGTHS.items():
        if len(values[field_name]) > max_length:
            warnings.append({
                "code": "FIELD_TOO_LONG",
                "message": f"{field_name.title()} is longer than {max_length} characters and was ignored.",
                "field": field_name,
            })
            values[field_name] = ""

    patient = PatientContext(name=name, dob=dob, **values)
    return PatientHeader(patient=patient, mode=mode, report_period=_find_period(window), warnings=warnings)


def extract_patient(rows: list[list[str]], header_index: int, lookahead: int = DEFAULT_LOOKAHEAD) -> PatientContext:
    return extract_header(rows, header_index, lookahead).patient
