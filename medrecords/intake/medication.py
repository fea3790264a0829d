"""
Medication String Parser：把自由文本药品描述拆成 {name, strength, form}。

三个互相独立的 pass，依次作用在不可变字符串上，每个 pass 返回 (token, residual)：
  1. extract_strength  数值 + 单位（mg / mcg / mL / g / IU ...），取最后一个
  2. extract_form      residual 结尾的剂型词（封闭词表）
  3. 剩余部分          → name

  "Lisinopril 10mg"              → ("Lisinopril", "10mg", "")
  "Atorvastatin 20mg Tablet"     → ("Atorvastatin", "20mg", "Tablet")
  "Cyclobenzaprine 10mg Tablets" → ("Cyclobenzaprine", "10mg", "Tablet")
"""

import re
from dataclasses import dataclass, field

from .types import ParsedMedication

# ── 单位 ────────────────────────────────────────────────────────────────────
# key: 小写单位
# value: 规范写法
UNITS: dict[str, str] = {
    "mg": "mg",
    "mcg": "mcg",
    "ug": "mcg",
    "ml": "mL",
    "g": "g",
    "iu": "IU",
    "unit": "units",
    "units": "units",
    "meq": "mEq",
    "%": "%",
}

# 每剂量单位只出现在 "/" 之后（50mcg/act）
PER_UNITS: dict[str, str] = {
    **UNITS,
    "actuation": "actuation",
    "act": "act",
    "spray": "spray",
    "dose": "dose",
}

_NUMBER = r"\d+(?:\.\d+)?"
_UNIT = r"(?:mcg|mg|ug|ml|meq|iu|units?|g|%)"
_PER_UNIT = r"(?:actuation|act|spray|dose|mcg|mg|ug|ml|meq|iu|units?|g|%)"
STRENGTH_RE = re.compile(
    rf"(?<![\w.])({_NUMBER}(?:\s*[-/]\s*{_NUMBER})*)\s*({_UNIT})"
    rf"(?:\s*/\s*({_NUMBER})?\s*({_PER_UNIT}))?(?![A-Za-z])",
    re.IGNORECASE,
)

# ── 剂型词表 ────────────────────────────────────────────────────────────────
# key: 出现在文本里的写法（小写）
# value: 规范剂型
FORMS: dict[str, str] = {
    "tablet": "Tablet", "tablets": "Tablet", "tab": "Tablet", "tabs": "Tablet",
    "capsule": "Capsule", "capsules": "Capsule", "cap": "Capsule", "caps": "Capsule",
    "solution": "Solution", "soln": "Solution", "sol": "Solution",
    "suspension": "Suspension", "susp": "Suspension",
    "cream": "Cream", "ointment": "Ointment", "oint": "Ointment",
    "gel": "Gel", "lotion": "Lotion",
    "injection": "Injection", "inj": "Injection",
    "patch": "Patch", "patches": "Patch",
    "drops": "Drops", "drop": "Drops",
    "spray": "Spray", "inhaler": "Inhaler", "aerosol": "Aerosol",
    "liquid": "Liquid", "syrup": "Syrup", "elixir": "Elixir",
    "powder": "Powder", "suppository": "Suppository", "suppositories": "Suppository",
    "lozenge": "Lozenge", "film": "Film",
}

_TRAILING_WORD_RE = re.compile(r"[\s,]*\b([A-Za-z]+)\.?[\s,]*$")


@dataclass
class MedicationParse:
    medication: ParsedMedication
    warnings: list[dict] = field(default_factory=list)


def collapse(text: str) -> str:
    return " ".join((text or "").split())


def normalize_key(text: str) -> str:
    """Medicine 查找键：大小写折叠 + 空白合并。"""
    return collapse(text).casefold()


def title_name(text: str) -> str:
    return " ".join(w[:1].upper() + w[1:].lower() for w in collapse(text).split(" ") if w)


def _format_strength(amount: str, unit: str, per_amount: str | None, per_unit: str | None) -> str:
    amount = re.sub(r"\s+", "", amount)
    result = f"{amount}{UNITS[unit.lower()]}"
    if per_unit:
        result += f"/{per_amount or ''}{PER_UNITS[per_unit.lower()]}"
    return result


def extract_strength(text: str) -> tuple[str, str]:
    """返回 (strength, residual)；没有剂量 token 时 strength 为空字符串。"""
    matches = list(STRENGTH_RE.finditer(text))
    if not matches:
        return "", text
    m = matches[-1]
    strength = _format_strength(m.group(1), m.group(2), m.group(3), m.group(4))
    residual = collapse(f"{text[:m.start()]} {text[m.end():]}")
    return strength, residual


def extract_form(text: str) -> tuple[str, str]:
    """返回 (form, residual)；只看结尾的单词。"""
    m = _TRAILING_WORD_RE.search(text)
    if not m:
        return "", text
    form = FORMS.get(m.group(1).lower())
    if form is None:
        return "", text
    residual = collapse(text[:m.start()])
    if not residual:
        # 整个描述只有剂型词时不拆，保留为名称
        return "", text
    return form, residual


def parse_medication(text: str) -> MedicationParse:
    """
    依次执行 strength → form → name 三个 pass。

    没有剂量时 strength 为空并记一条 MISSING_STRENGTH 警告；
    空文本由调用方作为行级错误处理，这里返回空 name。
    """
    original = collapse(text)
    warnings: list[dict] = []

    strength, residual = extract_strength(original)
    form, residual = extract_form(residual)
    name = title_name(residual.strip(" ,-"))

    if original and not strength:
        warnings.append({
            "code": "MISSING_STRENGTH",
            "message": f"No strength found in {original!r}.",
        })

    return MedicationParse(
        medication=ParsedMedication(name=name, strength=strength, form=form),
        warnings=warnings,
    )


def medicine_keys(medication: ParsedMedication) -> dict[str, str]:
    """(name, strength, form) 三元组的规范化查找键。"""
    return {
        "name_key": normalize_key(medication.name),
        "strength_key": normalize_key(medication.strength).replace(" ", ""),
        "form_key": normalize_key(medication.form),
    }
