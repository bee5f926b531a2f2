"""
Domain helpers

Pure functions that turn stored records into display-ready values:
age buckets, BMI, household ordering, medicine grouping, the announcement
calendar grid and stock status. Nothing here touches the database.
"""

import calendar
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

LIFE_STAGES = ("newborn", "infant", "toddler", "child", "adult", "senior")
OVERRIDE_STATUSES = ("pwd", "pregnant")

AVAILABLE = "available"
OUT_OF_STOCK = "out of stock"
NOT_AVAILABLE = "not available"

BHW_TASKS = [
    "Monitored blood pressure of senior citizen/ postpartum/ lactating mothers/ pregnant",
    "Monitored height and weight of malnourished children.",
    "Monitored height and weight of 4ps members.",
    "Screened blood pressure of patients.",
    "Monitored blood pressure.",
    "Reweighed malnourish children.",
    "Assisted midwife during monthly immunization.",
    "Assisted midwife during prenatal check-up.",
    "Assisted midwife during follow up visits to postpartum/ pregnant women/ lactating mother.",
    "Assisted midwife during home visits to EPI defaulters.",
    "Assisted midwife in conducting Pap smear.",
    "Tracked pregnant women.",
    "Conducted home visits to postpartum/ lactating mother/ pregnant women.",
    "Conducted case finding of malnourish children.",
    "Conducted case finding of TB patients.",
    "Conducted interview for family planning user.",
    "Dispensed pills to family planning user.",
    "Dispensed TB drugs to TB patients.",
    "Assisted during medical check-up at RHU.",
    "Encouraged women to do Pap smear.",
    "Encouraged women to use family planning/ pills/ DMPA/ implant.",
    "Assisted BNS in Operation Timbang.",
    "Conducted weighing of children 0-59 months old for Operation Timbang.",
    "Conducted house to house survey.",
    "Distributed Vitamin A to children 6-59 months old.",
    "Distributed deworming tablets to 12-59 months old.",
    "Assisted RHU staffs in MR-SIA/ SBI.",
    "Assisted RHU staffs in medical mission.",
    "Assisted RHU staffs in konsulta sa barangay.",
    "Assisted midwife/ nurse in immunization of HPV/ Flu vaccine/ Pneumococcal vaccine",
    "Conducted interview to new senior citizens.",
    "Visiter/households with sick member and refer them to the health facility.",
]

_CONTACT_RE = re.compile(r"^(\+63|0)?[0-9]{10,11}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")

DateLike = Union[date, datetime, str, None]


def to_date(value: DateLike) -> Optional[date]:
    """Normalize a stored date value (date, datetime or ISO string) to a date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


# Age classifier

def get_age_in_months(birth_date: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    months = (today.year - birth_date.year) * 12 + (today.month - birth_date.month)
    if today.day < birth_date.day:
        months -= 1
    return max(0, months)


def get_age_category(birth_date: DateLike, today: Optional[date] = None) -> Optional[str]:
    birth = to_date(birth_date)
    if birth is None:
        return None
    months = get_age_in_months(birth, today)
    years = months // 12
    if months < 2:
        return "newborn"
    if months < 12:
        return "infant"
    if years < 4:
        return "toddler"
    if years < 18:
        return "child"
    if years < 65:
        return "adult"
    return "senior"


def get_age_based_status(birth_date: DateLike, original_status: Optional[str],
                         today: Optional[date] = None) -> Optional[str]:
    """Life-stage label, except that pwd/pregnant always win over age."""
    if original_status in OVERRIDE_STATUSES:
        return original_status
    category = get_age_category(birth_date, today)
    return category if category is not None else original_status


def get_age_display(birth_date: DateLike, today: Optional[date] = None) -> str:
    birth = to_date(birth_date)
    if birth is None:
        return "N/A"
    months = get_age_in_months(birth, today)
    if months < 12:
        return f"{months} mo"
    return f"{months // 12} yr"


def get_age_years(birth_date: DateLike, today: Optional[date] = None) -> Optional[int]:
    birth = to_date(birth_date)
    if birth is None:
        return None
    return get_age_in_months(birth, today) // 12


def merge_age_tag(groups: Optional[Iterable[str]], birth_date: DateLike,
                  today: Optional[date] = None) -> List[str]:
    """
    Apply the life-stage auto-tag to a marginalized-group list.

    User-asserted tags are kept in their order; any stale life-stage tag is
    dropped and the current one appended once.
    """
    current = get_age_category(birth_date, today)
    merged = [g for g in (groups or []) if g not in LIFE_STAGES]
    merged = list(dict.fromkeys(merged))
    if current:
        merged.append(current)
    return merged


def count_age_categories(residents: Iterable[Dict[str, Any]], today: Optional[date] = None) -> Dict[str, int]:
    counts = {stage: 0 for stage in LIFE_STAGES}
    for resident in residents:
        category = get_age_category(resident.get("birth_date"), today)
        if category:
            counts[category] += 1
    return counts


# BMI

class BmiResult(NamedTuple):
    bmi: Optional[float]
    category: str


def bmi_category(bmi: float) -> str:
    if bmi < 18.5:
        return "underweight"
    if bmi < 25:
        return "normal"
    if bmi < 30:
        return "overweight"
    return "obese"


def calculate_bmi(height_cm: Optional[float], weight_kg: Optional[float]) -> BmiResult:
    if not height_cm or not weight_kg or height_cm <= 0 or weight_kg <= 0:
        return BmiResult(None, NOT_AVAILABLE)
    meters = height_cm / 100
    bmi = weight_kg / (meters * meters)
    return BmiResult(round(bmi, 2), bmi_category(bmi))


def get_health_status(statuses: Iterable[str], bmi: Optional[float]) -> str:
    statuses = set(statuses or [])
    if "pwd" in statuses:
        return "Special Care"
    if "pregnant" in statuses:
        return "Prenatal Care"
    if "senior" in statuses:
        return "Senior Care"
    if bmi is not None and (bmi < 18.5 or bmi >= 30):
        return "Monitor"
    return "Good"


# Household numbers

def _leading_int(text: str) -> Optional[int]:
    match = _LEADING_INT_RE.match(text)
    return int(match.group(1)) if match else None


def household_numeric_part(household_number: str) -> Optional[int]:
    """Numeric key of a household number, e.g. "BRGY7-16" -> 16."""
    parts = household_number.split("-")
    if len(parts) > 1:
        num = _leading_int(parts[-1])
        if num is not None:
            return num
    return _leading_int(household_number)


def household_sort_key(household_number: str) -> Tuple[int, Union[int, str]]:
    num = household_numeric_part(household_number)
    if num is not None:
        return (0, num)
    return (1, household_number)


def compare_household_numbers(a: str, b: str) -> int:
    key_a, key_b = household_sort_key(a), household_sort_key(b)
    if key_a < key_b:
        return -1
    if key_a > key_b:
        return 1
    return 0


def sort_households(households: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(households, key=lambda h: household_sort_key(h.get("household_number", "")))


# Medicine

def group_medicines(medicines: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Group batches by med_code, codes in first-seen order."""
    groups: Dict[str, Dict[str, Any]] = {}
    for medicine in medicines:
        code = medicine.get("med_code")
        group = groups.get(code)
        if group is None:
            group = {"med_code": code, "name": medicine.get("name"), "medicines": []}
            groups[code] = group
        group["medicines"].append(medicine)
    return list(groups.values())


def derive_stock_status(quantity: int) -> str:
    return OUT_OF_STOCK if quantity <= 0 else AVAILABLE


def apply_stock_status(medicine: Dict[str, Any]) -> Dict[str, Any]:
    quantity = medicine.get("quantity")
    if isinstance(quantity, (int, float)):
        medicine["status"] = derive_stock_status(quantity)
    return medicine


def is_expired(exp_date: DateLike, today: Optional[date] = None) -> bool:
    expiry = to_date(exp_date)
    if expiry is None:
        return False
    return expiry <= (today or date.today())


def group_releases_by_barangay(records: Iterable[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for record in records:
        key = (record.get("barangay") or "").strip() or "Unspecified"
        grouped.setdefault(key, []).append(record)
    return {key: grouped[key] for key in sorted(grouped)}


# Calendar

def build_month_calendar(year: int, month: int) -> List[List[Optional[int]]]:
    """
    Week rows for a zero-based month. Weeks start on Sunday; cells outside the
    month are None and every row holds exactly 7 cells.
    """
    if not 0 <= month <= 11:
        raise ValueError(f"month must be between 0 and 11, got {month}")
    monday_based, last_day = calendar.monthrange(year, month + 1)
    start_weekday = (monday_based + 1) % 7

    days: List[Optional[int]] = [None] * start_weekday
    days.extend(range(1, last_day + 1))
    while len(days) % 7:
        days.append(None)
    return [days[i:i + 7] for i in range(0, len(days), 7)]


# Reports

def get_week_start(day: Optional[date] = None) -> date:
    day = day or date.today()
    return day - timedelta(days=day.weekday())


def get_week_end(week_start: date) -> date:
    return week_start + timedelta(days=6)


def month_start(value: Union[str, date]) -> str:
    """"2024-03" or any date in March 2024 -> "2024-03-01"."""
    if isinstance(value, date):
        return value.replace(day=1).isoformat()
    parsed = datetime.strptime(value[:7], "%Y-%m")
    return parsed.date().isoformat()


def invalid_tasks(tasks: Iterable[str]) -> List[str]:
    return [t for t in tasks if t not in BHW_TASKS]


# Messages

def group_conversations(messages: Iterable[Dict[str, Any]], account_id: str) -> List[Dict[str, Any]]:
    """Derive conversations keyed by the other party, latest first."""
    conversations: Dict[str, Dict[str, Any]] = {}
    for msg in sorted(messages, key=lambda m: str(m.get("created_at") or "")):
        if msg.get("sender_id") == account_id:
            other_id, other_name = msg.get("receiver_id"), msg.get("receiver_name")
        else:
            other_id, other_name = msg.get("sender_id"), msg.get("sender_name")
        convo = conversations.setdefault(other_id, {
            "other_id": other_id,
            "other_name": other_name,
            "unread": 0,
            "messages": [],
        })
        convo["messages"].append(msg)
        convo["last_message"] = msg
        if msg.get("receiver_id") == account_id and msg.get("status") == "unread":
            convo["unread"] += 1
    return sorted(conversations.values(),
                  key=lambda c: str(c["last_message"].get("created_at") or ""),
                  reverse=True)


# Forms

def construct_full_name(first_name: Optional[str], middle_name: Optional[str] = None,
                        last_name: Optional[str] = None, suffix: Optional[str] = None) -> str:
    parts = [first_name, middle_name, last_name, suffix]
    return " ".join(p.strip() for p in parts if p and p.strip())


def is_valid_contact_number(value: str) -> bool:
    return bool(_CONTACT_RE.match(re.sub(r"\s", "", value)))


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value))
