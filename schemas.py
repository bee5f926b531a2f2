"""
Database Schemas

Barangay health domain models.
Each Pydantic model corresponds to a MongoDB collection; the collection name
is given in the class docstring. Server-managed fields (ids, timestamps,
author names, member counts, stock status) are not part of the input models.
"""

import datetime
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, field_validator

from helpers import invalid_tasks, is_valid_contact_number, is_valid_email

Gender = Literal["male", "female"]
CivilStatus = Literal["single", "married", "widowed", "separated", "divorced"]
MedType = Literal["tablet", "capsule", "syrup", "inhaler", "ointment", "injection", "drops"]
TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


def _check_contact(value: str) -> str:
    if value and not is_valid_contact_number(value):
        raise ValueError("Please enter a valid contact number")
    return value


def _check_email(value: str) -> str:
    if value and not is_valid_email(value):
        raise ValueError("Please enter a valid email address")
    return value


def _check_not_future(value: datetime.date) -> datetime.date:
    if value > datetime.date.today():
        raise ValueError("Date cannot be in the future")
    return value


def _check_household_number(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Household Number is required")
    return value


ContactNumber = Annotated[str, AfterValidator(_check_contact)]
Email = Annotated[str, AfterValidator(_check_email)]
PastDate = Annotated[datetime.date, AfterValidator(_check_not_future)]
HouseholdNumber = Annotated[str, AfterValidator(_check_household_number)]


# Accounts

class Account(BaseModel):
    """accounts"""
    email: Email = Field(..., description="Login email (unique)")
    role: Literal["admin", "bhw", "household"] = Field("household", description="admin | bhw | household")
    name: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    suffix: Optional[str] = None
    contact_number: Optional[ContactNumber] = None
    address: Optional[str] = None
    head_of_household: Optional[str] = None
    household_number: Optional[str] = Field(None, description="Household this account belongs to")
    profile_picture: Optional[str] = Field(None, description="Profile image URL")


class AccountUpdate(BaseModel):
    name: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    suffix: Optional[str] = None
    contact_number: Optional[ContactNumber] = None
    address: Optional[str] = None
    head_of_household: Optional[str] = None


class BHW(BaseModel):
    """accounts (role = bhw)"""
    email: Email
    name: str = Field(..., min_length=1)
    contact_number: Optional[ContactNumber] = None
    address: Optional[str] = None
    birth_date: PastDate
    gender: Gender
    status: CivilStatus = "single"
    barangay: Optional[str] = None
    profile_picture: Optional[str] = None


class BHWUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    contact_number: Optional[ContactNumber] = None
    address: Optional[str] = None
    birth_date: Optional[PastDate] = None
    gender: Optional[Gender] = None
    status: Optional[CivilStatus] = None
    barangay: Optional[str] = None


# Households and residents

class Household(BaseModel):
    """household"""
    household_number: HouseholdNumber = Field(..., description="Human-assigned number, e.g. BRGY7-16")
    address: str = Field(..., min_length=1)
    head_of_household: str = Field(..., min_length=1)
    head_of_household_contact_number: ContactNumber = Field(..., min_length=1)
    email: Optional[Email] = None
    total_family: int = Field(1, ge=1, description="Declared family size")


class HouseholdUpdate(BaseModel):
    household_number: Optional[HouseholdNumber] = None
    address: Optional[str] = Field(None, min_length=1)
    head_of_household: Optional[str] = Field(None, min_length=1)
    head_of_household_contact_number: Optional[ContactNumber] = None
    email: Optional[Email] = None
    total_family: Optional[int] = Field(None, ge=1)


class Resident(BaseModel):
    """resident"""
    household_id: Optional[str] = Field(None, description="Household number (not the document id)")
    family_no: Optional[str] = None
    id_no: Optional[str] = None
    first_name: str = Field(..., min_length=1)
    middle_name: Optional[str] = ""
    last_name: str = Field(..., min_length=1)
    suffix: Optional[str] = None
    birth_date: PastDate
    birth_place: str = Field(..., min_length=1)
    address: Optional[str] = None
    gender: Gender = "male"
    marginalized_group: List[str] = Field(default_factory=list, description="pwd, pregnant, IPs, 4ps, solo parent, life stage")
    contact_number: Optional[ContactNumber] = None
    email: Optional[Email] = None
    height: Optional[float] = Field(None, ge=50, le=300, description="cm")
    weight: Optional[float] = Field(None, ge=1, le=500, description="kg")
    blood_type: Optional[str] = None
    house_no: Optional[str] = None
    spouse_name: Optional[str] = None
    active_status: bool = True


class ResidentUpdate(BaseModel):
    household_id: Optional[str] = None
    family_no: Optional[str] = None
    id_no: Optional[str] = None
    first_name: Optional[str] = Field(None, min_length=1)
    middle_name: Optional[str] = None
    last_name: Optional[str] = Field(None, min_length=1)
    suffix: Optional[str] = None
    birth_date: Optional[PastDate] = None
    birth_place: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = None
    gender: Optional[Gender] = None
    marginalized_group: Optional[List[str]] = None
    contact_number: Optional[ContactNumber] = None
    email: Optional[Email] = None
    height: Optional[float] = Field(None, ge=50, le=300)
    weight: Optional[float] = Field(None, ge=1, le=500)
    blood_type: Optional[str] = None
    house_no: Optional[str] = None
    spouse_name: Optional[str] = None
    active_status: Optional[bool] = None


# Medicine

class Medicine(BaseModel):
    """medicine"""
    med_code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    med_type: MedType
    category: str = ""
    supplier: str = ""
    quantity: int = Field(..., ge=0, le=999999)
    exp_date: datetime.date


class MedicineUpdate(BaseModel):
    med_code: Optional[str] = Field(None, min_length=1)
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    med_type: Optional[MedType] = None
    category: Optional[str] = None
    supplier: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0, le=999999)
    exp_date: Optional[datetime.date] = None


class MedicineReleaseInput(BaseModel):
    amount: int = Field(..., gt=0, description="Units released")
    release_date: PastDate = Field(default_factory=datetime.date.today)
    remarks: str = ""
    barangay: str = Field(..., description="Barangay receiving the stock")

    @field_validator("barangay")
    @classmethod
    def barangay_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Barangay is required")
        return v.strip()


class RestockInput(BaseModel):
    amount: int = Field(..., gt=0, le=999999)


class MedicineRelease(BaseModel):
    """medicine_released (append-only)"""
    medicine_id: str
    medicine_code: str
    medicine_name: str
    amount: int
    release_date: datetime.date
    remarks: str = ""
    previous_quantity: int
    new_quantity: int
    barangay: str
    released_by: Optional[str] = None


# Announcements and messages

class Announcement(BaseModel):
    """announcements"""
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    date: datetime.date
    time: str = Field("08:00", pattern=TIME_PATTERN, description="HH:MM")
    important: bool = False


class AnnouncementUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = Field(None, min_length=1)
    date: Optional[datetime.date] = None
    time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    important: Optional[bool] = None


class Message(BaseModel):
    """messages"""
    receiver_id: str
    message: str = Field(..., min_length=1)
    attachment: Optional[str] = Field(None, description="Uploaded file URL")
    message_type: Optional[str] = Field(None, description="e.g. consultation")


class Broadcast(BaseModel):
    role: Literal["bhw", "household"]
    message: str = Field(..., min_length=1)
    attachment: Optional[str] = None


# Reports

class WeeklyReport(BaseModel):
    """reports"""
    task_list: List[str] = Field(..., min_length=1, description="Completed tasks, from the fixed task list")
    remarks: str = ""
    week_start: Optional[datetime.date] = Field(None, description="Any day of the week; normalised to Monday")

    @field_validator("task_list")
    @classmethod
    def known_tasks(cls, v: List[str]) -> List[str]:
        unknown = invalid_tasks(v)
        if unknown:
            raise ValueError(f"Unknown task(s): {unknown}")
        return list(dict.fromkeys(v))


class MonthlyReport(BaseModel):
    """monthly_reports"""
    bhw_id: str
    bhw_name: str
    report_date: str = Field(..., description="First day of the month, YYYY-MM-01")
    report_type: str = "monthly"
    contents: List[str] = Field(default_factory=list, description="Uploaded file URLs")
    barangay: str = ""
