"""
Typed input records for the EduNexus record store.

Every store mutation takes one of these models, so form payloads are checked
again at the store boundary instead of being merged into the document as
loose key/value pairs. Aliases follow the persisted camelCase layout, and
``to_document()`` produces exactly the JSON shape that gets stored.
"""
import re
from datetime import date
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

SCREENS = ('dashboard', 'students', 'teachers', 'batches', 'attendance', 'fees', 'reports', 'settings')
WEEKDAYS = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')

Weekday = Literal['Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun']
StudentStatus = Literal['Active', 'Inactive']
AttendanceStatus = Literal['Present', 'Absent']

CLOCK_TIME = r'^([01]\d|2[0-3]):[0-5]\d$'


class UserRole(str, Enum):
    ADMIN = 'ADMIN'
    TEACHER = 'TEACHER'
    STUDENT = 'STUDENT'


class PaymentMode(str, Enum):
    CASH = 'CASH'
    UPI = 'UPI/ONLINE'
    CHEQUE = 'CHEQUE'


class StoreModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    def to_document(self, **kwargs):
        """Dump using the persisted field names."""
        return self.model_dump(mode='json', by_alias=True, **kwargs)


def _required(value, label):
    if value is None or not str(value).strip():
        raise ValueError(f'{label} cannot be empty')
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Permissions

class UserPermissions(StoreModel):
    dashboard: bool = False
    students: bool = False
    teachers: bool = False
    batches: bool = False
    attendance: bool = False
    fees: bool = False
    reports: bool = False
    settings: bool = False

    @classmethod
    def full_access(cls):
        return cls(**{screen: True for screen in SCREENS})

    def allowed_screens(self):
        return [screen for screen in SCREENS if getattr(self, screen)]


# Institute profile

class InstituteProfile(StoreModel):
    name: str
    tagline: str = ''
    address: str = ''
    phone: str = ''
    email: str = ''
    logo: Optional[str] = Field(None, description="Data URI or URL of the institute logo")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        return _required(v, 'Institute name')

    @field_validator('logo', mode='before')
    @classmethod
    def validate_logo(cls, v):
        return _blank_to_none(v)


# Students

class StudentAdmission(StoreModel):
    name: str
    mobile: str
    email: Optional[str] = None
    guardian_name: Optional[str] = Field(None, alias='guardianName')
    course: str
    batch_id: str = Field('', alias='batchId')
    total_fees: float = Field(0.0, alias='totalFees', ge=0)
    status: StudentStatus = 'Active'
    admission_date: Optional[date] = Field(None, alias='admissionDate')

    @field_validator('name', 'mobile', 'course')
    @classmethod
    def validate_required(cls, v, info):
        return _required(v, info.field_name.replace('_', ' ').capitalize())

    @field_validator('email', 'guardian_name', 'admission_date', mode='before')
    @classmethod
    def validate_optional(cls, v):
        return _blank_to_none(v)


class StudentUpdate(StoreModel):
    """Partial edit; only the fields that were explicitly set are applied."""

    name: Optional[str] = None
    mobile: Optional[str] = None
    email: Optional[str] = None
    guardian_name: Optional[str] = Field(None, alias='guardianName')
    course: Optional[str] = None
    batch_id: Optional[str] = Field(None, alias='batchId')
    total_fees: Optional[float] = Field(None, alias='totalFees', ge=0)
    status: Optional[StudentStatus] = None
    admission_date: Optional[date] = Field(None, alias='admissionDate')

    @field_validator('name', 'mobile', 'course')
    @classmethod
    def validate_required(cls, v, info):
        if v is None:
            return v
        return _required(v, info.field_name.capitalize())

    @field_validator('email', 'guardian_name', 'admission_date', mode='before')
    @classmethod
    def validate_optional(cls, v):
        return _blank_to_none(v)


# Teachers

class TeacherInput(StoreModel):
    name: str
    email: str = ''
    mobile: str = ''
    subjects: List[str] = Field(default_factory=list)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        return _required(v, 'Teacher name')

    @field_validator('subjects', mode='before')
    @classmethod
    def split_subjects(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(',')
        return [str(subject).strip() for subject in v if str(subject).strip()]


# Batch timing

class StructuredTiming(StoreModel):
    kind: Literal['structured'] = 'structured'
    days: List[Weekday] = Field(default_factory=list)
    start: str = Field('09:00', pattern=CLOCK_TIME)
    end: str = Field('10:00', pattern=CLOCK_TIME)


class FreeTextTiming(StoreModel):
    kind: Literal['free_text'] = 'free_text'
    text: str = ''


BatchTiming = Union[StructuredTiming, FreeTextTiming]

TIMING_PATTERN = re.compile(
    r'^(?P<days>[A-Za-z]{3}(?:\s*,\s*[A-Za-z]{3})*)\s*\|\s*(?P<start>\d{2}:\d{2})\s*-\s*(?P<end>\d{2}:\d{2})$'
)
NO_DAYS_SELECTED = 'No days selected'


def parse_timing(value):
    """Read a stored timing string back into a structured or free-text timing.

    Only a string that is entirely ``Day, Day | HH:MM - HH:MM`` with known
    day names and valid clock times is structured. Free text that merely
    contains ``|`` and ``-`` stays free text.
    """
    text = (value or '').strip()
    match = TIMING_PATTERN.match(text)
    if not match:
        return FreeTextTiming(text=text)
    days = [day.strip() for day in match.group('days').split(',')]
    if any(day not in WEEKDAYS for day in days):
        return FreeTextTiming(text=text)
    try:
        return StructuredTiming(days=days, start=match.group('start'), end=match.group('end'))
    except ValidationError:
        return FreeTextTiming(text=text)


def format_timing(timing):
    if isinstance(timing, FreeTextTiming):
        return timing.text
    if not timing.days:
        return NO_DAYS_SELECTED
    return f"{', '.join(timing.days)} | {timing.start} - {timing.end}"


# Batches

class BatchInput(StoreModel):
    name: str
    course: str
    teacher_id: str = Field('', alias='teacherId')
    timing: str = ''

    @field_validator('name', 'course')
    @classmethod
    def validate_required(cls, v, info):
        return _required(v, f'Batch {info.field_name}')

    @field_validator('timing', mode='before')
    @classmethod
    def serialise_timing(cls, v):
        if isinstance(v, (StructuredTiming, FreeTextTiming)):
            return format_timing(v)
        return v or ''

    @property
    def parsed_timing(self):
        return parse_timing(self.timing)


# Payments

class PaymentInput(StoreModel):
    student_id: str = Field(..., alias='studentId')
    amount: float = Field(..., gt=0)
    mode: PaymentMode = PaymentMode.CASH
    period_from: str = Field('', alias='periodFrom')
    period_to: str = Field('', alias='periodTo')
    remarks: Optional[str] = None

    @field_validator('student_id')
    @classmethod
    def validate_student(cls, v):
        return _required(v, 'Student')

    @field_validator('remarks', mode='before')
    @classmethod
    def validate_remarks(cls, v):
        return _blank_to_none(v)


# Attendance

class AttendanceEntry(StoreModel):
    student_id: str = Field(..., alias='studentId')
    status: AttendanceStatus = 'Present'


class AttendanceSheet(StoreModel):
    sheet_date: date = Field(..., alias='date')
    batch_id: str = Field(..., alias='batchId')
    entries: List[AttendanceEntry] = Field(default_factory=list)

    @field_validator('batch_id')
    @classmethod
    def validate_batch(cls, v):
        return _required(v, 'Batch')


# Users

class UserInput(StoreModel):
    username: str
    password: Optional[str] = None
    role: UserRole = UserRole.TEACHER
    name: str
    permissions: Optional[UserPermissions] = None
    linked_id: Optional[str] = Field(None, alias='linkedId')

    @field_validator('username', 'name')
    @classmethod
    def validate_required(cls, v, info):
        return _required(v, info.field_name.capitalize())

    @field_validator('password', 'linked_id', mode='before')
    @classmethod
    def validate_optional(cls, v):
        return _blank_to_none(v)


class UserUpdate(StoreModel):
    username: Optional[str] = None
    password: Optional[str] = None
    role: Optional[UserRole] = None
    name: Optional[str] = None
    permissions: Optional[UserPermissions] = None
    linked_id: Optional[str] = Field(None, alias='linkedId')

    @field_validator('username', 'name')
    @classmethod
    def validate_required(cls, v, info):
        if v is None:
            return v
        return _required(v, info.field_name.capitalize())
