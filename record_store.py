"""
Local record store for the institute dataset.

The whole dataset is a single JSON document kept in one storage slot. The
store loads it (backfilling fields that older documents lack), applies every
change through the named operations below, and writes the full document
back after each one. Soft references between records (``batchId``,
``teacherId``, ``studentId``) are never checked on write; lookups that miss
resolve to ``None`` or a display placeholder.
"""
import copy
import json
import logging
import re
import uuid
from datetime import date

from pydantic import ValidationError

from errors import ProtectedRecordError, RecordNotFound, StorageUnavailable, StoreValidationError
from schemas import (
    SCREENS,
    AttendanceSheet,
    BatchInput,
    InstituteProfile,
    PaymentInput,
    StudentAdmission,
    StudentUpdate,
    TeacherInput,
    UserInput,
    UserPermissions,
    UserRole,
    UserUpdate,
)

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = 'EDUNEXUS_ERP_DB'
ROOT_ADMIN_ID = 'U1'

STUDENT_ID_PREFIX = 'STU-'
RECEIPT_PREFIX = 'REC-'
TEACHER_ID_PREFIX = 'TCH-'
BATCH_ID_PREFIX = 'BCH-'
USER_ID_PREFIX = 'USR-'

ENTITY_COLLECTIONS = ('students', 'teachers', 'batches', 'payments', 'attendance')
TEMPLATE_ROLES = (UserRole.TEACHER.value, UserRole.STUDENT.value)
OPTIONAL_STUDENT_FIELDS = ('email', 'guardianName')

UNASSIGNED = 'Unassigned'
UNKNOWN = 'Unknown'

DEFAULT_SEED_PASSWORDS = {'ADMIN': 'admin123', 'TEACHER': 'teacher123'}

DEFAULT_INSTITUTE = {
    'name': 'EDUNEXUS ACADEMY',
    'tagline': 'Excellence in Education',
    'address': '123 Education Plaza, Knowledge Park, City-400001',
    'phone': '+91 99887 76655',
    'email': 'info@edunexus.com',
}

DEFAULT_META = {'lastReceiptNo': 1000, 'lastStudentId': 100}


def default_role_templates():
    return {
        'TEACHER': UserPermissions(dashboard=True, students=True, batches=True, attendance=True).to_document(),
        'STUDENT': UserPermissions(dashboard=True, attendance=True, fees=True).to_document(),
    }


def seed_document(seed_passwords=None):
    """Dataset used when nothing usable is stored yet."""
    passwords = {**DEFAULT_SEED_PASSWORDS, **(seed_passwords or {})}
    templates = default_role_templates()
    return {
        'students': [],
        'teachers': [
            {'id': 'T1', 'name': 'John Doe', 'email': 'john@edu.com', 'mobile': '9876543210',
             'subjects': ['Maths', 'Physics']},
        ],
        'batches': [
            {'id': 'B1', 'name': 'Morning Batch A', 'course': 'IIT Foundation', 'teacherId': 'T1',
             'timing': 'Mon, Wed, Fri | 08:00 - 10:00'},
        ],
        'payments': [],
        'attendance': [],
        'users': [
            {'id': ROOT_ADMIN_ID, 'username': 'admin', 'password': passwords['ADMIN'], 'role': 'ADMIN',
             'name': 'Main Admin', 'permissions': UserPermissions.full_access().to_document()},
            {'id': 'U2', 'username': 'teacher', 'password': passwords['TEACHER'], 'role': 'TEACHER',
             'name': 'Prof. John', 'permissions': copy.deepcopy(templates['TEACHER']), 'linkedId': 'T1'},
        ],
        'institute': dict(DEFAULT_INSTITUTE),
        'roleDefaults': templates,
        'meta': dict(DEFAULT_META),
    }


def _highest_suffix(records, field, prefix):
    highest = 0
    pattern = re.compile(rf'^{re.escape(prefix)}(\d+)$')
    for record in records:
        if not isinstance(record, dict):
            continue
        match = pattern.match(str(record.get(field, '')))
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def _fill_flags(permissions, template):
    for screen in SCREENS:
        if not isinstance(permissions.get(screen), bool):
            permissions[screen] = bool(template.get(screen, False))


def backfill_document(document, seed):
    """Fill fields missing from an older stored document, in place.

    Only absent or malformed fields are touched; everything else is left as
    it was stored. Returns the names of the fields that were filled.
    """
    filled = []

    for name in ENTITY_COLLECTIONS:
        if not isinstance(document.get(name), list):
            document[name] = []
            filled.append(name)

    institute = document.get('institute')
    if not isinstance(institute, dict):
        document['institute'] = copy.deepcopy(seed['institute'])
        filled.append('institute')
    else:
        for key, value in seed['institute'].items():
            if key not in institute:
                institute[key] = value
                filled.append(f'institute.{key}')

    # Role templates must be in place before users are given permissions.
    templates = document.get('roleDefaults')
    if not isinstance(templates, dict):
        document['roleDefaults'] = copy.deepcopy(seed['roleDefaults'])
        filled.append('roleDefaults')
    else:
        for role in TEMPLATE_ROLES:
            if not isinstance(templates.get(role), dict):
                templates[role] = copy.deepcopy(seed['roleDefaults'][role])
                filled.append(f'roleDefaults.{role}')
            else:
                _fill_flags(templates[role], seed['roleDefaults'][role])

    users = document.get('users')
    if not isinstance(users, list):
        document['users'] = copy.deepcopy(seed['users'])
        filled.append('users')
    else:
        for user in users:
            if not isinstance(user, dict):
                continue
            template = _role_template(document['roleDefaults'], user.get('role'))
            if not isinstance(user.get('permissions'), dict):
                user['permissions'] = template
                filled.append(f"users[{user.get('id')}].permissions")
            else:
                _fill_flags(user['permissions'], template)

    meta = document.get('meta')
    if not isinstance(meta, dict):
        meta = document['meta'] = {}
        filled.append('meta')
    # A lost counter restarts above every number already issued.
    counters = (
        ('lastStudentId', 'students', 'id', STUDENT_ID_PREFIX),
        ('lastReceiptNo', 'payments', 'receiptNo', RECEIPT_PREFIX),
    )
    for counter, collection, field, prefix in counters:
        value = meta.get(counter)
        if isinstance(value, bool) or not isinstance(value, int):
            meta[counter] = max(seed['meta'][counter], _highest_suffix(document[collection], field, prefix))
            filled.append(f'meta.{counter}')

    return filled


def _role_value(role):
    return role.value if isinstance(role, UserRole) else str(role or '')


def _role_template(templates, role):
    role = _role_value(role)
    if role == UserRole.ADMIN.value:
        return UserPermissions.full_access().to_document()
    template = templates.get(role)
    if not isinstance(template, dict):
        template = templates.get(UserRole.TEACHER.value) or default_role_templates()[UserRole.TEACHER.value]
    return UserPermissions.model_validate(template).to_document()


class RecordStore:
    """Owner of the in-memory dataset and its storage slot."""

    def __init__(self, slot, storage_key=DEFAULT_STORAGE_KEY, seed_passwords=None, today=date.today):
        self.slot = slot
        self.storage_key = storage_key
        self.seed_passwords = {**DEFAULT_SEED_PASSWORDS, **(seed_passwords or {})}
        self.today = today
        self.last_persist_error = None
        self.read_failed = False
        self._document = None

    @property
    def document(self):
        if self._document is None:
            self.load()
        return self._document

    def seed_document(self):
        return seed_document(self.seed_passwords)

    # Load / persist

    def load(self):
        """Read the stored document, degrading to the seed document on any problem.

        A slot that cannot be read never replaces a document already held in
        memory. On the first load it yields the seed document, and ``persist``
        refuses to write that seed over the unreadable slot.
        """
        try:
            raw = self.slot.read(self.storage_key)
        except StorageUnavailable as e:
            if self._document is not None:
                logger.warning("%s; keeping the document already loaded", e)
                return self._document
            logger.warning("%s; falling back to seed data", e)
            self.read_failed = True
            self._document = self.seed_document()
            return self._document
        self.read_failed = False
        self._document = self._decode(raw)
        return self._document

    def refresh(self):
        """Pick up writes made elsewhere, unless this process holds unsaved changes.

        While the last write failed, the in-memory document is the only copy
        of those changes: retry the write instead of reading over it.
        """
        if self._document is None or self.read_failed or not self.last_persist_error:
            return self.load()
        self.persist()
        return self._document

    def _decode(self, raw):
        if raw is None:
            logger.info("No stored document under '%s'; using seed data", self.storage_key)
            return self.seed_document()
        try:
            document = json.loads(raw)
        except ValueError:
            logger.warning("Stored document under '%s' is not valid JSON; using seed data", self.storage_key)
            return self.seed_document()
        if not isinstance(document, dict):
            logger.warning("Stored document under '%s' is not an object; using seed data", self.storage_key)
            return self.seed_document()

        filled = backfill_document(document, self.seed_document())
        if filled:
            logger.info("Backfilled missing fields: %s", ', '.join(filled))
        return document

    def serialize(self):
        return json.dumps(self.document)

    def persist(self):
        """Overwrite the storage slot with the whole document.

        Returns ``False`` when the write failed; the in-memory document keeps
        the change and ``last_persist_error`` describes the failure.
        """
        if self.read_failed:
            self.last_persist_error = (f"Storage slot '{self.storage_key}' could not be read; "
                                       "not overwriting it with seed data")
            logger.error("Persist skipped: %s", self.last_persist_error)
            return False
        try:
            self.slot.write(self.storage_key, self.serialize())
        except StorageUnavailable as e:
            logger.error("Persist failed: %s", e)
            self.last_persist_error = str(e)
            return False
        self.last_persist_error = None
        return True

    def export_snapshot(self):
        """Indented JSON of the whole document, for the backup download."""
        return json.dumps(self.document, indent=2)

    def backup_filename(self, day=None):
        day = day or self.today()
        return f"backup_{day.isoformat()}.json"

    # Identifiers

    def generate_student_id(self):
        meta = self.document['meta']
        meta['lastStudentId'] += 1
        self.persist()
        return f"{STUDENT_ID_PREFIX}{meta['lastStudentId']}"

    def generate_receipt_no(self):
        meta = self.document['meta']
        meta['lastReceiptNo'] += 1
        self.persist()
        return f"{RECEIPT_PREFIX}{meta['lastReceiptNo']}"

    def generate_teacher_id(self):
        return self._short_id(TEACHER_ID_PREFIX, 'teachers')

    def generate_batch_id(self):
        return self._short_id(BATCH_ID_PREFIX, 'batches')

    def _short_id(self, prefix, collection):
        taken = {record.get('id') for record in self.document[collection] if isinstance(record, dict)}
        while True:
            candidate = f"{prefix}{uuid.uuid4().hex[:6].upper()}"
            if candidate not in taken:
                return candidate

    @staticmethod
    def _random_id():
        return uuid.uuid4().hex[:9]

    # Helpers

    @staticmethod
    def _validate(model, payload):
        if isinstance(payload, model):
            return payload
        try:
            return model.model_validate(payload or {})
        except ValidationError as e:
            raise StoreValidationError.from_pydantic(e) from e

    def records(self, collection):
        return [record for record in self.document[collection] if isinstance(record, dict)]

    def _find(self, collection, record_id):
        if not record_id:
            return None
        for record in self.records(collection):
            if record.get('id') == record_id:
                return record
        return None

    def _require(self, collection, record_id):
        record = self._find(collection, record_id)
        if record is None:
            raise RecordNotFound(collection, record_id)
        return record

    def _today(self):
        return self.today().isoformat()

    # Students

    def admit_student(self, payload):
        admission = self._validate(StudentAdmission, payload)
        data = admission.to_document(exclude_none=True)
        student = {'id': self.generate_student_id(), **data}
        student.setdefault('admissionDate', self._today())
        self.document['students'].append(student)
        self.persist()
        return student

    def update_student(self, student_id, payload):
        """Apply an edit; ``id`` never changes and unset fields are kept."""
        student = self._require('students', student_id)
        changes = self._validate(StudentUpdate, payload).to_document(exclude_unset=True)
        for key, value in changes.items():
            if value is None:
                if key in OPTIONAL_STUDENT_FIELDS:
                    student.pop(key, None)
                continue
            student[key] = value
        self.persist()
        return student

    def toggle_student_status(self, student_id):
        student = self._require('students', student_id)
        student['status'] = 'Inactive' if student.get('status') == 'Active' else 'Active'
        self.persist()
        return student

    def find_student(self, student_id):
        return self._find('students', student_id)

    def search_students(self, query=''):
        students = self.records('students')
        needle = (query or '').strip().lower()
        if not needle:
            return students
        return [
            s for s in students
            if needle in str(s.get('name', '')).lower()
            or needle in str(s.get('id', '')).lower()
            or needle in str(s.get('mobile', ''))
        ]

    def fees_paid(self, student_id):
        return sum(float(p.get('amount') or 0) for p in self.payments_for(student_id))

    def fee_balance(self, student_id):
        student = self.find_student(student_id)
        if student is None:
            return 0.0
        return max(0.0, float(student.get('totalFees') or 0) - self.fees_paid(student_id))

    # Teachers

    def add_teacher(self, payload):
        teacher_input = self._validate(TeacherInput, payload)
        teacher = {'id': self.generate_teacher_id(), **teacher_input.to_document()}
        self.document['teachers'].append(teacher)
        self.persist()
        return teacher

    def update_teacher(self, teacher_id, payload):
        teacher = self._require('teachers', teacher_id)
        teacher.update(self._validate(TeacherInput, payload).to_document())
        self.persist()
        return teacher

    def find_teacher(self, teacher_id):
        return self._find('teachers', teacher_id)

    # Batches

    def add_batch(self, payload):
        batch_input = self._validate(BatchInput, payload)
        batch = {'id': self.generate_batch_id(), **batch_input.to_document()}
        self.document['batches'].append(batch)
        self.persist()
        return batch

    def update_batch(self, batch_id, payload):
        batch = self._require('batches', batch_id)
        batch.update(self._validate(BatchInput, payload).to_document())
        self.persist()
        return batch

    def delete_batch(self, batch_id):
        """Remove a batch. Students still pointing at it keep the dangling id."""
        batch = self._require('batches', batch_id)
        self.document['batches'].remove(batch)
        self.persist()
        return batch

    def find_batch(self, batch_id):
        return self._find('batches', batch_id)

    def batch_students(self, batch_id, active_only=False):
        return [
            s for s in self.records('students')
            if s.get('batchId') == batch_id and (not active_only or s.get('status') == 'Active')
        ]

    # Payments

    def record_payment(self, payload):
        payment_input = self._validate(PaymentInput, payload)
        data = payment_input.to_document(exclude_none=True)
        payment = {
            'id': self._random_id(),
            'receiptNo': self.generate_receipt_no(),
            'studentId': data['studentId'],
            'amount': data['amount'],
            'date': self._today(),
            'mode': data['mode'],
            'periodFrom': data['periodFrom'],
            'periodTo': data['periodTo'],
        }
        if 'remarks' in data:
            payment['remarks'] = data['remarks']
        self.document['payments'].append(payment)
        self.persist()
        return payment

    def find_payment(self, payment_id):
        return self._find('payments', payment_id)

    def payments_for(self, student_id):
        return [p for p in self.records('payments') if p.get('studentId') == student_id]

    # Attendance

    def mark_attendance(self, payload):
        """Append one record per entry.

        There is no natural key: marking the same batch and date again
        appends a second set of records.
        """
        sheet = self._validate(AttendanceSheet, payload)
        day = sheet.sheet_date.isoformat()
        records = [
            {
                'id': self._random_id(),
                'date': day,
                'batchId': sheet.batch_id,
                'studentId': entry.student_id,
                'status': entry.status,
            }
            for entry in sheet.entries
        ]
        self.document['attendance'].extend(records)
        self.persist()
        return records

    def attendance_history(self, batch_id=None, day=None):
        records = self.records('attendance')
        if batch_id:
            records = [r for r in records if r.get('batchId') == batch_id]
        if day:
            records = [r for r in records if r.get('date') == day]
        return records

    # Users and permissions

    def permission_template(self, role):
        """Fresh permission set for a draft user of ``role``; nothing is persisted."""
        return UserPermissions.model_validate(_role_template(self.document['roleDefaults'], role))

    def set_role_default(self, role, permissions):
        """Replace the template for TEACHER or STUDENT. Existing users are not touched."""
        role = _role_value(role)
        if role not in TEMPLATE_ROLES:
            raise StoreValidationError(f"role: No editable default template for role '{role}'")
        template = self._validate(UserPermissions, permissions)
        self.document['roleDefaults'][role] = template.to_document()
        self.persist()
        return self.document['roleDefaults'][role]

    def add_user(self, payload):
        user_input = self._validate(UserInput, payload)
        self._check_username(user_input.username)
        role = user_input.role
        if role == UserRole.ADMIN:
            permissions = UserPermissions.full_access()
        else:
            permissions = user_input.permissions or self.permission_template(role)
        user = {
            'id': self._short_id(USER_ID_PREFIX, 'users'),
            'username': user_input.username,
            'role': role.value,
            'name': user_input.name,
            'permissions': permissions.to_document(),
        }
        if user_input.password:
            user['password'] = user_input.password
        if user_input.linked_id:
            user['linkedId'] = user_input.linked_id
        self.document['users'].append(user)
        self.persist()
        return user

    def update_user(self, user_id, payload):
        user = self._require('users', user_id)
        changes = self._validate(UserUpdate, payload).to_document(exclude_unset=True, exclude_none=True)
        if user_id == ROOT_ADMIN_ID and changes.get('role', UserRole.ADMIN.value) != UserRole.ADMIN.value:
            raise ProtectedRecordError('The main administrator must keep the ADMIN role')
        if 'username' in changes:
            self._check_username(changes['username'], user_id)
        user.update(changes)
        if 'role' in changes and 'permissions' not in changes:
            user['permissions'] = self.permission_template(user['role']).to_document()
        if user.get('role') == UserRole.ADMIN.value:
            user['permissions'] = UserPermissions.full_access().to_document()
        self.persist()
        return user

    def delete_user(self, user_id):
        if user_id == ROOT_ADMIN_ID:
            raise ProtectedRecordError('The main administrator account cannot be deleted')
        user = self._require('users', user_id)
        self.document['users'].remove(user)
        self.persist()
        return user

    def find_user(self, user_id):
        return self._find('users', user_id)

    def find_user_by_username(self, username):
        for user in self.records('users'):
            if user.get('username') == username:
                return user
        return None

    def _check_username(self, username, user_id=None):
        existing = self.find_user_by_username(username)
        if existing is not None and existing.get('id') != user_id:
            raise StoreValidationError(f"username: '{username}' is already taken")

    def user_permissions(self, user):
        permissions = (user or {}).get('permissions')
        if not isinstance(permissions, dict):
            return self.permission_template((user or {}).get('role'))
        return UserPermissions.model_validate(permissions)

    # Institute

    def update_institute(self, payload):
        profile = self._validate(InstituteProfile, payload)
        self.document['institute'] = profile.to_document(exclude_none=True)
        self.persist()
        return self.document['institute']

    # Display lookups

    def teacher_name(self, teacher_id):
        teacher = self.find_teacher(teacher_id)
        return teacher.get('name', UNKNOWN) if teacher else UNASSIGNED

    def batch_name(self, batch_id):
        batch = self.find_batch(batch_id)
        return batch.get('name', UNKNOWN) if batch else UNASSIGNED

    def student_name(self, student_id):
        student = self.find_student(student_id)
        return student.get('name', UNKNOWN) if student else UNKNOWN

    def dashboard_stats(self):
        students = self.records('students')
        collected = sum(float(p.get('amount') or 0) for p in self.records('payments'))
        expected = sum(float(s.get('totalFees') or 0) for s in students)
        return {
            'total_students': len(students),
            'active_students': sum(1 for s in students if s.get('status') == 'Active'),
            'total_fees_collected': collected,
            'total_batches': len(self.records('batches')),
            'outstanding_fees': max(0.0, expected - collected),
        }
