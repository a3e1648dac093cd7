from flask_wtf import FlaskForm
from wtforms import (
    BooleanField,
    DateField,
    FloatField,
    PasswordField,
    RadioField,
    SelectField,
    SelectMultipleField,
    StringField,
    TextAreaField,
)
from wtforms import widgets
from wtforms.validators import DataRequired, NumberRange, Optional, Regexp, ValidationError

from schemas import SCREENS, WEEKDAYS, FreeTextTiming, PaymentMode, StructuredTiming, UserRole, parse_timing

TIME_FORMAT = Regexp(r'^([01]\d|2[0-3]):[0-5]\d$', message='Use 24-hour HH:MM')


def _optional_text(value):
    return (value or '').strip() or None


class LoginForm(FlaskForm):
    username = StringField('Username', validators=[DataRequired()])
    password = PasswordField('Password', validators=[DataRequired()])


class StudentForm(FlaskForm):
    name = StringField('Full Name', validators=[DataRequired()])
    mobile = StringField('Mobile', validators=[DataRequired()])
    email = StringField('Email', validators=[Optional()])
    guardian_name = StringField('Guardian Name', validators=[Optional()])
    course = StringField('Course', validators=[DataRequired()])
    batch_id = SelectField('Batch', choices=[], validate_choice=False)
    total_fees = FloatField('Total Fees', default=0, validators=[Optional(), NumberRange(min=0)])
    status = SelectField('Status', choices=[('Active', 'Active'), ('Inactive', 'Inactive')], default='Active')
    admission_date = DateField('Admission Date', validators=[Optional()])

    def to_payload(self):
        payload = {
            'name': self.name.data,
            'mobile': self.mobile.data,
            'email': _optional_text(self.email.data),
            'guardian_name': _optional_text(self.guardian_name.data),
            'course': self.course.data,
            'batch_id': self.batch_id.data or '',
            'total_fees': self.total_fees.data or 0,
            'status': self.status.data,
        }
        if self.admission_date.data:
            payload['admission_date'] = self.admission_date.data
        return payload


class TeacherForm(FlaskForm):
    name = StringField('Name', validators=[DataRequired()])
    email = StringField('Email', validators=[Optional()])
    mobile = StringField('Mobile', validators=[Optional()])
    subjects = StringField('Subjects (comma separated)', validators=[Optional()])

    def to_payload(self):
        return {
            'name': self.name.data,
            'email': self.email.data or '',
            'mobile': self.mobile.data or '',
            'subjects': self.subjects.data or '',
        }


class MultiCheckboxField(SelectMultipleField):
    widget = widgets.ListWidget(prefix_label=False)
    option_widget = widgets.CheckboxInput()


class BatchForm(FlaskForm):
    name = StringField('Batch Name', validators=[DataRequired()])
    course = StringField('Course', validators=[DataRequired()])
    teacher_id = SelectField('Teacher', choices=[], validate_choice=False)
    timing_mode = RadioField('Timing', choices=[('days', 'Pick days'), ('custom', 'Custom text')], default='days')
    days = MultiCheckboxField('Days', choices=[(day, day) for day in WEEKDAYS], default=['Mon'])
    start_time = StringField('Start', default='09:00', validators=[Optional(), TIME_FORMAT])
    end_time = StringField('End', default='10:00', validators=[Optional(), TIME_FORMAT])
    custom_timing = StringField('Custom Timing')

    def validate_custom_timing(self, field):
        if self.timing_mode.data == 'custom' and not (field.data or '').strip():
            raise ValidationError('Enter the timing text')

    def load_timing(self, timing):
        """Pre-fill the day picker or the free-text box from a stored timing string."""
        parsed = parse_timing(timing)
        if isinstance(parsed, StructuredTiming):
            self.timing_mode.data = 'days'
            self.days.data = list(parsed.days)
            self.start_time.data = parsed.start
            self.end_time.data = parsed.end
        else:
            self.timing_mode.data = 'custom'
            self.custom_timing.data = parsed.text

    def timing(self):
        if self.timing_mode.data == 'custom':
            return FreeTextTiming(text=self.custom_timing.data or '')
        days = [day for day in WEEKDAYS if day in (self.days.data or [])]
        return StructuredTiming(days=days, start=self.start_time.data or '09:00', end=self.end_time.data or '10:00')

    def to_payload(self):
        return {
            'name': self.name.data,
            'course': self.course.data,
            'teacher_id': self.teacher_id.data or '',
            'timing': self.timing(),
        }


class PaymentForm(FlaskForm):
    student_id = SelectField('Student', choices=[], validators=[DataRequired()], validate_choice=False)
    amount = FloatField('Amount', validators=[DataRequired(), NumberRange(min=0.01)])
    mode = SelectField('Payment Mode', choices=[(mode.value, mode.value) for mode in PaymentMode],
                       default=PaymentMode.CASH.value)
    period_from = StringField('Period From', validators=[Optional()])
    period_to = StringField('Period To', validators=[Optional()])
    remarks = TextAreaField('Remarks', validators=[Optional()])

    def to_payload(self):
        return {
            'student_id': self.student_id.data,
            'amount': self.amount.data,
            'mode': self.mode.data,
            'period_from': self.period_from.data or '',
            'period_to': self.period_to.data or '',
            'remarks': _optional_text(self.remarks.data),
        }


class AttendanceForm(FlaskForm):
    batch_id = SelectField('Batch', choices=[], validators=[DataRequired()], validate_choice=False)
    date = DateField('Date', validators=[DataRequired()])


class InstituteForm(FlaskForm):
    name = StringField('Institute Name', validators=[DataRequired()])
    tagline = StringField('Tagline', validators=[Optional()])
    address = TextAreaField('Address', validators=[Optional()])
    phone = StringField('Phone', validators=[Optional()])
    email = StringField('Email', validators=[Optional()])
    logo = StringField('Logo URL or data URI', validators=[Optional()])

    def to_payload(self):
        return {
            'name': self.name.data,
            'tagline': self.tagline.data or '',
            'address': self.address.data or '',
            'phone': self.phone.data or '',
            'email': self.email.data or '',
            'logo': _optional_text(self.logo.data),
        }


class PermissionsForm(FlaskForm):
    dashboard = BooleanField('Dashboard')
    students = BooleanField('Students')
    teachers = BooleanField('Teachers')
    batches = BooleanField('Batches')
    attendance = BooleanField('Attendance')
    fees = BooleanField('Fees')
    reports = BooleanField('Reports')
    settings = BooleanField('Settings')

    def permission_fields(self):
        return [getattr(self, screen) for screen in SCREENS]

    def permissions(self):
        return {screen: bool(getattr(self, screen).data) for screen in SCREENS}

    def load_permissions(self, permissions):
        for screen in SCREENS:
            getattr(self, screen).data = bool(getattr(permissions, screen, False))


class RoleDefaultForm(PermissionsForm):
    role = SelectField('Role', choices=[(UserRole.TEACHER.value, 'Teacher'), (UserRole.STUDENT.value, 'Student')])


class UserForm(PermissionsForm):
    username = StringField('Username', validators=[DataRequired()])
    password = PasswordField('Password', validators=[Optional()])
    name = StringField('Display Name', validators=[DataRequired()])
    role = SelectField('Role', choices=[(role.value, role.value.title()) for role in UserRole],
                       default=UserRole.TEACHER.value)
    linked_id = StringField('Linked Student/Teacher ID', validators=[Optional()])

    def to_payload(self):
        payload = {
            'username': self.username.data,
            'name': self.name.data,
            'role': self.role.data,
            'linked_id': _optional_text(self.linked_id.data),
            'permissions': self.permissions(),
        }
        if self.password.data:
            payload['password'] = self.password.data
        return payload
