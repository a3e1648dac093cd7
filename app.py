from datetime import date
import logging
import os

from dotenv import load_dotenv
from flask import (
    Blueprint,
    Flask,
    Response,
    abort,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    session,
    url_for,
)
from flask_wtf.csrf import CSRFProtect, generate_csrf

from app_models import SqlStorageSlot, db, ensure_storage_schema
from auth import LOGIN_FAILED_MESSAGE, PlaintextAuthenticator, current_user, login_required, permission_required
from config import CONFIGS, DevelopmentConfig
from errors import StoreError
from exports import build_export
from formatters import comma_int, format_currency, number_to_words
from forms import (
    AttendanceForm,
    BatchForm,
    InstituteForm,
    LoginForm,
    PaymentForm,
    RoleDefaultForm,
    StudentForm,
    TeacherForm,
    UserForm,
)
from health import health_bp
from record_store import ROOT_ADMIN_ID, UNASSIGNED, UNKNOWN, RecordStore
from schemas import SCREENS, UserRole, format_timing, parse_timing
from security import init_security

# Load environment variables from .env file
load_dotenv()

SOFTWARE_NAME = 'EduNexus Institute Manager'

csrf = CSRFProtect()
bp = Blueprint('main', __name__)

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """Build the Flask app and the record store it owns."""
    config_name = config_name or os.environ.get('APP_ENV', 'development')
    config_class = CONFIGS.get(config_name, DevelopmentConfig)

    app = Flask(
        __name__,
        template_folder=os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates'),
    )
    app.config.from_object(config_class)
    config_class.init_app(app)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    db.init_app(app)
    csrf.init_app(app)
    init_security(app)

    store = RecordStore(
        SqlStorageSlot(),
        storage_key=app.config['STORAGE_KEY'],
        seed_passwords={
            UserRole.ADMIN.value: app.config['DEFAULT_ADMIN_PASSWORD'],
            UserRole.TEACHER.value: app.config['DEFAULT_TEACHER_PASSWORD'],
        },
    )
    app.extensions['record_store'] = store
    app.extensions['authenticator'] = PlaintextAuthenticator(store)

    app.add_template_filter(format_currency, 'currency')
    app.add_template_filter(number_to_words, 'words')
    app.add_template_filter(comma_int, 'comma_int')

    app.register_blueprint(bp)
    app.register_blueprint(health_bp)

    with app.app_context():
        initialize_storage(store)

    logger.info("Created %s app (config=%s, storage key=%s)", SOFTWARE_NAME, config_name, store.storage_key)
    return app


def initialize_storage(store):
    """Create the storage table and write the seed or backfilled document once."""
    ensure_storage_schema()
    store.load()
    if store.read_failed:
        logger.warning("Storage slot could not be read; leaving it untouched")
        return
    if not store.persist():
        logger.warning("Initial document could not be written; continuing with in-memory data")


def get_store():
    return current_app.extensions['record_store']


def _saved(message):
    """Flash a success message, plus a warning if the write did not reach storage."""
    flash(message, 'success')
    store = get_store()
    if store.last_persist_error:
        flash('Warning: the change could not be saved to storage and may be lost. '
              'Download a backup before continuing.', 'warning')


def _batch_choices(store, blank_label='Unassigned'):
    return [('', blank_label)] + [
        (b['id'], b.get('name', UNKNOWN)) for b in store.records('batches') if b.get('id')
    ]


def _teacher_choices(store):
    return [('', UNASSIGNED)] + [
        (t['id'], t.get('name', UNKNOWN)) for t in store.records('teachers') if t.get('id')
    ]


def _landing_endpoint():
    permissions = get_store().user_permissions(current_user())
    allowed = permissions.allowed_screens()
    return f"main.{allowed[0]}" if allowed else 'main.logout'


@bp.before_app_request
def load_record_store():
    # Pick up writes made by other workers since the last request
    if request.endpoint and request.endpoint != 'static':
        get_store().refresh()


@bp.app_context_processor
def inject_globals():
    store = get_store()
    user = current_user() if session.get('logged_in') else None
    return {
        'csrf_token': generate_csrf,
        'institute': store.document['institute'],
        'software_name': SOFTWARE_NAME,
        'user': user,
        'permissions': store.user_permissions(user) if user else None,
        'screens': SCREENS,
        'today': date.today(),
    }


# Authentication routes
@bp.route('/login', methods=['GET', 'POST'])
def login():
    if session.get('logged_in') and current_user():
        return redirect(url_for(_landing_endpoint()))

    form = LoginForm()
    if form.validate_on_submit():
        authenticator = current_app.extensions['authenticator']
        user = authenticator.verify(form.username.data, form.password.data)
        if user:
            session.clear()
            session['logged_in'] = True
            session['user_id'] = user['id']
            current_app.logger.info("User '%s' logged in", user['username'])
            flash(f"Welcome, {user.get('name', user['username'])}!", 'success')
            return redirect(url_for(_landing_endpoint()))
        current_app.logger.info("Failed login for username '%s'", form.username.data)
        flash(LOGIN_FAILED_MESSAGE, 'error')

    return render_template('login.html', form=form)


@bp.route('/logout')
def logout():
    session.clear()
    flash('You have been logged out successfully!', 'info')
    return redirect(url_for('main.login'))


@bp.route('/')
@login_required
def index():
    return redirect(url_for(_landing_endpoint()))


@bp.route('/dashboard')
@permission_required('dashboard')
def dashboard():
    store = get_store()
    recent_payments = list(reversed(store.records('payments')[-5:]))
    return render_template(
        'dashboard.html',
        stats=store.dashboard_stats(),
        recent_payments=recent_payments,
        batches=store.records('batches'),
        store=store,
    )


# Students
@bp.route('/students')
@permission_required('students')
def students():
    store = get_store()
    search_query = request.args.get('search', '').strip()
    return render_template(
        'students.html',
        students=store.search_students(search_query),
        search_query=search_query,
        store=store,
    )


@bp.route('/students/new', methods=['GET', 'POST'])
@permission_required('students')
def add_student():
    store = get_store()
    form = StudentForm()
    form.batch_id.choices = _batch_choices(store)

    if form.validate_on_submit():
        try:
            student = store.admit_student(form.to_payload())
            _saved(f"Student admitted with ID: {student['id']}")
            return redirect(url_for('main.students'))
        except StoreError as e:
            flash(f'Error adding student: {str(e)}', 'error')

    return render_template('student_form.html', form=form, student=None)


@bp.route('/students/<student_id>/edit', methods=['GET', 'POST'])
@permission_required('students')
def edit_student(student_id):
    store = get_store()
    student = store.find_student(student_id)
    if student is None:
        flash('Student not found!', 'error')
        return redirect(url_for('main.students'))

    form = StudentForm()
    form.batch_id.choices = _batch_choices(store)
    if request.method == 'GET':
        form.name.data = student.get('name')
        form.mobile.data = student.get('mobile')
        form.email.data = student.get('email')
        form.guardian_name.data = student.get('guardianName')
        form.course.data = student.get('course')
        form.batch_id.data = student.get('batchId', '')
        form.total_fees.data = student.get('totalFees', 0)
        form.status.data = student.get('status', 'Active')
        form.admission_date.data = _parse_day(student.get('admissionDate'))

    if form.validate_on_submit():
        try:
            store.update_student(student_id, form.to_payload())
            _saved('Student details updated successfully!')
            return redirect(url_for('main.students'))
        except StoreError as e:
            flash(f'Error updating student: {str(e)}', 'error')

    return render_template('student_form.html', form=form, student=student)


@bp.route('/students/<student_id>/toggle', methods=['POST'])
@permission_required('students')
def toggle_student(student_id):
    try:
        student = get_store().toggle_student_status(student_id)
        _saved(f"{student.get('name', UNKNOWN)} is now {student['status']}.")
    except StoreError as e:
        flash(str(e), 'error')
    return redirect(url_for('main.students'))


# Teachers
@bp.route('/teachers')
@permission_required('teachers')
def teachers():
    return render_template('teachers.html', teachers=get_store().records('teachers'))


@bp.route('/teachers/new', methods=['GET', 'POST'])
@bp.route('/teachers/<teacher_id>/edit', methods=['GET', 'POST'])
@permission_required('teachers')
def edit_teacher(teacher_id=None):
    store = get_store()
    teacher = store.find_teacher(teacher_id) if teacher_id else None
    if teacher_id and teacher is None:
        flash('Teacher not found!', 'error')
        return redirect(url_for('main.teachers'))

    form = TeacherForm()
    if request.method == 'GET' and teacher:
        form.name.data = teacher.get('name')
        form.email.data = teacher.get('email')
        form.mobile.data = teacher.get('mobile')
        form.subjects.data = ', '.join(teacher.get('subjects', []))

    if form.validate_on_submit():
        try:
            if teacher:
                store.update_teacher(teacher_id, form.to_payload())
                _saved('Teacher updated successfully!')
            else:
                created = store.add_teacher(form.to_payload())
                _saved(f"Teacher added with ID: {created['id']}")
            return redirect(url_for('main.teachers'))
        except StoreError as e:
            flash(f'Error saving teacher: {str(e)}', 'error')

    return render_template('teacher_form.html', form=form, teacher=teacher)


# Batches
@bp.route('/batches')
@permission_required('batches')
def batches():
    store = get_store()
    return render_template('batches.html', batches=store.records('batches'), store=store)


@bp.route('/batches/new', methods=['GET', 'POST'])
@bp.route('/batches/<batch_id>/edit', methods=['GET', 'POST'])
@permission_required('batches')
def edit_batch(batch_id=None):
    store = get_store()
    batch = store.find_batch(batch_id) if batch_id else None
    if batch_id and batch is None:
        flash('Batch not found!', 'error')
        return redirect(url_for('main.batches'))

    form = BatchForm()
    form.teacher_id.choices = _teacher_choices(store)
    if request.method == 'GET' and batch:
        form.name.data = batch.get('name')
        form.course.data = batch.get('course')
        form.teacher_id.data = batch.get('teacherId', '')
        form.load_timing(batch.get('timing'))

    if form.validate_on_submit():
        try:
            if batch:
                store.update_batch(batch_id, form.to_payload())
                _saved('Batch updated successfully!')
            else:
                created = store.add_batch(form.to_payload())
                _saved(f"Batch created with ID: {created['id']}")
            return redirect(url_for('main.batches'))
        except StoreError as e:
            flash(f'Error saving batch: {str(e)}', 'error')

    return render_template('batch_form.html', form=form, batch=batch)


@bp.route('/batches/<batch_id>/delete', methods=['POST'])
@permission_required('batches')
def delete_batch(batch_id):
    try:
        batch = get_store().delete_batch(batch_id)
        _saved(f"Batch '{batch.get('name', batch_id)}' deleted.")
    except StoreError as e:
        flash(str(e), 'error')
    return redirect(url_for('main.batches'))


# Fees
@bp.route('/fees', methods=['GET', 'POST'])
@permission_required('fees')
def fees():
    store = get_store()
    form = PaymentForm()
    form.student_id.choices = [('', 'Select student')] + [
        (s['id'], f"{s.get('name', UNKNOWN)} ({s['id']})") for s in store.records('students') if s.get('id')
    ]
    if request.method == 'GET' and request.args.get('student'):
        form.student_id.data = request.args['student']

    if form.validate_on_submit():
        try:
            payment = store.record_payment(form.to_payload())
            _saved(f"Payment recorded. Receipt {payment['receiptNo']}")
            return redirect(url_for('main.receipt', payment_id=payment['id']))
        except StoreError as e:
            flash(f'Error recording payment: {str(e)}', 'error')

    payments = list(reversed(store.records('payments')))
    return render_template('fees.html', form=form, payments=payments, store=store)


@bp.route('/fees/<payment_id>/receipt')
@permission_required('fees')
def receipt(payment_id):
    store = get_store()
    payment = store.find_payment(payment_id)
    if payment is None:
        flash('Payment not found!', 'error')
        return redirect(url_for('main.fees'))
    student = store.find_student(payment.get('studentId'))
    return render_template('receipt.html', payment=payment, student=student)


# Attendance
@bp.route('/attendance', methods=['GET', 'POST'])
@permission_required('attendance')
def attendance():
    store = get_store()
    form = AttendanceForm()
    form.batch_id.choices = _batch_choices(store, blank_label='Select batch')

    if request.method == 'GET':
        form.batch_id.data = request.args.get('batch_id', '')
        form.date.data = _parse_day(request.args.get('date')) or date.today()

    if form.validate_on_submit():
        roster = store.batch_students(form.batch_id.data, active_only=True)
        entries = [
            {'student_id': s['id'], 'status': request.form.get(f"status_{s['id']}", 'Present')}
            for s in roster
        ]
        try:
            records = store.mark_attendance(
                {'date': form.date.data, 'batch_id': form.batch_id.data, 'entries': entries}
            )
            _saved(f'Attendance saved for {len(records)} students.')
            return redirect(url_for('main.attendance', batch_id=form.batch_id.data,
                                    date=form.date.data.isoformat()))
        except StoreError as e:
            flash(f'Error saving attendance: {str(e)}', 'error')

    batch_id = form.batch_id.data
    roster = store.batch_students(batch_id, active_only=True) if batch_id else []
    history = list(reversed(store.attendance_history(batch_id=batch_id or None)))[:50]
    return render_template('attendance.html', form=form, roster=roster, history=history, store=store)


# Reports
@bp.route('/reports')
@permission_required('reports')
def reports():
    store = get_store()
    return render_template('reports.html', stats=store.dashboard_stats(), document=store.document)


@bp.route('/reports/<name>.csv')
@permission_required('reports')
def download_report(name):
    export = build_export(get_store(), name)
    if export is None:
        abort(404)
    filename, content = export
    return Response(
        content,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={filename}'},
    )


# Settings
@bp.route('/settings', methods=['GET', 'POST'])
@permission_required('settings')
def settings():
    store = get_store()
    form = InstituteForm()
    if request.method == 'GET':
        institute = store.document['institute']
        form.name.data = institute.get('name')
        form.tagline.data = institute.get('tagline')
        form.address.data = institute.get('address')
        form.phone.data = institute.get('phone')
        form.email.data = institute.get('email')
        form.logo.data = institute.get('logo')

    if form.validate_on_submit():
        try:
            store.update_institute(form.to_payload())
            _saved('Institute profile updated successfully!')
            return redirect(url_for('main.settings'))
        except StoreError as e:
            flash(f'Error updating institute profile: {str(e)}', 'error')

    role_form = RoleDefaultForm(prefix='defaults')
    role = request.args.get('role', UserRole.TEACHER.value)
    role_form.role.data = role
    role_form.load_permissions(store.permission_template(role))

    return render_template(
        'settings.html',
        form=form,
        role_form=role_form,
        users=store.records('users'),
        root_admin_id=ROOT_ADMIN_ID,
    )


@bp.route('/settings/role-defaults', methods=['POST'])
@permission_required('settings')
def save_role_defaults():
    role_form = RoleDefaultForm(prefix='defaults')
    if role_form.validate_on_submit():
        try:
            get_store().set_role_default(role_form.role.data, role_form.permissions())
            _saved(f'Default permissions for {role_form.role.data.title()} accounts updated.')
        except StoreError as e:
            flash(str(e), 'error')
    else:
        flash('Invalid role selection.', 'error')
    return redirect(url_for('main.settings', role=role_form.role.data))


@bp.route('/settings/role-template/<role>')
@permission_required('settings')
def role_template(role):
    """Permission checklist to pre-fill a draft user of ``role``."""
    try:
        role = UserRole(role.upper())
    except ValueError:
        abort(404)
    return jsonify(get_store().permission_template(role).to_document())


@bp.route('/settings/users/new', methods=['GET', 'POST'])
@bp.route('/settings/users/<user_id>/edit', methods=['GET', 'POST'])
@permission_required('settings')
def edit_user(user_id=None):
    store = get_store()
    account = store.find_user(user_id) if user_id else None
    if user_id and account is None:
        flash('User not found!', 'error')
        return redirect(url_for('main.settings'))

    form = UserForm()
    if request.method == 'GET':
        if account:
            form.username.data = account.get('username')
            form.name.data = account.get('name')
            form.role.data = account.get('role')
            form.linked_id.data = account.get('linkedId')
            form.load_permissions(store.user_permissions(account))
        else:
            role = request.args.get('role', UserRole.TEACHER.value)
            form.role.data = role
            form.load_permissions(store.permission_template(role))

    if form.validate_on_submit():
        try:
            if account:
                store.update_user(user_id, form.to_payload())
                _saved('User updated successfully!')
            else:
                created = store.add_user(form.to_payload())
                _saved(f"User '{created['username']}' created.")
            return redirect(url_for('main.settings'))
        except StoreError as e:
            flash(f'Error saving user: {str(e)}', 'error')

    return render_template('user_form.html', form=form, account=account, root_admin_id=ROOT_ADMIN_ID)


@bp.route('/settings/users/<user_id>/delete', methods=['POST'])
@permission_required('settings')
def delete_user(user_id):
    if user_id == session.get('user_id'):
        flash('You cannot delete the account you are logged in with.', 'error')
        return redirect(url_for('main.settings'))
    try:
        removed = get_store().delete_user(user_id)
        _saved(f"User '{removed.get('username', user_id)}' deleted.")
    except StoreError as e:
        flash(str(e), 'error')
    return redirect(url_for('main.settings'))


@bp.route('/settings/backup')
@permission_required('settings')
def backup():
    store = get_store()
    current_app.logger.info("Backup exported by user %s", session.get('user_id'))
    return Response(
        store.export_snapshot(),
        mimetype='application/json',
        headers={'Content-Disposition': f'attachment; filename={store.backup_filename()}'},
    )


def _parse_day(value):
    if not value:
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        return None


@bp.app_template_filter('timing')
def timing_filter(value):
    """Render a stored batch timing string."""
    return format_timing(parse_timing(value))


if __name__ == '__main__':
    app = create_app()

    # This block is for local development only.
    # In production, a WSGI server like Gunicorn is used.
    print("\n" + "=" * 50)
    print("Starting local development server...")
    print("Access the system at: http://127.0.0.1:5001")
    print("=" * 50 + "\n")
    app.run(host='127.0.0.1', port=5001, debug=True)
