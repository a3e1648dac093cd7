import copy
import json
import re
from datetime import date

import pytest

from conftest import TODAY, BrokenSlot, FlakySlot, MemorySlot, make_store
from errors import ProtectedRecordError, RecordNotFound, StoreValidationError
from record_store import ROOT_ADMIN_ID, RecordStore, backfill_document, seed_document
from schemas import SCREENS, UserPermissions


def admit(store, name='Asha Verma', **extra):
    payload = {'name': name, 'mobile': '9000000001', 'course': 'JEE', 'batchId': 'B1', 'totalFees': 5000}
    payload.update(extra)
    return store.admit_student(payload)


# Load

def test_empty_slot_loads_seed_document(store):
    doc = store.document
    assert [u['id'] for u in doc['users']] == ['U1', 'U2']
    assert doc['users'][0]['role'] == 'ADMIN'
    assert doc['users'][0]['permissions'] == UserPermissions.full_access().to_document()
    assert doc['teachers'][0]['id'] == 'T1'
    assert doc['batches'][0]['id'] == 'B1'
    assert doc['students'] == [] and doc['payments'] == [] and doc['attendance'] == []
    assert doc['meta'] == {'lastReceiptNo': 1000, 'lastStudentId': 100}
    assert doc['institute']['name'] == 'EDUNEXUS ACADEMY'


@pytest.mark.parametrize('raw', ['{not json', '[]', '"text"'])
def test_unusable_stored_document_falls_back_to_seed(raw):
    store, _ = make_store(raw)
    assert store.document['meta'] == {'lastReceiptNo': 1000, 'lastStudentId': 100}
    assert len(store.document['users']) == 2


def test_unreadable_slot_falls_back_to_seed():
    store = RecordStore(BrokenSlot())
    assert store.document['users'][0]['username'] == 'admin'


def test_persisted_document_round_trips(store, slot):
    admit(store)
    store.record_payment({'studentId': 'STU-101', 'amount': 1500})
    reloaded = RecordStore(slot)
    assert reloaded.document == store.document
    assert json.loads(store.serialize()) == slot.stored()


def test_export_snapshot_is_the_whole_document(store):
    admit(store)
    assert json.loads(store.export_snapshot()) == store.document


def test_backup_filename(store):
    assert store.backup_filename() == 'backup_2024-05-01.json'
    assert store.backup_filename(date(2023, 12, 31)) == 'backup_2023-12-31.json'


# Backfill

def legacy_document():
    return {
        'students': [{'id': 'STU-101', 'name': 'Old Student', 'mobile': '1', 'course': 'X',
                      'batchId': 'B1', 'totalFees': 100, 'status': 'Active', 'admissionDate': '2023-01-01'}],
        'teachers': [],
        'batches': [],
        'payments': [{'id': 'p1', 'receiptNo': 'REC-1007', 'studentId': 'STU-101', 'amount': 50,
                      'date': '2023-01-02', 'mode': 'CASH', 'periodFrom': '', 'periodTo': ''}],
        'attendance': [],
        'meta': {'lastReceiptNo': 1007, 'lastStudentId': 101},
    }


def test_backfill_fills_missing_sections_and_keeps_the_rest():
    original = legacy_document()
    store, _ = make_store(original)
    doc = store.document

    assert doc['institute']['name'] == 'EDUNEXUS ACADEMY'
    assert set(doc['roleDefaults']) == {'TEACHER', 'STUDENT'}
    assert [u['id'] for u in doc['users']] == ['U1', 'U2']
    for key in ('students', 'teachers', 'batches', 'payments', 'attendance', 'meta'):
        assert doc[key] == original[key]


def test_backfill_reports_what_it_filled():
    document = legacy_document()
    filled = backfill_document(document, seed_document())
    assert {'institute', 'roleDefaults', 'users'} <= set(filled)
    assert backfill_document(document, seed_document()) == []


def test_backfill_completes_partial_institute():
    document = legacy_document()
    document['institute'] = {'name': 'My Coaching'}
    store, _ = make_store(document)
    institute = store.document['institute']
    assert institute['name'] == 'My Coaching'
    assert institute['phone'] == '+91 99887 76655'


def test_users_without_permissions_get_their_role_template():
    document = legacy_document()
    document['roleDefaults'] = {
        'TEACHER': UserPermissions(dashboard=True, reports=True).to_document(),
        'STUDENT': UserPermissions(fees=True).to_document(),
    }
    document['users'] = [
        {'id': 'U1', 'username': 'admin', 'password': 'x', 'role': 'ADMIN', 'name': 'A'},
        {'id': 'U5', 'username': 'tina', 'password': 'x', 'role': 'TEACHER', 'name': 'T'},
        {'id': 'U6', 'username': 'sam', 'password': 'x', 'role': 'STUDENT', 'name': 'S'},
    ]
    store, _ = make_store(document)
    admin, teacher, student = store.document['users']

    assert admin['permissions'] == UserPermissions.full_access().to_document()
    assert teacher['permissions'] == document['roleDefaults']['TEACHER']
    assert student['permissions'] == document['roleDefaults']['STUDENT']


def test_partial_permission_flags_are_completed_without_overwriting():
    document = legacy_document()
    document['users'] = [
        {'id': 'U5', 'username': 'tina', 'password': 'x', 'role': 'TEACHER', 'name': 'T',
         'permissions': {'dashboard': False, 'reports': True}},
    ]
    store, _ = make_store(document)
    permissions = store.document['users'][0]['permissions']
    assert permissions['dashboard'] is False
    assert permissions['reports'] is True
    assert set(permissions) == set(SCREENS)


def test_lost_counter_restarts_above_issued_numbers():
    document = legacy_document()
    document['students'][0]['id'] = 'STU-150'
    del document['meta']
    store, _ = make_store(document)

    assert store.document['meta'] == {'lastReceiptNo': 1007, 'lastStudentId': 150}
    assert admit(store)['id'] == 'STU-151'


def test_missing_collections_become_empty():
    store, _ = make_store({'institute': {'name': 'Only Profile'}})
    for key in ('students', 'teachers', 'batches', 'payments', 'attendance'):
        assert store.document[key] == []
    assert store.document['institute']['name'] == 'Only Profile'


# Identifiers

def test_student_ids_are_sequential(store, slot):
    assert admit(store)['id'] == 'STU-101'
    assert admit(store, name='Ravi')['id'] == 'STU-102'
    assert slot.stored()['meta']['lastStudentId'] == 102


def test_counters_continue_after_reload(store, slot):
    admit(store)
    store.record_payment({'studentId': 'STU-101', 'amount': 200})
    reloaded = RecordStore(slot)
    assert reloaded.generate_student_id() == 'STU-102'
    assert reloaded.generate_receipt_no() == 'REC-1002'


def test_receipt_numbers_are_sequential(store):
    admit(store)
    first = store.record_payment({'studentId': 'STU-101', 'amount': 1500, 'mode': 'UPI/ONLINE'})
    second = store.record_payment({'studentId': 'STU-101', 'amount': 500})
    assert first['receiptNo'] == 'REC-1001'
    assert second['receiptNo'] == 'REC-1002'
    assert first['mode'] == 'UPI/ONLINE'
    assert first['date'] == TODAY.isoformat()


def test_rejected_payment_does_not_consume_a_receipt_number(store):
    with pytest.raises(StoreValidationError):
        store.record_payment({'studentId': 'STU-101', 'amount': 0})
    assert store.document['meta']['lastReceiptNo'] == 1000


def test_short_ids_have_prefix_and_hex_suffix(store):
    assert re.match(r'^TCH-[0-9A-F]{6}$', store.generate_teacher_id())
    assert re.match(r'^BCH-[0-9A-F]{6}$', store.generate_batch_id())


# Students

def test_admission_defaults(store):
    student = admit(store)
    assert student['status'] == 'Active'
    assert student['admissionDate'] == '2024-05-01'
    assert 'email' not in student
    assert store.document['students'] == [student]


def test_admission_requires_name(store):
    with pytest.raises(StoreValidationError) as excinfo:
        admit(store, name='  ')
    assert 'name' in str(excinfo.value)
    assert store.document['students'] == []
    assert store.document['meta']['lastStudentId'] == 100


def test_edit_preserves_id_and_admission_date(store):
    student = admit(store, email='asha@example.com', admissionDate='2024-01-15')
    updated = store.update_student(student['id'], {'id': 'STU-999', 'name': 'Asha V', 'email': ''})
    assert updated['id'] == 'STU-101'
    assert updated['name'] == 'Asha V'
    assert updated['admissionDate'] == '2024-01-15'
    assert 'email' not in updated


def test_edit_unknown_student(store):
    with pytest.raises(RecordNotFound):
        store.update_student('STU-404', {'name': 'Nobody'})


def test_toggle_twice_restores_status(store):
    student = admit(store)
    assert store.toggle_student_status(student['id'])['status'] == 'Inactive'
    assert store.toggle_student_status(student['id'])['status'] == 'Active'


def test_search_matches_name_id_and_mobile(store):
    admit(store, name='Asha Verma', mobile='9000000001')
    admit(store, name='Ravi Kumar', mobile='9888888888')
    assert [s['name'] for s in store.search_students('asha')] == ['Asha Verma']
    assert [s['name'] for s in store.search_students('stu-102')] == ['Ravi Kumar']
    assert [s['name'] for s in store.search_students('98888')] == ['Ravi Kumar']
    assert len(store.search_students('')) == 2


def test_fee_balance_and_dashboard_stats(store):
    admit(store, totalFees=5000)
    admit(store, name='Ravi', totalFees=3000)
    store.toggle_student_status('STU-102')
    store.record_payment({'studentId': 'STU-101', 'amount': 1500})

    assert store.fees_paid('STU-101') == 1500
    assert store.fee_balance('STU-101') == 3500
    assert store.dashboard_stats() == {
        'total_students': 2,
        'active_students': 1,
        'total_fees_collected': 1500,
        'total_batches': 1,
        'outstanding_fees': 6500,
    }


# Teachers and batches

def test_teacher_subjects_are_split(store):
    teacher = store.add_teacher({'name': 'Meera', 'subjects': 'Chemistry, Biology ,'})
    assert teacher['subjects'] == ['Chemistry', 'Biology']
    assert store.find_teacher(teacher['id']) is teacher


def test_batch_stores_timing_as_text(store):
    from schemas import StructuredTiming

    batch = store.add_batch({'name': 'Evening', 'course': 'NEET', 'teacherId': 'T1',
                             'timing': StructuredTiming(days=['Tue', 'Thu'], start='17:00', end='19:00')})
    assert batch['timing'] == 'Tue, Thu | 17:00 - 19:00'


def test_deleting_batch_leaves_students_pointing_at_it(store):
    admit(store)
    store.delete_batch('B1')
    assert store.find_batch('B1') is None
    assert store.find_student('STU-101')['batchId'] == 'B1'
    assert store.batch_name('B1') == 'Unassigned'


def test_display_lookups(store):
    assert store.teacher_name('T1') == 'John Doe'
    assert store.teacher_name(None) == 'Unassigned'
    assert store.student_name('STU-404') == 'Unknown'


def test_batch_roster_filters_inactive(store):
    admit(store)
    admit(store, name='Ravi')
    store.toggle_student_status('STU-102')
    assert [s['id'] for s in store.batch_students('B1')] == ['STU-101', 'STU-102']
    assert [s['id'] for s in store.batch_students('B1', active_only=True)] == ['STU-101']


# Attendance

def test_marking_twice_appends_duplicates(store):
    sheet = {'date': '2024-05-01', 'batchId': 'B1',
             'entries': [{'studentId': 'STU-101', 'status': 'Present'},
                         {'studentId': 'STU-102', 'status': 'Absent'}]}
    store.mark_attendance(sheet)
    store.mark_attendance(sheet)
    history = store.attendance_history(batch_id='B1', day='2024-05-01')
    assert len(history) == 4
    assert len({r['id'] for r in history}) == 4


def test_attendance_rejects_unknown_status(store):
    with pytest.raises(StoreValidationError):
        store.mark_attendance({'date': '2024-05-01', 'batchId': 'B1',
                               'entries': [{'studentId': 'STU-101', 'status': 'Late'}]})
    assert store.document['attendance'] == []


# Users and permissions

def test_root_admin_cannot_be_deleted(store):
    with pytest.raises(ProtectedRecordError):
        store.delete_user(ROOT_ADMIN_ID)
    assert store.find_user(ROOT_ADMIN_ID) is not None


def test_root_admin_keeps_admin_role(store):
    with pytest.raises(ProtectedRecordError):
        store.update_user(ROOT_ADMIN_ID, {'role': 'TEACHER'})
    renamed = store.update_user(ROOT_ADMIN_ID, {'name': 'Principal'})
    assert renamed['role'] == 'ADMIN'


def test_other_users_can_be_deleted(store):
    store.delete_user('U2')
    assert store.find_user('U2') is None
    with pytest.raises(RecordNotFound):
        store.delete_user('U2')


def test_admin_accounts_always_get_full_access(store):
    user = store.add_user({'username': 'boss', 'password': 'pw', 'name': 'Boss', 'role': 'ADMIN',
                           'permissions': {'dashboard': True}})
    assert user['permissions'] == UserPermissions.full_access().to_document()
    assert re.match(r'^USR-[0-9A-F]{6}$', user['id'])


def test_new_user_without_permissions_gets_role_template(store):
    user = store.add_user({'username': 'sam', 'password': 'pw', 'name': 'Sam', 'role': 'STUDENT',
                           'linkedId': 'STU-101'})
    assert user['permissions'] == store.document['roleDefaults']['STUDENT']
    assert user['linkedId'] == 'STU-101'


def test_role_default_change_is_not_retroactive(store):
    before = copy.deepcopy(store.find_user('U2')['permissions'])
    store.set_role_default('TEACHER', {'dashboard': True, 'reports': True})

    assert store.find_user('U2')['permissions'] == before
    template = store.permission_template('TEACHER')
    assert template.allowed_screens() == ['dashboard', 'reports']


def test_admin_template_is_not_editable(store):
    with pytest.raises(StoreValidationError):
        store.set_role_default('ADMIN', {'dashboard': True})


def test_permission_template_for_admin_is_full_access(store):
    assert store.permission_template('ADMIN').allowed_screens() == list(SCREENS)


def test_role_change_reapplies_template(store):
    user = store.update_user('U2', {'role': 'STUDENT'})
    assert user['permissions'] == store.document['roleDefaults']['STUDENT']


def test_find_user_by_username(store):
    assert store.find_user_by_username('teacher')['id'] == 'U2'
    assert store.find_user_by_username('Teacher') is None


# Institute

def test_update_institute(store, slot):
    store.update_institute({'name': 'Bright Minds', 'tagline': '', 'logo': ''})
    assert store.document['institute'] == {'name': 'Bright Minds', 'tagline': '', 'address': '',
                                           'phone': '', 'email': ''}
    assert slot.stored()['institute']['name'] == 'Bright Minds'


# Persist failures

def test_failed_write_keeps_change_in_memory():
    store = RecordStore(FlakySlot(write_failures=1), today=lambda: TODAY)
    student = admit(store)
    assert student['id'] == 'STU-101'
    assert store.document['students'] == [student]
    assert 'quota exceeded' in store.last_persist_error


def test_refresh_retries_failed_write_instead_of_reading_over_it():
    slot = FlakySlot(write_failures=1)
    store = RecordStore(slot, today=lambda: TODAY)
    admit(store)
    assert store.last_persist_error

    store.refresh()

    assert store.last_persist_error is None
    assert [s['id'] for s in slot.stored()['students']] == ['STU-101']
    assert [s['id'] for s in store.document['students']] == ['STU-101']


def test_refresh_picks_up_writes_from_elsewhere(slot):
    store = RecordStore(slot, today=lambda: TODAY)
    other = RecordStore(slot, today=lambda: TODAY)
    store.persist()
    admit(other)
    store.refresh()
    assert store.find_student('STU-101') is not None


def test_failed_read_keeps_loaded_document():
    slot = FlakySlot()
    store = RecordStore(slot, today=lambda: TODAY)
    admit(store)

    slot.read_failures = 1
    store.load()
    second = admit(store, name='Ravi')

    assert second['id'] == 'STU-102'
    assert [s['id'] for s in slot.stored()['students']] == ['STU-101', 'STU-102']


def test_unreadable_slot_is_never_overwritten_with_seed():
    stored_document = seed_document()
    stored_document['students'].append({'id': 'STU-150', 'name': 'Existing'})
    stored_document['meta']['lastStudentId'] = 150
    original = json.dumps(stored_document)
    slot = FlakySlot({'EDUNEXUS_ERP_DB': original}, read_failures=1)
    store = RecordStore(slot, today=lambda: TODAY)

    assert store.document['students'] == []
    assert store.read_failed is True
    assert store.persist() is False
    assert 'could not be read' in store.last_persist_error
    assert slot.values['EDUNEXUS_ERP_DB'] == original
    assert slot.writes == 0

    store.load()
    assert store.read_failed is False
    assert store.find_student('STU-150')['name'] == 'Existing'
    assert admit(store)['id'] == 'STU-151'


def test_successful_write_clears_persist_error(slot):
    store = RecordStore(slot, today=lambda: TODAY)
    store.last_persist_error = 'earlier failure'
    assert store.persist() is True
    assert store.last_persist_error is None


def test_every_mutation_writes_the_slot():
    slot = MemorySlot()
    store = RecordStore(slot, today=lambda: TODAY)
    store.add_teacher({'name': 'Meera'})
    assert slot.writes == 1
    assert slot.stored()['teachers'][-1]['name'] == 'Meera'


def test_usernames_are_unique(store):
    with pytest.raises(StoreValidationError):
        store.add_user({'username': 'teacher', 'password': 'pw', 'name': 'Dup', 'role': 'TEACHER'})
    with pytest.raises(StoreValidationError):
        store.update_user('U2', {'username': 'admin'})
    assert store.update_user('U2', {'username': 'teacher', 'name': 'Prof. J'})['name'] == 'Prof. J'
