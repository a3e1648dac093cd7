"""
Flat CSV extracts offered on the reports screen.
"""
import csv
import io

STUDENT_HEADERS = ['ID', 'Name', 'Mobile', 'Course', 'Status']
REVENUE_HEADERS = ['ReceiptNo', 'Student', 'Date', 'Amount', 'Mode']
ATTENDANCE_HEADERS = ['Date', 'Batch', 'StudentID', 'Status']

EXPORTS = {
    'students': 'students.csv',
    'revenue': 'revenue.csv',
    'attendance': 'attendance_history.csv',
}


def _to_csv(headers, rows):
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue()


def students_csv(store):
    rows = [
        [s.get('id', ''), s.get('name', ''), s.get('mobile', ''), s.get('course', ''), s.get('status', '')]
        for s in store.document['students'] if isinstance(s, dict)
    ]
    return _to_csv(STUDENT_HEADERS, rows)


def revenue_csv(store):
    rows = [
        [p.get('receiptNo', ''), store.student_name(p.get('studentId')), p.get('date', ''),
         p.get('amount', ''), p.get('mode', '')]
        for p in store.document['payments'] if isinstance(p, dict)
    ]
    return _to_csv(REVENUE_HEADERS, rows)


def attendance_csv(store):
    rows = [
        [a.get('date', ''), a.get('batchId', ''), a.get('studentId', ''), a.get('status', '')]
        for a in store.document['attendance'] if isinstance(a, dict)
    ]
    return _to_csv(ATTENDANCE_HEADERS, rows)


BUILDERS = {
    'students': students_csv,
    'revenue': revenue_csv,
    'attendance': attendance_csv,
}


def build_export(store, name):
    """Return ``(filename, csv_text)`` for a named export, or None if the name is unknown."""
    builder = BUILDERS.get(name)
    if builder is None:
        return None
    return EXPORTS[name], builder(store)
