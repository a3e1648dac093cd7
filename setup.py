from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="edunexus-institute",
    version="1.0.0",
    description="EduNexus institute management: admissions, batches, fee receipts and attendance",
    long_description=long_description,
    long_description_content_type="text/markdown",
    py_modules=[
        'app',
        'app_models',
        'auth',
        'build',
        'config',
        'errors',
        'exports',
        'formatters',
        'forms',
        'gunicorn_config',
        'health',
        'record_store',
        'schemas',
        'security',
        'wsgi',
    ],
    data_files=[('templates', [
        'templates/base.html',
        'templates/login.html',
        'templates/dashboard.html',
        'templates/students.html',
        'templates/student_form.html',
        'templates/teachers.html',
        'templates/teacher_form.html',
        'templates/batches.html',
        'templates/batch_form.html',
        'templates/fees.html',
        'templates/receipt.html',
        'templates/attendance.html',
        'templates/reports.html',
        'templates/settings.html',
        'templates/user_form.html',
        'templates/_macros.html',
    ])],
    include_package_data=True,
    install_requires=[
        'Flask>=2.3',
        'Flask-SQLAlchemy>=3.0.5',
        'Flask-WTF>=1.2.1',
        'python-dotenv>=1.0.0',
        'SQLAlchemy>=2.0',
        'WTForms>=3.0.1',
        'Werkzeug>=2.3.7',
        'gunicorn>=21.2.0',
        'psycopg2-binary>=2.9.9',
        'pydantic>=2.5',
    ],
    extras_require={
        'test': ['pytest>=7.4'],
    },
    python_requires='>=3.9',
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    entry_points={
        'console_scripts': [
            'edunexus=wsgi:main',
        ],
    },
)
