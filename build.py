#!/usr/bin/env python3
"""
Build script for deployment.
Creates the storage table and writes the seed (or backfilled) document.
"""

import os

from app import create_app, get_store


def initialize_storage():
    """Initialize the record store for production deployment."""
    app = create_app(os.environ.get('APP_ENV', 'production'))
    with app.app_context():
        store = get_store()
        document = store.load()
        print(f"Storage key: {store.storage_key}")
        print(f"Students: {len(document['students'])}, payments: {len(document['payments'])}, "
              f"users: {len(document['users'])}")
        print(f"Next student ID: STU-{document['meta']['lastStudentId'] + 1}, "
              f"next receipt: REC-{document['meta']['lastReceiptNo'] + 1}")

        if not store.persist():
            print(f"Storage initialization failed: {store.last_persist_error}")
            raise SystemExit(1)

        print("Storage initialization completed successfully!")


if __name__ == "__main__":
    initialize_storage()
