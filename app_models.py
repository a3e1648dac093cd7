# Database Models
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import SQLAlchemyError

from errors import StorageUnavailable

db = SQLAlchemy()


class StorageSlot(db.Model):
    """One named slot holding a whole serialized document."""

    __tablename__ = 'storage_slot'

    key = db.Column(db.String(100), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SqlStorageSlot:
    """Read/overwrite access to ``storage_slot`` rows.

    Writes always replace the full value; there are no partial updates.
    """

    def read(self, key):
        try:
            row = db.session.get(StorageSlot, key)
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StorageUnavailable(f"Could not read storage slot '{key}': {e}") from e
        return row.value if row else None

    def write(self, key, value):
        try:
            row = db.session.get(StorageSlot, key)
            if row is None:
                db.session.add(StorageSlot(key=key, value=value))
            else:
                row.value = value
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StorageUnavailable(f"Could not write storage slot '{key}': {e}") from e


def ensure_storage_schema():
    """Create the storage table if it does not exist yet."""
    db.create_all()
