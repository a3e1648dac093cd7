"""
Exceptions raised by the record store.

Views catch these locally and flash the message; nothing here is meant to
reach a global error handler.
"""


class StoreError(Exception):
    """Base class for every record store failure."""


class StoreValidationError(StoreError, ValueError):
    """Input rejected at the store boundary."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__('; '.join(self.errors))

    @classmethod
    def from_pydantic(cls, exc):
        messages = []
        for error in exc.errors():
            location = '.'.join(str(part) for part in error.get('loc', ()) if part != '__root__')
            message = error.get('msg', 'Invalid value')
            messages.append(f"{location}: {message}" if location else message)
        return cls(messages)


class RecordNotFound(StoreError, LookupError):
    """An edit or delete named an id that is not in the collection."""

    def __init__(self, collection, record_id):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"No {collection} record with id '{record_id}'")


class ProtectedRecordError(StoreError):
    """Attempt to remove a record the store must always keep."""


class StorageUnavailable(StoreError):
    """The storage slot could not be read or written."""
