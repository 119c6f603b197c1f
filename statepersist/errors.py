class PersistError(Exception):
    pass


class SerializationError(PersistError):
    """Raised when a substate cannot be turned into its stored form."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class StorageError(PersistError):
    """Raised by the bundled storage backends when an operation fails."""

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key
