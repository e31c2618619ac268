"""Error taxonomy for the SMS ingestion pipeline.

Parse rejections, validation failures and duplicates are expected outcomes and
are reported through ``IngestOutcome`` rather than raised. Only the failures
below travel as exceptions.
"""


class IngestionError(Exception):
    """Base ingestion error."""

    def __init__(self, detail: str = "Ingestion failed"):
        self.detail = detail
        super().__init__(detail)


class PersistenceFailed(IngestionError):
    """Remote insert or query failed."""

    def __init__(self, detail: str = "Persistence gateway error", table: str = ""):
        super().__init__(detail)
        self.table = table


class CategoryCreateFailed(IngestionError):
    """Creating a missing category failed; callers fall back to a text label."""

    def __init__(self, detail: str = "Category creation failed", name: str = ""):
        super().__init__(detail)
        self.name = name


class SourceUnavailable(IngestionError):
    """The device message capability is missing or cannot be read."""

    def __init__(self, detail: str = "Message source unavailable"):
        super().__init__(detail)


class PermissionDenied(SourceUnavailable):
    """The user has not granted read access to messages."""

    def __init__(self, detail: str = "Message read permission not granted"):
        super().__init__(detail)
