"""Error taxonomy shared by the ingest jobs.

ValidationError      - bad input shape/size/type, rejected before enqueue.
TransientExternalError - a storage or transcoder call failed; may leave
                       partial state behind and triggers rollback.
ObjectNotFoundError  - the requested storage object does not exist.
FatalInputError      - corrupt or unsupported media, aborts before any write.
SoftDegradation      - optional extraction failed; callers log and continue.
"""


class IngestError(Exception):
    """Base class for all ingest errors."""


class ValidationError(IngestError, ValueError):
    pass


class TransientExternalError(IngestError):
    pass


class ObjectNotFoundError(IngestError):
    def __init__(self, key: str):
        super().__init__(f"Object not found in storage: {key}")
        self.key = key


class FatalInputError(IngestError):
    pass


class SoftDegradation(IngestError):
    pass
