"""
Error taxonomy for the knowledge base pipeline.

Indexing errors are captured into the document's error field by the worker;
NotFound / DocumentBusy / UnsupportedFormat at submission are caller-visible
and mapped to HTTP responses in app.main.
"""


class KnowledgeBaseError(Exception):
    """Base class for all knowledge base errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnsupportedFormat(KnowledgeBaseError):
    pass


class EmptyContent(KnowledgeBaseError):
    pass


class EmbeddingProviderError(KnowledgeBaseError):
    pass


class GenerationProviderError(KnowledgeBaseError):
    pass


class DimensionMismatch(KnowledgeBaseError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"Expected embedding of dimension {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class NotFound(KnowledgeBaseError):
    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class DocumentBusy(KnowledgeBaseError):
    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} is currently being processed")
        self.document_id = document_id


class PayloadTooLarge(KnowledgeBaseError):
    def __init__(self, size: int, limit: int):
        super().__init__(f"Upload of {size} bytes exceeds the {limit} byte limit")
        self.size = size
        self.limit = limit


class QueueUnavailable(KnowledgeBaseError):
    pass


class InvalidTenant(KnowledgeBaseError):
    def __init__(self, tenant_id: str):
        super().__init__(f"Invalid tenant id: {tenant_id!r}")
        self.tenant_id = tenant_id
