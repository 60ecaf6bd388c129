"""
Error taxonomy shared by the write path (indexer) and read path (retriever).
"""


class RekkyError(Exception):
    """Base class for all Rekky errors"""


class EmptyContentError(RekkyError):
    """A record rendered to no embeddable text"""


class EmbeddingServiceError(RekkyError):
    """The text-embedding service failed, timed out, or is not configured"""


class InvalidVectorError(RekkyError):
    """A vector has the wrong width or contains non-finite values"""


class SummaryGenerationError(RekkyError):
    """The language model could not produce a usable summary"""


class RecordNotFoundError(RekkyError):
    """The record referenced by a task no longer exists"""


class SearchUnavailableError(RekkyError):
    """The query could not be embedded, so no search was run"""
