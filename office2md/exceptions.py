class ExtractionError(Exception):
    """Base class for all conversion failures."""

    def __init__(self, message: str = None, *, cause: Exception = None):
        super().__init__(message or "Extraction failed")
        # Use exception chaining if cause is provided
        self.__cause__ = cause


class ExtractionFailedError(ExtractionError):
    """Raised when a document cannot be converted at all."""

    def __init__(
        self,
        message: str = None,
        *,
        cause: Exception = None,
        errors: list[str] | None = None,
    ):
        super().__init__(message, cause=cause)
        self.errors = list(errors or [])


class ExtractionScannedDocumentError(ExtractionFailedError):
    """Raised when a PDF yields no text, most likely because it is a scan."""


class ExtractionEncodingError(ExtractionFailedError):
    """Raised when spreadsheet content cannot be decoded with any known encoding."""


class ExtractionFileEncryptedError(ExtractionError):
    """Raised when the document is encrypted or password-protected."""


class ExtractionZipBombError(ExtractionError):
    """Raised when a ZIP container looks like a decompression bomb."""


class ExtractionFileFormatNotSupportedError(ExtractionError):
    """Raised when the file format for extraction is not supported."""

    def __init__(self, file_path: str, message: str = None, *, cause: Exception = None):
        self.file_path = file_path
        if message is None:
            message = f"Extraction file format not supported: {file_path}"
        super().__init__(message, cause=cause)


class RendererUnavailableError(ExtractionError):
    """Raised when an on-demand rendering back-end cannot be loaded."""


class ContentStoreError(Exception):
    """Base class for content store failures."""


class RemoteStorageError(ContentStoreError):
    """Raised by the remote media client when a request fails."""

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.status = status
