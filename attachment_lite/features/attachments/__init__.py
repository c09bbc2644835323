from .columns import AttachmentColumn, AttachmentType, discover_attachment_columns
from .coordinator import AttachmentCoordinator
from .errors import AttachmentsDomainError, AttachmentValidationError, AttachmentWriteError
from .schemas import Attachment, as_attachment_list, serialize_attachment_value
from .service import attachment_from_upload
from .storage import FileStore, LocalFileStore
from .tracker import AttachmentColumnTracker

__all__ = [
    "Attachment",
    "AttachmentColumn",
    "AttachmentColumnTracker",
    "AttachmentCoordinator",
    "AttachmentType",
    "AttachmentValidationError",
    "AttachmentWriteError",
    "AttachmentsDomainError",
    "FileStore",
    "LocalFileStore",
    "as_attachment_list",
    "attachment_from_upload",
    "discover_attachment_columns",
    "serialize_attachment_value",
]
