from __future__ import annotations


class AttachmentsDomainError(Exception):
    """Base exception for attachment operations."""


class AttachmentWriteError(AttachmentsDomainError):
    pass


class AttachmentValidationError(AttachmentsDomainError):
    pass
