class VariantError(Exception):
    """Base class for every failure raised by the variant pipeline."""


class UnsupportedFormatError(VariantError):
    """Declared extension unknown, or the codec could not parse the bytes."""


class EncodeError(VariantError):
    """Scaling or encoding of one size class failed."""


class StorageError(VariantError):
    """The blob store rejected a put or delete."""


class UploadCancelled(VariantError):
    """The caller cancelled the upload before all variants were stored."""
