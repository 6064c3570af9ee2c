"""Exceptions raised when an image cannot be analysed at all."""


class RomError(Exception):
    """Base class for fatal analysis errors"""


class MalformedInput(RomError):
    """Image has an unlikely size or could not be read"""


class SignatureNotFound(RomError):
    """A mandatory marker string is missing from the image"""


class UnknownVariant(RomError):
    """FID CPU string does not match any known firmware variant"""

    def __init__(self, cpu: bytes):
        self.cpu = cpu
        super().__init__(f"Unknown FID CPU type {cpu!r}")
