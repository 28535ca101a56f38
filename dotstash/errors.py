class DotstashError(Exception):
    """Base class for dotstash-specific errors."""


# Collection / extraction, recovered per entry
class CollectionError(DotstashError):
    pass


class UnsafePathError(DotstashError):
    pass


# Quotas, fatal to the whole extraction
class QuotaExceededError(DotstashError):
    pass


class FileSizeExceededError(QuotaExceededError):
    pass


class TotalSizeExceededError(QuotaExceededError):
    pass


# Whole-operation failures
class ArchiveError(DotstashError):
    pass


class EncryptionError(DotstashError):
    pass


class UserCancelledError(DotstashError):
    pass


class ConfigError(DotstashError):
    pass
