# Archive naming: dotfiles-<YYYYMMDD_HHMMSS>.tar.gz[.<method>]
ARCHIVE_PREFIX = "dotfiles-"
ARCHIVE_SUFFIX = ".tar.gz"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
METADATA_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"

PRE_RESTORE_DIRNAME = "pre-restore"
PRE_RESTORE_PREFIX = "pre-restore-"

# Encryption method suffixes (without the dot)
METHOD_AGE = "age"
METHOD_GPG = "gpg"
ENCRYPTED_SUFFIXES = (".age", ".gpg")

# Extraction quotas
MAX_EXTRACT_FILE_SIZE = 1 << 30   # 1 GiB
MAX_EXTRACT_TOTAL_SIZE = 10 << 30  # 10 GiB

# Permission bits preserved through the archive
PERM_MASK = 0o777

# Private file/dir modes for anything we write
ARCHIVE_FILE_MODE = 0o600
BACKUP_DIR_MODE = 0o700
PARENT_DIR_MODE = 0o755

COPY_BUFFER_SIZE = 1_048_576  # 1 MiB

# Paths that must not land in an unencrypted safety backup without asking
SENSITIVE_PREFIXES = (
    ".ssh",
    ".gnupg",
    ".aws",
    ".config/gcloud",
    ".azure",
    ".kube",
    ".terraform",
    ".docker",
    ".pypirc",
)

# diff limits
DIFF_MAX_CONTENT_BYTES = 10 * 1024 * 1024
DIFF_MAX_LINES = 20
DIFF_MAX_LINE_LENGTH = 100

DEFAULT_MAX_BACKUPS = 14

# Archive entry kinds
KIND_FILE = "file"
KIND_DIR = "dir"
KIND_SYMLINK = "symlink"
KIND_OTHER = "other"
