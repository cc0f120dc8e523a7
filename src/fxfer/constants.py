from __future__ import annotations

INT_FORMAT = "!i"  # big-endian signed int32
INT_SIZE = 4
INT_MIN = -(2**31)
INT_MAX = 2**31 - 1

BUFFER_SIZE = 1024 * 1024  # largest single write on the wire

CLIENT_ARGUMENTS = 3  # host, port, file1 [... fileN]
SERVER_ARGUMENTS = 3  # host, port, storage dir

STORAGE_DIR_MODE = 0o755

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DEFAULT_LOG_LEVEL = "INFO"
