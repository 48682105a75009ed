JWT_ALGORITHM = "HS256"

SYSTEM_COLUMNS = ("id", "created_at", "updated_at", "created_by")

DEFAULT_VIEW_NAME = "All Records"

PHYSICAL_TABLE_PREFIX = "dt"

MAX_IDENTIFIER_LENGTH = 63
