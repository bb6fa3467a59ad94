"""
Constant values used throughout dvschema.

Grouped by concern: registry error codes, attribute defaults, file
handling, retry timing and user-facing message templates.
"""

# Registry error codes (Dataverse organization service faults)
ENTITY_DOES_NOT_EXIST = -2147185403  # 0x80048D05
OBJECT_NOT_FOUND = -2147088248  # 0x80060888, Web API "does not exist"
ENTITY_NOT_FOUND = 31993685
OBJECT_DOES_NOT_EXIST = 32277441
API_LIMIT_EXCEEDED = -2147204784
NOT_FOUND_CODES = frozenset({ENTITY_DOES_NOT_EXIST, OBJECT_NOT_FOUND, ENTITY_NOT_FOUND, OBJECT_DOES_NOT_EXIST})
RATE_LIMIT_CODES = frozenset({API_LIMIT_EXCEEDED, -2147015902, -2147015903, -2147015898})

# Localization
DEFAULT_LANGUAGE_CODE = 1033

# Attribute defaults
TEXT_MAX_LENGTH = 100
MEMO_MAX_LENGTH = 2000
DEFAULT_PRECISION = 2
INTEGER_MIN_VALUE = -2147483648
INTEGER_MAX_VALUE = 2147483647
MONEY_MIN_VALUE = -922337203685477.0
MONEY_MAX_VALUE = 922337203685477.0
MONEY_PRECISION_SOURCE = 2
DOUBLE_MIN_VALUE = -100000000000.0
DOUBLE_MAX_VALUE = 100000000000.0

# Logical names
LOGICAL_NAME_MAX_LENGTH = 50
PRIMARY_NAME_FIELD = "name"

# Input files
MAX_FILE_ACCESS_RETRIES = 5
INITIAL_FILE_RETRY_DELAY = 0.5  # seconds

# Remote calls
MAX_RETRY_ATTEMPTS = 3
RETRY_BASE_DELAY = 1.0  # seconds
DEFAULT_TIMEOUT_SECONDS = 120

# Messages
AUTO_GENERATED_COLUMN_DESCRIPTION = "Auto-generated column: {0}"
AUTO_GENERATED_TABLE_DESCRIPTION = "Auto-generated table: {0}"
AUTO_GENERATED_CHOICE_DESCRIPTION = "Auto-generated choice column: {0}"
PRIMARY_NAME_FIELD_DESCRIPTION = "Primary name field"
VALIDATION_FAILED_PREFIX = "Validation failed: "
TABLE_CREATE_FAILED_PREFIX = "failed to create table: "

# Files
DEFAULT_CONFIG_FILE = "config.yaml"
DEFAULT_OUTPUT_CSV = "new_schemas.csv"
SAMPLE_FILE_NAME = "sample_schema.xlsx"
