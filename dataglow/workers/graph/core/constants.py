import re

PHASE_ORDER = [
    "ingest",
    "clean",
    "profile",
    "charts",
    "finalize",
]

COLUMN_TYPES = ("string", "number", "date", "boolean")
CATEGORICAL_TYPES = {"string", "boolean"}

INFERENCE_FIRST_ROW = "first_row"
INFERENCE_MAJORITY = "majority"
INFERENCE_MODES = (INFERENCE_FIRST_ROW, INFERENCE_MAJORITY)
_DEFAULT_INFERENCE_SAMPLE_ROWS = 100

_MAX_PREVIEW_ROWS = 5
_MAX_CLEAN_PREVIEW_ROWS = 10
_SPARSE_ROW_THRESHOLD = 0.5

_MAX_BAR_CATEGORIES = 10
_MAX_PIE_CATEGORIES = 5
_MAX_HISTOGRAM_BINS = 10
_MAX_SCATTER_POINTS = 100
_UNKNOWN_CATEGORY = "Unknown"

_BOOLEAN_TOKENS = {"true", "false", "0", "1", "yes", "no", "y", "n"}

_NUMERIC_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")
# plain decimal or exponent notation only
_FLOAT_TEXT_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$", re.ASCII)
_DATE_PATTERNS = (
    re.compile(r"^\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}$"),
    re.compile(r"^\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2}$"),
)
_LINE_SPLIT_PATTERN = re.compile(r"\r?\n")

# Year-first is tried before day-first, day-first before month-first.
_DATE_PARSE_FORMATS = tuple(
    fmt.replace("-", sep)
    for fmt in ("%Y-%m-%d", "%d-%m-%Y", "%d-%m-%y", "%m-%d-%Y", "%m-%d-%y")
    for sep in ("-", "/", ".")
)

_CLEANED_CSV_NAME = "cleaned_data.csv"
