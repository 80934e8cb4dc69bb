"""
Global settings and defaults for bank statement importing.
"""

import os

# Files larger than this are rejected before any parsing (50 MB)
MAX_FILE_SIZE = int(os.getenv("STATEMENT_MAX_FILE_SIZE", str(50 * 1024 * 1024)))

# OCR settings
OCR_LANG = os.getenv("STATEMENT_OCR_LANG", "fr")
OCR_MIN_CONFIDENCE = float(os.getenv("STATEMENT_OCR_MIN_CONFIDENCE", "0.5"))
OCR_RENDER_SCALE = float(os.getenv("STATEMENT_OCR_RENDER_SCALE", "2.0"))
OCR_LINE_TOLERANCE = float(os.getenv("STATEMENT_OCR_LINE_TOLERANCE", "10"))

# Below this many characters on the first page a PDF is treated as scanned
MIN_TEXT_CHARS = int(os.getenv("STATEMENT_MIN_TEXT_CHARS", "50"))

# Vertical bucket size used to group PDF text runs into lines
LINE_TOLERANCE = float(os.getenv("STATEMENT_LINE_TOLERANCE", "5"))

PAGE_BREAK_MARKER = "--- page break ---"

LOG_FILE = os.getenv("STATEMENT_LOG_FILE", "statement_import.log")
