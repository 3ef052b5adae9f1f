import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Page count estimation
BULK_BYTES_PER_PAGE_KB = int(os.getenv("BULK_BYTES_PER_PAGE_KB", "30"))
RECEIPT_BYTES_PER_PAGE_KB = int(os.getenv("RECEIPT_BYTES_PER_PAGE_KB", "40"))
SMALL_FILE_THRESHOLD_KB = int(os.getenv("SMALL_FILE_THRESHOLD_KB", "100"))
MAX_ESTIMATED_PAGES = int(os.getenv("MAX_ESTIMATED_PAGES", "2000"))

# Batch splitting configuration
MAX_PAGES_PER_BATCH = int(os.getenv("MAX_PAGES_PER_BATCH", "100"))  # Pages per lote

# Session persistence
SESSION_STORE_TYPE = os.getenv("SESSION_STORE_TYPE", "json")
SESSION_STORE_DIR = os.getenv("SESSION_STORE_DIR", os.path.join("data", "sessions"))
STORE_WRITE_ATTEMPTS = int(os.getenv("STORE_WRITE_ATTEMPTS", "3"))
SESSION_LOCK_TIMEOUT = float(os.getenv("SESSION_LOCK_TIMEOUT", "10"))  # seconds

# Paths
PAGES_OUTPUT_DIR = os.getenv("PAGES_OUTPUT_DIR", os.path.join("data", "pages"))
