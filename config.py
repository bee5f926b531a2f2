"""
Runtime configuration, read from the environment.
"""

import os

APP_NAME = "Barangay Health API"
APP_VERSION = "1.0.0"

# MongoDB
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
# Transactions need a replica set; a standalone mongod rejects them.
MONGO_USE_TRANSACTIONS = os.getenv("MONGO_USE_TRANSACTIONS", "false").lower() in ("1", "true", "yes")

# HTTP
PORT = int(os.getenv("PORT", 8000))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "text").lower()

# Uploads (GridFS)
FILES_BUCKET = os.getenv("FILES_BUCKET", "uploads")
FILES_URL_PREFIX = "/files"
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))
MONTHLY_REPORT_CONTENT_TYPES = ("image/", "application/pdf")

# Dashboards
RECENT_RESIDENTS_LIMIT = 10
RECENT_LIMIT = 3

# First admin, created at startup when no admin account exists
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
