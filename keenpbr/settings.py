"""
keen-pbr-web process settings.

Values come from environment variables; main.py may override CONFIG_PATH,
HOST and PORT from the command line before the app is created.
"""

import os


# ============================================
# CONFIGURATION
# ============================================

CONFIG_PATH = os.environ.get("KEEN_PBR_CONFIG", "/opt/etc/keen-pbr/keen-pbr.conf")
HOST = os.environ.get("KEEN_PBR_HOST", "0.0.0.0")
PORT = int(os.environ.get("KEEN_PBR_PORT", "3000"))

# List downloads
FETCH_TIMEOUT_SECONDS = float(os.environ.get("KEEN_PBR_FETCH_TIMEOUT", "30"))
FETCH_MAX_BYTES = int(os.environ.get("KEEN_PBR_FETCH_MAX_BYTES", str(16 * 1024 * 1024)))

# Actions
ACTION_TIMEOUT_SECONDS = float(os.environ.get("KEEN_PBR_ACTION_TIMEOUT", "300"))
WORKERS = int(os.environ.get("KEEN_PBR_WORKERS", "4"))

# Hostname resolution
DNS_TIMEOUT_SECONDS = float(os.environ.get("KEEN_PBR_DNS_TIMEOUT", "5"))

# Router API (interface state)
KEENETIC_RCI_URL = os.environ.get("KEEN_PBR_RCI_URL", "http://127.0.0.1:79/rci")
KEENETIC_RCI_TIMEOUT_SECONDS = float(os.environ.get("KEEN_PBR_RCI_TIMEOUT", "5"))

# Kernel commands
COMMAND_TIMEOUT_SECONDS = float(os.environ.get("KEEN_PBR_COMMAND_TIMEOUT", "30"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("KEEN_PBR_CORS_ORIGINS", "*").split(",")
    if origin.strip()
]

VERSION = "1.0.0"
