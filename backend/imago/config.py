"""
Imago Occurrences - Runtime Configuration

All settings come from environment variables with development defaults.
Services take explicit overrides so tests never depend on these globals.
"""
import os


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number of seconds, got {raw!r}")


# Protocol numbers: <PREFIX>-<YYYYMMDD>-<NNNN>
PROTOCOL_PREFIX = os.getenv("PROTOCOL_PREFIX", "IMAGO")

# External AI analysis collaborator (webhook)
AI_WEBHOOK_URL = os.getenv("AI_WEBHOOK_URL")
AI_WEBHOOK_TIMEOUT = _float_env("AI_WEBHOOK_TIMEOUT", 30.0)

# Document storage
DOCUMENT_STORAGE_DIR = os.getenv("DOCUMENT_STORAGE_DIR", os.path.join("storage", "occurrence-documents"))
DOCUMENT_BASE_URL = os.getenv("DOCUMENT_BASE_URL", "/documents")
DOCUMENT_STORAGE_URL = os.getenv("DOCUMENT_STORAGE_URL")  # HTTP object store, overrides local dir
DOCUMENT_STORAGE_TIMEOUT = _float_env("DOCUMENT_STORAGE_TIMEOUT", 15.0)

# Intake authentication (shared with the chat/form collaborator)
INTAKE_SHARED_SECRET = os.getenv("INTAKE_SHARED_SECRET")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
