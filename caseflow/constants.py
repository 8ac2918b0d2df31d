DEFAULT_BASE_URL = "http://localhost:3000"
DEFAULT_MODEL = "anthropic/claude-sonnet-4.5"

OCR_POLL_INTERVAL = 3.0
TRANSCRIPTION_POLL_INTERVAL = 3.0
TABULAR_POLL_INTERVAL = 2.0

# Statuses after which a job keeps changing remotely; anything else is terminal.
OCR_ACTIVE_STATUSES = frozenset({"pending", "processing"})
TRANSCRIPTION_ACTIVE_STATUSES = frozenset({"queued", "processing"})
TABULAR_ACTIVE_STATUSES = frozenset({"draft", "processing"})

OCR_ENGINES = ("doctr", "tesseract", "paddle", "google")
