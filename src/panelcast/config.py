import os
from dotenv import load_dotenv

load_dotenv()


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# TTS Configuration
# Providers: "wellsaid" (streaming endpoint, key pool) or "elevenlabs" (SDK)
TTS_PROVIDER = os.getenv("TTS_PROVIDER", "wellsaid").lower()
WELLSAID_API_URL = os.getenv("WELLSAID_API_URL", "https://api.wellsaidlabs.com/v1/tts/stream")
WELLSAID_SPEAKER_ID = _int("WELLSAID_SPEAKER_ID", 3)
WELLSAID_MODEL = os.getenv("WELLSAID_MODEL", "caruso")
ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_VOICE_ID = os.getenv("ELEVENLABS_VOICE_ID", "21m00Tcm4TlvDq8ikWAM")
ELEVENLABS_MODEL_ID = os.getenv("ELEVENLABS_MODEL_ID", "eleven_turbo_v2_5")
TTS_REQUEST_TIMEOUT = _float("TTS_REQUEST_TIMEOUT", 120.0)

# Synthesis scheduling
TTS_CONCURRENCY = _int("TTS_CONCURRENCY", 3)
TTS_MAX_TEXT_LENGTH = _int("TTS_MAX_TEXT_LENGTH", 950)  # provider hard limit is 1000
NARRATION_CHUNK_LENGTH = _int("NARRATION_CHUNK_LENGTH", 500)
SUB_CHUNK_DELAY = _float("SUB_CHUNK_DELAY", 0.5)

# Retry / credential rotation
RATE_LIMIT_BASE_DELAY = _float("RATE_LIMIT_BASE_DELAY", 2.0)
RATE_LIMIT_MAX_DELAY = _float("RATE_LIMIT_MAX_DELAY", 30.0)
MAX_RATE_LIMIT_RETRIES = _int("MAX_RATE_LIMIT_RETRIES", 5)
MAX_CREDENTIAL_ATTEMPTS = _int("MAX_CREDENTIAL_ATTEMPTS", 10)
CREDENTIAL_USAGE_LIMIT = _int("CREDENTIAL_USAGE_LIMIT", 50)
CREDENTIALS_DB = os.getenv("CREDENTIALS_DB", "credentials.sqlite3")

# Media utilities
PROBE_FALLBACK_SECONDS = _float("PROBE_FALLBACK_SECONDS", 5.0)
PROBE_TIMEOUT = _float("PROBE_TIMEOUT", 30.0)
CONCAT_TIMEOUT = _float("CONCAT_TIMEOUT", 300.0)
JOIN_DRIFT_WARNING = _float("JOIN_DRIFT_WARNING", 0.25)

# Transcription (Shotstack ingest API)
SHOTSTACK_API_KEY = os.getenv("SHOTSTACK_API_KEY", "")
SHOTSTACK_INGEST_URL = os.getenv("SHOTSTACK_INGEST_URL", "https://api.shotstack.io/ingest/stage")
SHOTSTACK_EDIT_URL = os.getenv("SHOTSTACK_EDIT_URL", "https://api.shotstack.io/edit/stage")
TRANSCRIPTION_POLL_INTERVAL = _float("TRANSCRIPTION_POLL_INTERVAL", 5.0)
TRANSCRIPTION_TIMEOUT = _float("TRANSCRIPTION_TIMEOUT", 300.0)
TRANSCRIPTION_MAX_POLLS = _int("TRANSCRIPTION_MAX_POLLS", 60)

# Rendering
RENDER_BACKEND = os.getenv("RENDER_BACKEND", "shotstack").lower()  # shotstack | moviepy
RENDER_POLL_INTERVAL = _float("RENDER_POLL_INTERVAL", 5.0)
RENDER_TIMEOUT = _float("RENDER_TIMEOUT", 600.0)
RENDER_MAX_POLLS = _int("RENDER_MAX_POLLS", 120)
MAX_SCENES = _int("MAX_SCENES", 20)
VIDEO_WIDTH = _int("VIDEO_WIDTH", 1920)
VIDEO_HEIGHT = _int("VIDEO_HEIGHT", 1080)
FPS = _int("FPS", 30)

# Storage
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "supabase").lower()  # supabase | local
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
SUPABASE_BUCKET_NAME = os.getenv("SUPABASE_BUCKET_NAME", "generated_media")
STORAGE_PREFIX = os.getenv("STORAGE_PREFIX", "panelcast")

# Output directories
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "output")


def ensure_directories() -> None:
    os.makedirs(OUTPUT_DIR, exist_ok=True)
