"""
Shared constants used across the service.
"""

# Application
APP_NAME = "tunevault"
APP_VERSION = "0.3.0"

# Configuration paths
DEFAULT_CONFIG_DIR = "~/.config/tunevault"
DEFAULT_DATA_DIR = "~/.local/share/tunevault"
DEFAULT_DATABASE_FILENAME = "tunevault.db"
DEFAULT_LOG_PATH = "~/.local/share/tunevault/logs/tunevault.log"

# Provider pool: RapidAPI converters, in priority order.
# Each entry is combined with every configured RapidAPI key.
RAPIDAPI_ENDPOINTS = [
    {
        "host": "youtube-mp36.p.rapidapi.com",
        "endpoint": "https://youtube-mp36.p.rapidapi.com/dl",
        "method": "GET",
        "shape": "mp36",
        "max_requests": 100,
    },
    {
        "host": "youtube-mp3-2025.p.rapidapi.com",
        "endpoint": "https://youtube-mp3-2025.p.rapidapi.com/v1/social/youtube/audio",
        "method": "POST",
        "shape": "mp3_2025",
        "max_requests": 100,
    },
    {
        "host": "youtube-to-mp315.p.rapidapi.com",
        "endpoint": "https://youtube-to-mp315.p.rapidapi.com/status",
        "method": "GET",
        "shape": "mp315",
        "max_requests": None,  # unlimited
    },
]

# CloudConvert
CLOUDCONVERT_API_BASE = "https://api.cloudconvert.com"
CLOUDCONVERT_SANDBOX_API_BASE = "https://api.sandbox.cloudconvert.com"
CLOUDCONVERT_DAILY_LIMIT = 10
CLOUDCONVERT_AUDIO_BITRATE = 128

# Cobalt
COBALT_API_URL = "https://api.cobalt.tools/api/json"

# Source URL handed to job-based converters that import from a URL
SOURCE_URL_TEMPLATE = "https://www.youtube.com/watch?v={media_id}"

# Strategy names (also used as daily usage keys and artifact source tags)
STRATEGY_RAPIDAPI = "rapidapi"
STRATEGY_CLOUDCONVERT_PRODUCTION = "cloudconvert-production"
STRATEGY_CLOUDCONVERT_SANDBOX = "cloudconvert-sandbox"
STRATEGY_COBALT = "cobalt"

# Network settings (seconds)
DEFAULT_PROVIDER_TIMEOUT = 15
DEFAULT_DOWNLOAD_TIMEOUT = 60
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_JOB_TIMEOUT = 5 * 60
DEFAULT_REQUEST_DEADLINE = 6 * 60
DEFAULT_DOWNLOAD_CHUNK_SIZE = 64 * 1024
DEFAULT_MAX_DOWNLOAD_MB = 100

# Storage
AUDIO_BUCKET_PREFIX = "audio"
AUDIO_FILENAME_PREFIX = "youtube"
AUDIO_CONTENT_TYPE = "audio/mpeg"
AUDIO_EXTENSION = ".mp3"
FILENAME_COMPONENT_MAX = 50
PRESIGNED_URL_EXPIRY = 7 * 24 * 3600

# Metadata defaults
UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_ARTIST = "Unknown Artist"
DEFAULT_PROVIDER_TITLE = "YouTube Audio"

# Opaque media ids accepted at the HTTP boundary
MEDIA_ID_PATTERN = r"[A-Za-z0-9_-]{1,64}"

# Background persistence
DEFAULT_PERSIST_WORKERS = 2

# HTTP server
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 5010
STREAM_CACHE_CONTROL = "public, max-age=3600"
