"""Default configurations for Screenshot Search."""

# Image formats the corpus scanner indexes (matched case-insensitively)
IMAGE_EXTENSIONS = frozenset(
    {
        ".png",
        ".jpg",
        ".jpeg",
        ".gif",
        ".bmp",
        ".webp",
        ".avif",
    }
)

# Vector store layout
TABLE_NAME = "images"
DB_DIRNAME = "vector_index.db"
MODEL_CACHE_DIRNAME = ".model_cache"

# Both encoders project into the same 768-dimensional space
VECTOR_DIMENSION = 768

# Reference model pairing (Nomic Embed v1.5 vision + text share one space)
DEFAULT_IMAGE_MODEL = "nomic-ai/nomic-embed-vision-v1.5"
DEFAULT_TEXT_MODEL = "nomic-ai/nomic-embed-text-v1.5"

# Nomic text models are trained with task prefixes
TEXT_QUERY_PREFIX = "search_query: "

DEFAULT_SEARCH_LIMIT = 100

# (batch_size, inter-batch delay in milliseconds) per CPU mode
CPU_MODE_PROFILES = {
    "normal": (8, 25),
    "fast": (32, 0),
}

# Settings-provider keys understood by IndexConfig.from_settings
SETTING_SCREENSHOT_DIRECTORY = "screenshot_directory"
SETTING_CPU_MODE = "indexing_cpu_mode"

# Environment overrides
ENV_DEVICE = "SCREENSHOT_SEARCH_DEVICE"
ENV_LOG_LEVEL = "SCREENSHOT_SEARCH_LOG_LEVEL"
