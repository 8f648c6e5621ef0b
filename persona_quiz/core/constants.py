# Generation scheduling
CONCURRENT_LIMIT = 3
SCHEDULE_DEBOUNCE_S = 0.05

# Per-call retry policy
REQUEST_TIMEOUT_S = 50.0
MAX_ATTEMPTS = 5
RETRY_DELAY_S = 2.0

# Model defaults
DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_RESPONSE_LANGUAGE = "English"
PLACEHOLDER_API_KEY = "your_openai_api_key_here"

# Persistence
STORAGE_KEY = "mbti_quiz_state"
DEFAULT_DB_PATH = "persona_quiz.db"

# Flow
IDLE_TIMEOUT_S = 600.0
MIN_AGE = 10
MAX_AGE = 80
DEFAULT_AGE = 25
MAX_INTEREST_TAGS = 5
GENDER_OPTIONS = ("Male", "Female", "Non-binary", "Prefer not to say")

# Chat
CHAT_HISTORY_LIMIT = 10

# Console
EXIT_COMMANDS = ("exit", "quit")
EXIT_SIGNAL = "__EXIT__"
HISTORY_DIR = ".persona_quiz"
