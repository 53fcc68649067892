import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

APP_NAME = os.getenv("APP_NAME", "Roomcast")
SYSTEM_USERNAME = os.getenv("SYSTEM_USERNAME", "system")
DISPLAY_TIMEZONE = os.getenv("DISPLAY_TIMEZONE", "UTC")

# "memory" keeps broadcasts in-process, "redis" fans them out over pub/sub
BROADCAST_BACKEND = os.getenv("BROADCAST_BACKEND", "memory")

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

USERNAME_MIN_LENGTH = 2
USERNAME_MAX_LENGTH = 20
ROOM_MIN_LENGTH = 1
ROOM_MAX_LENGTH = 50
MESSAGE_MAX_LENGTH = 1000
