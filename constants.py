import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

FRONTEND_URL = os.getenv("FRONTEND_URL", "*")

GATEWAY_URL = os.getenv("GATEWAY_URL", os.getenv("EXTERNAL_API_URL", "http://localhost:3000"))
GATEWAY_API_KEY = os.getenv("GATEWAY_API_KEY", None)
GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT", 30))

DEFAULT_MESSAGE_TYPE = "text"
SUPPORTED_MESSAGE_TYPES = ("text", "buttons")
