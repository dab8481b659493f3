"""Internal constants shared across the library."""

BASE_URL = "https://www.gps51.com"
API_PATH = "/webapi"
USER_AGENT = "gp51sync/1.0"

ACTION_LOGIN = "login"
ACTION_LAST_POSITION = "lastposition"
ACTION_VALIDATE_TOKEN = "validatetoken"

#: ``status`` value the provider uses for success.
STATUS_OK = 0

# Threshold to distinguish seconds from milliseconds in provider timestamps.
MS_THRESHOLD = 1_000_000_000_000
