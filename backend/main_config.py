import os
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
LOGS_DIR = os.path.join(BASE_DIR, "logs")
DEBUG_RESPONSE_PATH = os.path.join(BASE_DIR, "debug_last_response.txt")
ENV_FILE_PATH = os.path.join(BASE_DIR, ".env")

# Relative to the project root being served
HISTORY_FILE_NAME = ".history"
