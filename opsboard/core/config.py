from os import getenv

class Settings:
    JWT_SECRET = getenv("JWT_SECRET", "dev-secret-change-in-prod")
    JWT_EXPIRE_MIN = int(getenv("JWT_EXPIRE_MIN", "480"))  # une journée de travail
    DATABASE_URL = getenv("DATABASE_URL", "sqlite:///./opsboard.db")
    LOG_LEVEL = getenv("LOG_LEVEL", "INFO")

    # Viewer side
    API_URL = getenv("OPSBOARD_API_URL", "http://localhost:8000")
    HTTP_TIMEOUT = float(getenv("OPSBOARD_HTTP_TIMEOUT", "10"))
    POLL_INTERVAL = float(getenv("OPSBOARD_POLL_INTERVAL", "2"))

    # Store side
    CHANGE_LOG_SIZE = int(getenv("OPSBOARD_CHANGE_LOG_SIZE", "1000"))
    DEFAULT_CHECKLIST = getenv("OPSBOARD_DEFAULT_CHECKLIST", "")

settings = Settings()
