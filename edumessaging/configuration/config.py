import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Azure CosmosDB Configuration
    COSMOSDB_ENDPOINT = os.getenv("COSMOS_DB_ENDPOINT")
    COSMOSDB_KEY = os.getenv("COSMOS_DB_KEY")
    COSMOSDB_DATABASE_NAME = os.getenv("COSMOS_DB_DATABASE", "education-messages")
    COSMOSDB_CONTAINER_NAME = {
        "messages": os.getenv("COSMOS_CONTAINERS_MESSAGES", "messages"),
        "schools": os.getenv("COSMOS_CONTAINERS_SCHOOLS", "schools")
    }

    # Store time budgets (seconds)
    STORE_READ_TIMEOUT = float(os.getenv("STORE_READ_TIMEOUT", "5"))
    STORE_WRITE_TIMEOUT = float(os.getenv("STORE_WRITE_TIMEOUT", "8"))
    STORE_CONNECTION_TIMEOUT = int(os.getenv("STORE_CONNECTION_TIMEOUT", "5"))
    STORE_RETRY_TOTAL = int(os.getenv("STORE_RETRY_TOTAL", "2"))

    # Background school enrichment
    SCHOOL_ENRICHMENT_TIMEOUT = float(os.getenv("SCHOOL_ENRICHMENT_TIMEOUT", "3"))
    SCHOOL_ENRICHMENT_ATTEMPTS = int(os.getenv("SCHOOL_ENRICHMENT_ATTEMPTS", "2"))

    # Messaging rules
    MESSAGE_MAX_LENGTH = int(os.getenv("MESSAGE_MAX_LENGTH", "5000"))
    STATS_TOP_SCHOOLS = int(os.getenv("STATS_TOP_SCHOOLS", "10"))
    DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))
    MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))
    STRICT_STATUS_TRANSITIONS = _env_bool("STRICT_STATUS_TRANSITIONS", True)
    DEGRADED_READS = _env_bool("DEGRADED_READS", True)

    # JWT Configuration
    JWT_SECRET_KEY = os.getenv("AUTH_SECRET_KEY")
    JWT_ALGORITHM = os.getenv("AUTH_ALGORITHM", "HS256")

    # Application Insights
    APPLICATIONINSIGHTS_CONNECTION_STRING = os.getenv("APPINSIGHTS_INSTRUMENTATIONKEY")

    # Server
    DEBUG = _env_bool("DEBUG", False)
    PORT = int(os.getenv("PORT", "3008"))
