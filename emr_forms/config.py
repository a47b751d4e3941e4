import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Wire contract for Questionnaire extensions. Changing either value
    # orphans extensions in documents that are already stored.
    EXTENSION_BASE_URL: str = os.getenv(
        "EXTENSION_BASE_URL", "http://medimind.ge/fhir/extensions"
    )
    EXTENSION_VERSION: str = os.getenv("EXTENSION_VERSION", "v1")

    OPTION_CODING_SYSTEM: str = os.getenv(
        "OPTION_CODING_SYSTEM", "http://medimind.ge/dropdown-values"
    )
    FORM_CATEGORY_SYSTEM: str = os.getenv(
        "FORM_CATEGORY_SYSTEM", "http://medimind.ge/form-category"
    )
    SECONDARY_LANGUAGE: str = os.getenv("SECONDARY_LANGUAGE", "en")
    BUILDER_HISTORY_LIMIT: int = int(os.getenv("BUILDER_HISTORY_LIMIT", "100"))


settings = Settings()
