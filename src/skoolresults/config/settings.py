from dataclasses import dataclass
import os
from dotenv import load_dotenv


load_dotenv()


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    appwrite_endpoint: str = os.getenv("APPWRITE_ENDPOINT", "")
    appwrite_project_id: str = os.getenv("APPWRITE_PROJECT_ID", "")
    appwrite_api_key: str = os.getenv("APPWRITE_API_KEY") or os.getenv("APPWRITE_FUNCTION_API_KEY", "")
    appwrite_database_id: str = os.getenv("APPWRITE_DATABASE_ID", "")

    appwrite_ca_types_collection_id: str = os.getenv("APPWRITE_CA_TYPES_COLLECTION_ID", "ca_types")
    appwrite_grading_scales_collection_id: str = os.getenv("APPWRITE_GRADING_SCALES_COLLECTION_ID", "grading_scales")
    appwrite_results_collection_id: str = os.getenv("APPWRITE_RESULTS_COLLECTION_ID", "results")
    appwrite_subject_marks_collection_id: str = os.getenv("APPWRITE_SUBJECT_MARKS_COLLECTION_ID", "subject_marks")
    appwrite_mock_results_collection_id: str = os.getenv("APPWRITE_MOCK_RESULTS_COLLECTION_ID", "mock_exam_results")

    cors_allowed_origins: tuple[str, ...] = _split_csv(
        os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    )
    cors_allow_origin_regex: str = os.getenv(
        "CORS_ALLOW_ORIGIN_REGEX",
        r"^https?:\/\/(localhost|127\.0\.0\.1)(:\d+)?$",
    )

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
