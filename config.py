import os
from pathlib import Path

from dotenv import load_dotenv

# .env is optional; real environment variables win
load_dotenv()


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    RECORD_STORE_FILE = Path(os.environ.get("RECORD_STORE_FILE", "hospital_records.xlsx"))
    HOSPITAL_NAME = os.environ.get("HOSPITAL_NAME", "City Care Hospital")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
