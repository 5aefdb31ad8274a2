# timed_exam/config.py
import os
from dotenv import load_dotenv # Import dotenv

# Load environment variables from .env file (especially for local development)
load_dotenv()


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///exam_results.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Optional Cloud SQL instance; replaces DATABASE_URL when all four are set
    DB_USER = os.environ.get("DB_USER") # e.g., 'exam_user'
    DB_PASS = os.environ.get("DB_PASS")
    DB_NAME = os.environ.get("DB_NAME") # e.g., 'exam_results'
    INSTANCE_CONNECTION_NAME = os.environ.get("INSTANCE_CONNECTION_NAME")

    CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()]
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

    # Exam timing, in seconds
    EXAM_TIME_PER_QUESTION = int(os.environ.get('EXAM_TIME_PER_QUESTION', 60))
    EXAM_WARNING_TIME = int(os.environ.get('EXAM_WARNING_TIME', 10))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    INSTANCE_CONNECTION_NAME = None
