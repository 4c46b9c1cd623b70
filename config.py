import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    # Supabase config
    SUPABASE_URL = os.environ.get('SUPABASE_URL')
    SUPABASE_SERVICE_KEY = os.environ.get('SUPABASE_SERVICE_KEY')

    # Timestamps written to responded_at
    TIMEZONE = os.environ.get('TIMEZONE', 'UTC')

    # Coach request settings
    COACH_REQUEST_CACHE_SECONDS = float(os.environ.get('COACH_REQUEST_CACHE_SECONDS', '5'))
    COACH_REQUEST_MAX_RETRIES = int(os.environ.get('COACH_REQUEST_MAX_RETRIES', '3'))
    COACH_REQUEST_RETRY_DELAY = float(os.environ.get('COACH_REQUEST_RETRY_DELAY', '1.0'))
    COACH_REQUEST_MESSAGE_MAX_LENGTH = int(os.environ.get('COACH_REQUEST_MESSAGE_MAX_LENGTH', '500'))
    COACH_REQUEST_PROCESSED_LIMIT = int(os.environ.get('COACH_REQUEST_PROCESSED_LIMIT', '10'))

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
