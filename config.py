"""Configuration management using environment variables."""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Database configuration
DB_PATH = os.getenv("DB_PATH", "attribution.db")
DATABASE_URL = os.getenv("DATABASE_URL")

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "attribution.log")

# Time-decay half-life used by the dashboard's engine
ATTRIBUTION_HALF_LIFE_DAYS = float(os.getenv("ATTRIBUTION_HALF_LIFE_DAYS", "7"))
