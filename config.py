"""
Configuration for the Solar Lamp Survey Dashboard

Contains KoboToolbox connection settings, cache settings and display colors.
Secrets are read from environment variables; everything else can be edited
directly below.
"""

import os

# =============================================================================
# KOBOTOOLBOX API
# =============================================================================

KOBO_BASE_URL = os.getenv("KOBO_BASE_URL", "https://kf.kobotoolbox.org/")
KOBO_API_TOKEN = os.getenv("KOBOTOOLBOX_TOKEN", "")
KOBO_FORM_ID = os.getenv("KOBOTOOLBOX_FORM_ID", "akGkJBQrKG6gWJ6daFNRtR")

# Some forms only return submissions when pinned to a deployed version
KOBO_FORM_VERSIONS = {
    "akGkJBQrKG6gWJ6daFNRtR": "vRuWGRMUTEdb7dXGNTYPuf",
}

KOBO_PAGE_LIMIT = 1500
KOBO_TIMEOUT_S = 30
KOBO_MAX_RETRIES = 3
KOBO_BACKOFF_S = 1.0

# =============================================================================
# CACHE
# =============================================================================

CACHE_PATH = os.getenv("DASHBOARD_CACHE_PATH", "output/dashboard_data.json")
CACHE_TTL_HOURS = float(os.getenv("DASHBOARD_CACHE_TTL_HOURS", "6"))

# =============================================================================
# DISPLAY SETTINGS
# =============================================================================

PLACEHOLDER_PHOTO = "/placeholder-profile.jpg"

GENDER_COLORS = {
    "Male": "#1976d2",      # Blue
    "Female": "#d81b60",    # Pink
    "Other": "#757575"      # Grey
}

ELECTRICITY_COLORS = {
    "None": "#dc3545",
    "Solar (small)": "#ffc107",
    "Kerosene Lamp": "#f57c00",
    "Grid (unreliable)": "#388e3c",
    "Generator (occasional)": "#1976d2"
}

STUDENTS_PER_PAGE = 25
