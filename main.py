"""
Main entry point for the RosterSync analytics API.
"""

import logging

from dotenv import load_dotenv
from fasthtml.common import *
from starlette.responses import JSONResponse

from db import get_supabase, init_supabase, setup_logging
from routes.analytics import ar as analytics_router

# Get logger instance
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

# --- App Initialization ---
app, rt = fast_app(pico=False, title="RosterSync Analytics")

analytics_router.to_app(app)


# Initialize application components
def init_app():
    """Initialize application components.

    This function should be called at application startup.
    It sets up logging and initializes the Supabase client.
    """
    # Configure logging
    setup_logging()

    # Initialize Supabase client ONCE
    try:
        client = init_supabase()
        if client is not None:
            logger.info("Supabase integration enabled successfully")
        else:
            logger.warning("Running without Supabase integration")
    except Exception as e:
        logger.error(f"Unexpected error during Supabase initialization: {str(e)}")
        # Continue running; analytics routes answer 500 until configured


init_app()


@rt("/health")
def health():
    """Liveness probe with Supabase availability."""
    return JSONResponse(
        {"status": "ok", "supabase": get_supabase() is not None},
    )


serve()
