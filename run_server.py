"""
Run Chat Server - Direct launch script
"""
import sys
import logging

from dotenv import load_dotenv
load_dotenv()

import uvicorn

from config.settings import get_settings
from ragchat.api import create_app

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)

if settings.server.nonce_secret == "change-me":
    logging.getLogger(__name__).warning("NONCE_SECRET is not set; using the insecure default")

app = create_app(settings)

if __name__ == "__main__":
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)
