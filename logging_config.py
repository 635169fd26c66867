import logging
import sys
from pprint import pformat

from config import LOG_LEVEL

# Configure logging
def setup_logging():
    # Create logger
    logger = logging.getLogger("contracting_api")
    logger.setLevel(LOG_LEVEL)

    # Avoid stacking handlers when the module is reloaded
    if not logger.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(LOG_LEVEL)

        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger

# Get the logger
logger = setup_logging()

def log_request_info(request, message="Request received"):
    """Log the method, URL and headers of an incoming request"""
    logger.info(f"{message}: {request.method} {request.url}")
    headers = dict(request.headers)
    if "authorization" in headers:
        headers["authorization"] = "Bearer ********"
    logger.debug(f"Request headers: {pformat(headers)}")

def log_response_info(response, message="Response sent"):
    """Log the status and headers of an outgoing response"""
    logger.info(f"{message}: Status {response.status_code}")
    logger.debug(f"Response headers: {pformat(dict(response.headers))}")
