"""
Server entry point for the Mystery Mart order API.
Supervisor runs: uvicorn backend.server:app --host 0.0.0.0 --port 8000
"""

import sys
import os
import logging

# Ensure the project root is on the Python path
_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _project_root)

# Load .env from BOTH backend dir and project root (backend first, root overrides)
from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env'))
load_dotenv(os.path.join(_project_root, '.env'), override=True)

from config import Config

# Setup logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logging.getLogger('httpx').setLevel(logging.WARNING)
logging.getLogger('apscheduler').setLevel(logging.WARNING)
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

Config.log_environment_config()
_config_report = Config.validate_production_config()
if Config.IS_PRODUCTION and _config_report["issues"]:
    raise RuntimeError(f"Refusing to start with configuration issues: {_config_report['issues']}")

from api_server import app  # noqa: E402

logger.info("🚀 Mystery Mart order API loaded")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=Config.HOST, port=Config.PORT, log_level=Config.LOG_LEVEL.lower())
