import logging

import uvicorn

from src.storefront.config import load_config
from src.storefront.server import create_app

logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')

config = load_config()
app = create_app(config)

if __name__ == "__main__":
    logging.info(f"Server running at http://localhost:{config.port}")
    if not config.target.enabled:
        logging.info("Running in demo mode - set ADOBE_TARGET_CLIENT and ADOBE_TARGET_ORG_ID in .env")
    uvicorn.run(app, host=config.host, port=config.port)
