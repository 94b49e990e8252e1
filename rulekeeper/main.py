
import logging
import sys

import uvicorn

from .config import get_settings

def setup_logging():
    settings = get_settings()
    
    log_path = settings.resolve_path(settings.logging.file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    
    level = getattr(logging, settings.logging.level.upper(), logging.INFO)
    
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(str(log_path)),
        ],
    )
    
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

def main():
    setup_logging()
    logger = logging.getLogger(__name__)
    
    settings = get_settings()
    
    logger.info("=" * 60)
    logger.info("  RuleKeeper - Secure Ruleset Updater")
    logger.info("=" * 60)
    logger.info(f"  Host: {settings.server.host}")
    logger.info(f"  Port: {settings.server.port}")
    logger.info(f"  Database: {settings.resolve_path(settings.database.path)}")
    logger.info(f"  Branch: {settings.updates.branch}")
    logger.info(f"  Manifest: {settings.updates.manifest_url}")
    logger.info("=" * 60)
    
    uvicorn.run(
        "rulekeeper.api.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.debug,
    )

if __name__ == "__main__":
    main()
