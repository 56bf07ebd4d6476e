"""Main entry point for the photo-atlas web server."""

import logging
import sys

import uvicorn

from photo_atlas.config import CONFIG_FILE_PATH

from .api import app, config


def main():
    """Run the web server."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    print("Starting photo-atlas web server...")
    print("API documentation: http://localhost:8000/docs")
    print(f"Catalog database: {config.db_path}")
    print(f"Config file: {CONFIG_FILE_PATH}")
    print("\nPress Ctrl+C to stop the server")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info",
        reload=False,  # Set to True for development
    )


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nServer stopped by user")
        sys.exit(0)
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
