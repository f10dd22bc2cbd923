"""Entry point for running mailforest as a module.

Usage:
    python -m mailforest search "tag:inbox"
    python -m mailforest --help
"""

from dotenv import load_dotenv

load_dotenv()  # MAILFOREST_CONFIG_PATH may come from .env

from mailforest.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
