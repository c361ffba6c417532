"""
Create any missing flashcard tables.

Safe to run repeatedly.

Usage:
    python -m scripts.maintenance.init_db
"""

from flashdeck import settings
from flashdeck.fsrs import database


def main():
    settings.configure_logging()
    database.init_db()
    print("✓ Schema is up to date.")


if __name__ == "__main__":
    main()
