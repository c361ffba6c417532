"""
Reset the flashcard database.

DANGEROUS: This deletes all review history!
Only use when you want to start fresh for testing.

Usage:
    python -m scripts.maintenance.reset_learning_db [--yes]
"""

import argparse

from flashdeck import settings
from flashdeck.fsrs import database


def main():
    parser = argparse.ArgumentParser(description="Drop and recreate all flashcard tables")
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Skip the confirmation prompt",
    )
    args = parser.parse_args()
    settings.configure_logging()

    print("=" * 60)
    print("WARNING: Reset Flashcard Database")
    print("=" * 60)
    print()
    print("This will DELETE:")
    print("  - All card states (stability, difficulty, due dates)")
    print("  - All review events and study sessions")
    print("  - All profiles, FSRS configs, daily usage and streaks")
    print()
    if settings.is_test_mode():
        print("TEST_MODE is on: the test database will be reset.")
        print()

    if not args.yes:
        response = input("Are you sure you want to reset? (type 'yes' to confirm): ")
        if response.lower() != "yes":
            print("\nCancelled. No changes made.")
            return

    print("\nResetting database...")
    database.reset_db()
    print("✓ Database reset complete!")


if __name__ == "__main__":
    main()
