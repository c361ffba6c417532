"""
Create or update a user profile with a default FSRS config.

Usage:
    python -m scripts.maintenance.provision_user USER_ID [--tier paid] [--timezone Europe/Amsterdam]
"""

import argparse

from flashdeck import card_store, settings
from flashdeck.fsrs import database
from flashdeck.tiers import UserTier


def main():
    parser = argparse.ArgumentParser(description="Provision a study user")
    parser.add_argument("user_id", help="User identifier from the auth provider")
    parser.add_argument(
        "--tier",
        choices=[t.value for t in UserTier],
        default=UserTier.FREE.value,
        help="Subscription tier (default: free)",
    )
    parser.add_argument("--timezone", default=None, help="IANA timezone name")
    parser.add_argument(
        "--day-start-hour",
        type=int,
        default=None,
        help="Hour (0-23) at which the user's study day begins",
    )
    args = parser.parse_args()
    settings.configure_logging()

    database.init_db()
    with database.session_scope() as db:
        profile = card_store.provision_user(
            db,
            args.user_id,
            tier=args.tier,
            timezone=args.timezone,
            day_start_hour=args.day_start_hour,
        )
        print(f"✓ {profile.user_id}: tier={profile.tier}, timezone={profile.timezone}, "
              f"day starts at {profile.day_start_hour:02d}:00")


if __name__ == "__main__":
    main()
