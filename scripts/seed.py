"""
Seed Script

Creates the default admin account, a sample customer and a starter FAQ set
in a fresh deployment. Existing accounts and FAQs are left alone, so the
script is safe to re-run.

Usage:
    python scripts/seed.py
    python scripts/seed.py --email ops@company.com --password 'Str0ng!Pass' --role super_admin
"""
import sys
import os
import argparse

# Add parent directory to path to import from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import psycopg2
from fastapi import HTTPException

from supportdesk.auth import hash_password, validate_email, validate_password_strength
from supportdesk.config import ROLES, Config
from supportdesk.db import get_db, init_pool
from supportdesk.faqs import create_faq
from supportdesk.schema import bootstrap_schema

DEFAULT_USERS = [
    {
        "email": "admin@example.com",
        "password": "Admin@123",
        "first_name": "Admin",
        "last_name": "User",
        "role": "admin",
    },
    {
        "email": "user@example.com",
        "password": "User@123",
        "first_name": "Sample",
        "last_name": "User",
        "role": "user",
    },
]

SAMPLE_FAQS = [
    {
        "question": "What are your business hours?",
        "answer": "Our customer support is available 24/7. Our physical offices are open "
                  "Monday to Friday, 9 AM to 6 PM.",
        "category": "General",
        "keywords": ["hours", "business", "support", "available", "open"],
        "priority": 100,
    },
    {
        "question": "How do I reset my password?",
        "answer": 'To reset your password: 1) Click "Forgot Password" on the login page, '
                  "2) Enter your email address, 3) Check your email for the reset link, "
                  "4) Click the link and create a new password. If you don't receive the "
                  "email within 5 minutes, check your spam folder.",
        "category": "Account",
        "keywords": ["password", "reset", "forgot", "login", "account"],
        "priority": 95,
    },
    {
        "question": "What payment methods do you accept?",
        "answer": "We accept all major credit cards (Visa, MasterCard, American Express, "
                  "Discover), PayPal and bank transfers. For enterprise customers, we also "
                  "offer invoicing options.",
        "category": "Billing",
        "keywords": ["payment", "credit card", "paypal", "billing", "invoice"],
        "priority": 90,
    },
    {
        "question": "How can I cancel my subscription?",
        "answer": "You can cancel your subscription anytime by going to Settings > "
                  "Subscription > Cancel Plan. Your access will continue until the end of "
                  "your current billing period. No refunds are provided for partial months.",
        "category": "Billing",
        "keywords": ["cancel", "subscription", "refund", "plan"],
        "priority": 85,
    },
    {
        "question": "Do you offer refunds?",
        "answer": "We offer a 30-day money-back guarantee for new subscriptions. If you're "
                  "not satisfied within the first 30 days, contact support for a full refund. "
                  "After 30 days, refunds are evaluated on a case-by-case basis.",
        "category": "Billing",
        "keywords": ["refund", "money back", "guarantee", "return"],
        "priority": 80,
    },
    {
        "question": "How do I contact customer support?",
        "answer": "You can reach our support team through: 1) This AI chat assistant, "
                  "2) Email at support@example.com, 3) Phone during business hours. Average "
                  "response time is under 2 hours for email and immediate for chat.",
        "category": "General",
        "keywords": ["contact", "support", "help", "email", "phone"],
        "priority": 100,
    },
    {
        "question": "Is my data secure?",
        "answer": "Yes, we take security seriously. All data is encrypted in transit (TLS 1.3) "
                  "and at rest (AES-256). We are SOC 2 Type II certified and GDPR compliant. "
                  "We never sell your data to third parties.",
        "category": "Security",
        "keywords": ["security", "data", "privacy", "encrypted", "gdpr"],
        "priority": 90,
    },
    {
        "question": "What features are included in the free plan?",
        "answer": "The free plan includes: Up to 100 messages per month, Basic AI assistance, "
                  "Email support, 1 user account. For unlimited messages and advanced "
                  "features, consider our Pro or Enterprise plans.",
        "category": "Plans",
        "keywords": ["free", "plan", "features", "pricing", "included"],
        "priority": 85,
    },
]


def create_user(email, password, first_name, last_name, role):
    """Insert a user with an explicit role. Returns (id, created)."""
    email = validate_email(email)
    validate_password_strength(password)

    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id FROM users WHERE email = %s", (email,))
            row = cur.fetchone()
            if row:
                return row[0], False

            cur.execute(
                """
                INSERT INTO users (email, password_hash, first_name, last_name, role, is_verified)
                VALUES (%s, %s, %s, %s, %s, TRUE)
                RETURNING id
                """,
                (email, hash_password(password), first_name, last_name, role),
            )
            user_id = cur.fetchone()[0]
        conn.commit()
    return user_id, True


def seed_faqs(admin_id):
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM faqs")
            if cur.fetchone()[0] > 0:
                print("FAQs already exist")
                return

    for faq in SAMPLE_FAQS:
        create_faq(faq, admin_id)
    print(f"✅ Created {len(SAMPLE_FAQS)} sample FAQs")


def main():
    parser = argparse.ArgumentParser(
        description="Seed the support database with default accounts and FAQs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/seed.py
  python scripts/seed.py --email ops@company.com --password 'Str0ng!Pass' --role super_admin

Security Notes:
  - Change the default admin password after the first login
  - Passwords need 8+ characters with upper and lower case letters and a digit
        """
    )

    parser.add_argument("--email", help="Create only this user instead of the defaults")
    parser.add_argument("--password", help="Password for --email")
    parser.add_argument("--role", choices=ROLES, default="admin", help="Role for --email (default: admin)")
    parser.add_argument("--first-name", default="Admin", help="First name for --email")
    parser.add_argument("--last-name", default="User", help="Last name for --email")

    args = parser.parse_args()

    if args.email and not args.password:
        print("❌ Error: --password is required with --email")
        sys.exit(1)

    try:
        init_pool()
        if not bootstrap_schema():
            print("❌ Schema bootstrap failed, check PG_CONN")
            sys.exit(1)

        if args.email:
            user_id, created = create_user(
                args.email, args.password, args.first_name, args.last_name, args.role
            )
            state = "created" if created else "already exists"
            print(f"✅ User {args.email} {state} (ID: {user_id}, role: {args.role})")
            return

        admin_id = None
        for account in DEFAULT_USERS:
            user_id, created = create_user(**account)
            if account["role"] == "admin":
                admin_id = user_id
            state = "created" if created else "already exists"
            print(f"{account['role'].title()} user {account['email']} {state}")

        seed_faqs(admin_id)
        print(f"\n✅ Database seeding completed ({Config.COMPANY_NAME})")

    except (HTTPException, psycopg2.Error) as e:
        detail = e.detail if isinstance(e, HTTPException) else e
        print(f"❌ Seeding failed: {detail}")
        sys.exit(1)


if __name__ == "__main__":
    main()
