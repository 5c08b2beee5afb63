#!/usr/bin/env python3
"""Supabase database setup script for Antistatic.

This script outputs the SQL needed to create all tables the API reads and
writes. Copy the SQL output and run it in the Supabase SQL Editor.

Usage:
    # Print all SQL to console
    python scripts/setup_supabase.py

    # Print SQL and save to file
    python scripts/setup_supabase.py --output setup.sql

    # Verify tables exist
    python scripts/setup_supabase.py --verify

Tables Created:
    - business_locations: Businesses picked during onboarding
    - business_reviews: Synced Google reviews and their owner replies
    - business_insights: Channel analyses and competitor scrapes per location
    - connected_accounts / gbp_oauth_states: Google Business Profile OAuth
    - search_terms / competitor_rank_snapshots: Search ranking tracking
    - instagram_*: Instagram connection, OAuth state and DM inbox
    - social_studio_posts: Post calendar
    - review_requests: WhatsApp review request log
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime

# =============================================================================
# SQL Schema Definitions
# =============================================================================

SCHEMA_SQL = """
-- =============================================================================
-- Antistatic Database Schema for Supabase
-- =============================================================================
-- Generated: {generated_at}
--
-- Instructions:
-- 1. Open your Supabase project dashboard
-- 2. Go to SQL Editor
-- 3. Paste this entire script
-- 4. Click "Run" to execute
-- =============================================================================

CREATE EXTENSION IF NOT EXISTS "uuid-ossp";

-- =============================================================================
-- Table: business_locations
-- =============================================================================
-- One row per business a user picked from Google Places. Every other table
-- hangs off this one; ownership is checked through user_id.
-- =============================================================================

CREATE TABLE IF NOT EXISTS business_locations (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,

    -- Places details
    place_id TEXT NOT NULL,
    name TEXT,
    formatted_address TEXT,
    lat DOUBLE PRECISION,
    lng DOUBLE PRECISION,
    phone_number TEXT,
    website TEXT,
    rating FLOAT,
    review_count INTEGER,
    category TEXT,
    categories JSONB DEFAULT '[]',
    opening_hours JSONB,

    -- Business Profile resource name (accounts/{{a}}/locations/{{l}})
    google_location_name TEXT,

    -- Tools chosen during onboarding
    enabled_tools JSONB DEFAULT '[]',

    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW(),

    CONSTRAINT business_locations_user_place_unique UNIQUE (user_id, place_id)
);

CREATE INDEX IF NOT EXISTS idx_business_locations_user_id ON business_locations(user_id, created_at DESC);

COMMENT ON COLUMN business_locations.enabled_tools IS 'Module keys enabled for the business';


-- =============================================================================
-- Table: business_reviews
-- =============================================================================

CREATE TABLE IF NOT EXISTS business_reviews (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    location_id UUID NOT NULL REFERENCES business_locations(id) ON DELETE CASCADE,
    source TEXT NOT NULL DEFAULT 'gbp',
    review_id TEXT NOT NULL,
    rating INTEGER,
    review_text TEXT,
    author_name TEXT,
    author_photo_url TEXT,
    published_at TIMESTAMPTZ,

    -- Provider payload; raw_payload->'reply' holds the owner reply
    raw_payload JSONB DEFAULT '{{}}',

    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW(),

    CONSTRAINT business_reviews_rating_valid CHECK (rating IS NULL OR (rating >= 1 AND rating <= 5)),
    CONSTRAINT business_reviews_unique UNIQUE (location_id, source, review_id)
);

CREATE INDEX IF NOT EXISTS idx_business_reviews_location_published
    ON business_reviews(location_id, published_at DESC);


-- =============================================================================
-- Table: business_insights
-- =============================================================================
-- Onboarding channel analyses and the Apify competitor scrape, one row per
-- (location, source).
-- =============================================================================

CREATE TABLE IF NOT EXISTS business_insights (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    location_id UUID NOT NULL REFERENCES business_locations(id) ON DELETE CASCADE,
    source TEXT NOT NULL DEFAULT 'google',

    -- Business Profile snapshot
    gbp_primary_category TEXT,
    gbp_website_url TEXT,
    gbp_phone TEXT,
    gbp_address JSONB,

    -- AI channel analyses written by the onboarding flow
    instagram_ai_analysis JSONB,
    facebook_ai_analysis JSONB,
    gbp_ai_analysis JSONB,

    -- Apify scrape
    apify_opening_hours JSONB,
    apify_raw_payload JSONB,
    apify_competitors JSONB,
    last_scraped_at TIMESTAMPTZ,
    scrape_status TEXT,
    scrape_error TEXT,

    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW(),

    CONSTRAINT business_insights_scrape_status_valid CHECK (
        scrape_status IS NULL OR scrape_status IN ('success', 'error')
    ),
    CONSTRAINT business_insights_unique UNIQUE (location_id, source)
);


-- =============================================================================
-- Table: connected_accounts
-- =============================================================================

CREATE TABLE IF NOT EXISTS connected_accounts (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    business_location_id UUID NOT NULL REFERENCES business_locations(id) ON DELETE CASCADE,
    provider TEXT NOT NULL,
    provider_account_id TEXT,
    display_name TEXT,
    avatar_url TEXT,
    status TEXT NOT NULL DEFAULT 'connected',
    access_token TEXT,
    refresh_token TEXT,
    expires_at TIMESTAMPTZ,
    scopes JSONB,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW(),

    CONSTRAINT connected_accounts_unique UNIQUE (user_id, business_location_id, provider)
);

CREATE TABLE IF NOT EXISTS gbp_oauth_states (
    state TEXT PRIMARY KEY,
    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    business_location_id UUID NOT NULL REFERENCES business_locations(id) ON DELETE CASCADE,
    expires_at TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW()
);


-- =============================================================================
-- Tables: search_terms, competitor_rank_snapshots
-- =============================================================================

CREATE TABLE IF NOT EXISTS search_terms (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    business_location_id UUID NOT NULL REFERENCES business_locations(id) ON DELETE CASCADE,
    term TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT 'manual',
    created_at TIMESTAMPTZ DEFAULT NOW(),

    CONSTRAINT search_terms_term_not_empty CHECK (term <> '')
);

CREATE TABLE IF NOT EXISTS competitor_rank_snapshots (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    business_location_id UUID NOT NULL REFERENCES business_locations(id) ON DELETE CASCADE,
    search_term_id UUID NOT NULL REFERENCES search_terms(id) ON DELETE CASCADE,
    captured_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    results JSONB NOT NULL DEFAULT '[]',
    your_place_id TEXT,
    your_rank INTEGER
);

CREATE INDEX IF NOT EXISTS idx_rank_snapshots_term_captured
    ON competitor_rank_snapshots(business_location_id, search_term_id, captured_at DESC);


-- =============================================================================
-- Tables: Instagram
-- =============================================================================

CREATE TABLE IF NOT EXISTS instagram_connections (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    business_location_id UUID NOT NULL UNIQUE REFERENCES business_locations(id) ON DELETE CASCADE,
    instagram_user_id TEXT NOT NULL,
    instagram_username TEXT,
    access_token TEXT NOT NULL,
    token_expires_at TIMESTAMPTZ,
    scopes JSONB,
    connected_at TIMESTAMPTZ DEFAULT NOW(),
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_instagram_connections_user ON instagram_connections(instagram_user_id);

CREATE TABLE IF NOT EXISTS instagram_oauth_states (
    state TEXT PRIMARY KEY,
    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    business_location_id UUID NOT NULL REFERENCES business_locations(id) ON DELETE CASCADE,
    expires_at TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS instagram_dm_events (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    business_location_id UUID REFERENCES business_locations(id) ON DELETE CASCADE,
    ig_user_id TEXT,
    sender_id TEXT,
    recipient_id TEXT,
    message_id TEXT NOT NULL UNIQUE,
    text TEXT,
    timestamp TIMESTAMPTZ,
    raw JSONB,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS instagram_conversations (
    id TEXT PRIMARY KEY,
    business_location_id UUID NOT NULL REFERENCES business_locations(id) ON DELETE CASCADE,
    ig_account_id TEXT NOT NULL,
    participant_igsid TEXT NOT NULL,
    last_message_at TIMESTAMPTZ,
    last_message_preview TEXT,
    unread_count INTEGER NOT NULL DEFAULT 0,
    updated_time TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS instagram_messages (
    id TEXT PRIMARY KEY,
    business_location_id UUID NOT NULL REFERENCES business_locations(id) ON DELETE CASCADE,
    ig_account_id TEXT NOT NULL,
    conversation_id TEXT REFERENCES instagram_conversations(id) ON DELETE CASCADE,
    direction TEXT NOT NULL,
    from_id TEXT,
    to_id TEXT,
    text TEXT,
    attachments JSONB,
    created_time TIMESTAMPTZ,
    read_at TIMESTAMPTZ,
    raw JSONB,
    created_at TIMESTAMPTZ DEFAULT NOW(),

    CONSTRAINT instagram_messages_direction_valid CHECK (direction IN ('inbound', 'outbound'))
);

CREATE INDEX IF NOT EXISTS idx_instagram_messages_conversation
    ON instagram_messages(conversation_id, created_time);

CREATE TABLE IF NOT EXISTS instagram_sync_state (
    business_location_id UUID PRIMARY KEY REFERENCES business_locations(id) ON DELETE CASCADE,
    webhook_verified_at TIMESTAMPTZ,
    last_inbox_sync_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ DEFAULT NOW()
);


-- =============================================================================
-- Table: social_studio_posts
-- =============================================================================

CREATE TABLE IF NOT EXISTS social_studio_posts (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    business_location_id UUID NOT NULL REFERENCES business_locations(id) ON DELETE CASCADE,
    status TEXT NOT NULL DEFAULT 'draft',
    platforms JSONB NOT NULL DEFAULT '[]',
    platform TEXT,
    topic TEXT,
    caption TEXT,
    media JSONB DEFAULT '[]',
    media_url TEXT,
    cta JSONB,
    link_url TEXT,
    utm JSONB,
    scheduled_at TIMESTAMPTZ,
    published_at TIMESTAMPTZ,
    platform_meta JSONB,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW(),

    CONSTRAINT social_studio_posts_status_valid CHECK (
        status IN ('draft', 'scheduled', 'published', 'failed', 'deleted')
    )
);

-- Publisher query: due scheduled posts
CREATE INDEX IF NOT EXISTS idx_social_studio_posts_due
    ON social_studio_posts(status, scheduled_at);
CREATE INDEX IF NOT EXISTS idx_social_studio_posts_location
    ON social_studio_posts(business_location_id);


-- =============================================================================
-- Table: review_requests
-- =============================================================================

CREATE TABLE IF NOT EXISTS review_requests (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    org_id UUID NOT NULL,
    business_location_id UUID NOT NULL REFERENCES business_locations(id) ON DELETE CASCADE,
    channel TEXT NOT NULL DEFAULT 'whatsapp',
    to_recipient TEXT NOT NULL,
    customer_name TEXT,
    template_name TEXT,
    header_image_url TEXT,
    place_id TEXT,
    status TEXT NOT NULL DEFAULT 'sending',
    meta_message_id TEXT,
    error TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW(),

    CONSTRAINT review_requests_status_valid CHECK (status IN ('sending', 'sent', 'failed'))
);

CREATE INDEX IF NOT EXISTS idx_review_requests_location_created
    ON review_requests(business_location_id, created_at DESC);


-- =============================================================================
-- Updated At Trigger Function
-- =============================================================================

CREATE OR REPLACE FUNCTION update_updated_at_column()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = NOW();
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DO $$
DECLARE
    t TEXT;
BEGIN
    FOREACH t IN ARRAY ARRAY[
        'business_locations', 'business_reviews', 'business_insights', 'connected_accounts',
        'instagram_connections', 'social_studio_posts', 'review_requests'
    ]
    LOOP
        EXECUTE format('DROP TRIGGER IF EXISTS update_%1$s_updated_at ON %1$s', t);
        EXECUTE format(
            'CREATE TRIGGER update_%1$s_updated_at BEFORE UPDATE ON %1$s '
            'FOR EACH ROW EXECUTE FUNCTION update_updated_at_column()',
            t
        );
    END LOOP;
END $$;


-- =============================================================================
-- Verification Query
-- =============================================================================

SELECT
    table_name,
    (SELECT COUNT(*) FROM information_schema.columns WHERE table_name = t.table_name) as column_count
FROM information_schema.tables t
WHERE table_schema = 'public'
    AND table_name IN ({table_list})
ORDER BY table_name;
"""

# Children before parents so DROP works without CASCADE surprises
REQUIRED_TABLES = [
    "review_requests",
    "social_studio_posts",
    "instagram_sync_state",
    "instagram_messages",
    "instagram_conversations",
    "instagram_dm_events",
    "instagram_oauth_states",
    "instagram_connections",
    "competitor_rank_snapshots",
    "search_terms",
    "gbp_oauth_states",
    "connected_accounts",
    "business_insights",
    "business_reviews",
    "business_locations",
]


# =============================================================================
# Drop Tables SQL (use with caution!)
# =============================================================================

DROP_TABLES_SQL = """
-- =============================================================================
-- DROP ALL TABLES (USE WITH EXTREME CAUTION!)
-- =============================================================================
-- This will delete ALL data. Only use for complete reset during development.
-- =============================================================================

{drop_statements}

DROP FUNCTION IF EXISTS update_updated_at_column() CASCADE;
"""


# =============================================================================
# Verification Functions
# =============================================================================

def verify_tables() -> dict:
    """Verify that all required tables exist in Supabase.

    Returns:
        Dictionary with verification results.
    """
    from supabase import create_client

    from antistatic.config.settings import get_settings

    settings = get_settings()
    supabase = create_client(
        settings.supabase_url,
        settings.supabase_key.get_secret_value(),
    )

    results = {
        'success': True,
        'tables': {},
        'missing': [],
        'errors': [],
    }

    for table in REQUIRED_TABLES:
        try:
            response = supabase.table(table).select('*').limit(1).execute()
            results['tables'][table] = {
                'exists': True,
                'accessible': True,
                'row_count': len(response.data) if response.data else 0,
            }
        except Exception as e:
            error_str = str(e)
            if 'does not exist' in error_str.lower() or 'relation' in error_str.lower():
                results['tables'][table] = {
                    'exists': False,
                    'accessible': False,
                }
                results['missing'].append(table)
            else:
                results['tables'][table] = {
                    'exists': 'unknown',
                    'accessible': False,
                    'error': error_str[:100],
                }
                results['errors'].append(f"{table}: {error_str[:100]}")
            results['success'] = False

    return results


def print_verification_results(results: dict) -> None:
    """Print verification results in a formatted way."""
    print("\n" + "=" * 70)
    print("Supabase Table Verification Results")
    print("=" * 70)

    print(f"\nOverall Status: {'PASS' if results['success'] else 'FAIL'}")
    print("-" * 70)

    print("\nTable Status:")
    for table, info in results.get('tables', {}).items():
        status = "OK" if info.get('exists') is True and info.get('accessible') else "MISSING"
        icon = "[+]" if status == "OK" else "[-]"
        print(f"  {icon} {table}: {status}")
        if info.get('error'):
            print(f"      Error: {info['error']}")

    if results.get('missing'):
        print(f"\nMissing Tables: {', '.join(results['missing'])}")
        print("\nRun this script without --verify to get the SQL to create missing tables.")

    if results.get('errors'):
        print("\nErrors:")
        for error in results['errors']:
            print(f"  - {error}")

    print("\n" + "=" * 70)


# =============================================================================
# Main Functions
# =============================================================================

def get_setup_sql() -> str:
    """Get the complete setup SQL with timestamp."""
    return SCHEMA_SQL.format(
        generated_at=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        table_list=", ".join(f"'{t}'" for t in sorted(REQUIRED_TABLES)),
    )


def get_drop_sql() -> str:
    """Get the SQL to drop all tables (use with caution!)."""
    statements = "\n".join(f"DROP TABLE IF EXISTS {t} CASCADE;" for t in REQUIRED_TABLES)
    return DROP_TABLES_SQL.format(drop_statements=statements)


def get_sql(sql_type: str) -> str:
    if sql_type == 'drop':
        return get_drop_sql()
    return get_setup_sql()


def main():
    """Main entry point for the setup script."""
    parser = argparse.ArgumentParser(
        description='Generate Supabase setup SQL for Antistatic',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Print setup SQL to console
    python scripts/setup_supabase.py

    # Save setup SQL to file
    python scripts/setup_supabase.py --output setup.sql

    # Verify tables exist in Supabase
    python scripts/setup_supabase.py --verify

    # Print drop SQL (use with caution!)
    python scripts/setup_supabase.py --type drop
        """
    )

    parser.add_argument(
        '--output', '-o',
        type=str,
        help='Save SQL to file instead of printing'
    )

    parser.add_argument(
        '--type', '-t',
        type=str,
        choices=['setup', 'drop'],
        default='setup',
        help='Type of SQL to generate (default: setup)'
    )

    parser.add_argument(
        '--verify', '-v',
        action='store_true',
        help='Verify that tables exist in Supabase'
    )

    args = parser.parse_args()

    if args.verify:
        results = verify_tables()
        print_verification_results(results)
        sys.exit(0 if results.get('success') else 1)

    sql = get_sql(args.type)
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(sql)
        print(f"SQL saved to: {args.output}")
        return

    if args.type == 'drop':
        print("\n" + "!" * 70)
        print("WARNING: This will DELETE ALL DATA!")
        print("!" * 70 + "\n")
    print(sql)


if __name__ == '__main__':
    main()
