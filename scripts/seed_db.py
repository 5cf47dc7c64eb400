#!/usr/bin/env python
"""
Database seeding script
Creates a site, integration and collection for local development

Environment:
    SEED_USER_ID            Owner of the seeded rows (default: dev-user)
    SEED_WEBFLOW_SITE_ID    External site id
    SEED_WEBFLOW_COLLECTION_ID  External collection id
    SEED_WEBFLOW_TOKEN      Content-store token (stored encrypted)
    SEED_OPENAI_API_KEY     Optional own generation key (stored encrypted)
"""
import os
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cms_regen.db import SessionLocal, Site, Integration, Collection
from cms_regen.db.engine import init_db
from cms_regen.services.credentials import encrypt_secret


def seed_database():
    """Seed one owned collection; skipped when the site already exists"""
    user_id = os.getenv("SEED_USER_ID", "dev-user")
    site_id = os.getenv("SEED_WEBFLOW_SITE_ID", "dev-site")
    collection_id = os.getenv("SEED_WEBFLOW_COLLECTION_ID", "dev-collection")
    store_token = os.getenv("SEED_WEBFLOW_TOKEN")
    generation_key = os.getenv("SEED_OPENAI_API_KEY")

    if not store_token:
        print("SEED_WEBFLOW_TOKEN is required", file=sys.stderr)
        sys.exit(1)

    init_db()
    db = SessionLocal()
    try:
        existing = db.query(Site).filter(Site.user_id == user_id, Site.external_site_id == site_id).first()
        if existing is not None:
            print(f"Site {site_id} already seeded for {user_id} (id {existing.id}). Skipping seed.")
            return

        site = Site(
            user_id=user_id,
            external_site_id=site_id,
            display_name="Development Site",
            base_url=os.getenv("SEED_SITE_BASE_URL", "http://localhost:3000"),
        )
        db.add(site)
        db.flush()

        db.add(Integration(
            site_id=site.id,
            encrypted_store_key=encrypt_secret(store_token),
            encrypted_generation_key=encrypt_secret(generation_key) if generation_key else None,
        ))
        collection = Collection(
            user_id=user_id,
            site_id=site.id,
            external_collection_id=collection_id,
            display_name="Blog Posts",
            slug=os.getenv("SEED_COLLECTION_SLUG", "blog"),
        )
        db.add(collection)
        db.commit()
        db.refresh(collection)

        key_mode = "own key" if generation_key else "managed key"
        print(f"Seeded collection {collection.id} ({collection_id}) for {user_id} using the {key_mode}")
    except Exception as e:
        db.rollback()
        print(f"Seeding failed: {e}", file=sys.stderr)
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_database()
