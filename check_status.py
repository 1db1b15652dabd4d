#!/usr/bin/env python3
"""
Quick connectivity check for the virtual product pages admin backend.
Runs the same probes as the admin connectivity endpoints, without the web server.
"""

import argparse
import sys
from datetime import datetime

import requests
from dotenv import load_dotenv

from vppadmin.cdn.images import ImagesClient, load_images_config
from vppadmin.cdn.purge import MissingSiteUrlError, load_purge_config, resolve_site_url
from vppadmin.search.index_check import SearchIndexClient, load_search_config
from vppadmin.storage.metrics import probe_database
from vppadmin.storage.pg_config import load_db_credentials, load_product_metrics_config
from vppadmin.storage.pg_pool import Database

CHECKS = ("env", "db", "images", "search", "sitemap")


def check_env():
    """Report which integrations have complete configuration"""
    print("📋 Checking Configuration")
    print("-" * 40)

    configured = {
        "Database (PG_*)": load_db_credentials() is not None,
        "CDN purge (CLOUDFLARE_*)": load_purge_config() is not None,
        "Images (CF_IMAGES_*)": load_images_config() is not None,
        "Search (ALGOLIA_*)": load_search_config() is not None,
    }
    for name, ok in configured.items():
        print(f"  {name}: {'✅' if ok else '❌'}")
    return configured["Database (PG_*)"]


def check_db():
    print("\n🗄️  Checking Database")
    print("-" * 40)

    credentials = load_db_credentials()
    if credentials is None:
        print("  Database: ❌ Missing PG_* environment variables")
        return False

    db = Database(credentials, max_size=1)
    try:
        result = probe_database(db, load_product_metrics_config())
    finally:
        db.close()

    if result.ok:
        print(f"  Database: ✅ {result.latency_ms} ms, published={result.published}, lastmod={result.lastmod}")
    else:
        print(f"  Database: ❌ {result.error_code} ({result.details or 'no details'})")
    return result.ok


def check_images(session):
    print("\n🖼️  Checking Images API")
    print("-" * 40)

    config = load_images_config()
    if config is None:
        print("  Images: ⚠️  Not configured")
        return True

    result = ImagesClient(config, session=session).test()
    if result.ok:
        print(f"  Images: ✅ {result.latency_ms} ms, attempts={result.attempts}")
    else:
        reason = "timeout" if result.timed_out else f"HTTP {result.status}"
        print(f"  Images: ❌ {reason}, rays={result.ray_ids}")
    return result.ok


def check_search(session):
    print("\n🔎 Checking Search Index")
    print("-" * 40)

    config = load_search_config()
    if config is None:
        print("  Search: ⚠️  Not configured")
        return True

    result = SearchIndexClient(config, session=session).verify_index()
    if result.ok:
        print(f"  Search: ✅ index '{config.index_name}' found in {result.latency_ms} ms")
    else:
        print(f"  Search: ❌ {result.error_code} ({result.error_message or 'no details'})")
    return result.ok


def check_sitemap(session, site_url=None):
    print("\n🗺️  Checking Sitemap")
    print("-" * 40)

    try:
        site = resolve_site_url(site_url)
    except MissingSiteUrlError:
        print("  Sitemap: ⚠️  SITE_URL not set")
        return True

    try:
        response = session.get(f"{site}/sitemap.xml", headers={"User-Agent": "vpp-connectivity-check"}, timeout=10)
    except requests.exceptions.RequestException as e:
        print(f"  Sitemap: ❌ {e}")
        return False

    if response.ok:
        print(f"  Sitemap: ✅ {site}/sitemap.xml ({response.status_code})")
    else:
        print(f"  Sitemap: ❌ HTTP {response.status_code}")
    return response.ok


def build_parser():
    parser = argparse.ArgumentParser(description="Connectivity check for the admin backend integrations")
    parser.add_argument(
        "--only",
        choices=CHECKS,
        action="append",
        help="Run only the named check (repeatable)",
    )
    parser.add_argument("--site-url", help="Site origin for the sitemap probe (defaults to SITE_URL)")
    return parser


def main(argv=None):
    """Main status check"""
    load_dotenv()
    args = build_parser().parse_args(argv)
    selected = args.only or list(CHECKS)

    print("🔍 Virtual Product Pages Connectivity Check")
    print("=" * 50)
    print(f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    session = requests.Session()
    results = []
    if "env" in selected:
        results.append(check_env())
    if "db" in selected:
        results.append(check_db())
    if "images" in selected:
        results.append(check_images(session))
    if "search" in selected:
        results.append(check_search(session))
    if "sitemap" in selected:
        results.append(check_sitemap(session, args.site_url))

    print("\n" + "=" * 50)
    if all(results):
        print("✅ All selected checks passed")
        return 0
    print("❌ One or more checks failed")
    return 1


if __name__ == "__main__":
    sys.exit(main())
