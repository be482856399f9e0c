# Storefront Catalog Live-Server Test Suite
#
# This package contains:
# - API tests against a running Flask server (pytest + httpx)
# - Stress/load tests (Locust)
#
# Run with: python -m tests.run [smoke|full|api|stress]
