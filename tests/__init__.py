# Flight Operations Live Test Suite
#
# This package contains:
# - Live API tests (pytest + httpx)
# - Stress/load tests (Locust)
#
# Run with: python -m tests.run [unit|smoke|full|api|stress|all]
