#!/usr/bin/env python3
"""
Smoke test for a deployed Pigeon SMS wallet service.
"""

import asyncio
import httpx
import sys
from typing import Dict, Any, Optional


async def check_endpoint(
    client: httpx.AsyncClient,
    url: str,
    method: str = "GET",
    data: Optional[Dict[str, Any]] = None,
    expected_status: int = 200
) -> Dict[str, Any]:
    """Call a single endpoint and compare its status code."""
    try:
        if method == "GET":
            response = await client.get(url)
        elif method == "POST":
            response = await client.post(url, json=data)
        else:
            raise ValueError(f"Unsupported method: {method}")

        return {
            "url": url,
            "method": method,
            "status_code": response.status_code,
            "success": response.status_code == expected_status,
            "response": response.json() if response.headers.get("content-type", "").startswith("application/json") else response.text,
            "error": None
        }
    except (httpx.HTTPError, ValueError) as e:
        return {
            "url": url,
            "method": method,
            "status_code": None,
            "success": False,
            "response": None,
            "error": str(e)
        }


async def check_deployment(base_url: str) -> bool:
    """Run the read-only checks against ``base_url``."""
    print(f"Checking deployment at: {base_url}")
    print("=" * 60)

    async with httpx.AsyncClient(timeout=30.0) as client:
        checks = [
            {
                "name": "Health Check",
                "url": f"{base_url}/healthz",
                "method": "GET"
            },
            {
                "name": "Metrics",
                "url": f"{base_url}/metrics",
                "method": "GET"
            },
            {
                "name": "Webhook Health",
                "url": f"{base_url}/api/webhook-health",
                "method": "GET"
            },
            # A phone nobody onboarded: exercises store access without side effects
            {
                "name": "Algorand Address Lookup",
                "url": f"{base_url}/api/wallet/algorand/address",
                "method": "POST",
                "data": {"phone": "0000000000"},
                "expected_status": 404
            },
            {
                "name": "Solana Address Lookup",
                "url": f"{base_url}/api/wallet/solana/address",
                "method": "POST",
                "data": {"phone": "0000000000"},
                "expected_status": 404
            },
            {
                "name": "Webhook Payload Validation",
                "url": f"{base_url}/api/sms-webhook",
                "method": "POST",
                "data": {},
                "expected_status": 400
            },
        ]

        results = []
        for check in checks:
            print(f"Checking: {check['name']}")
            result = await check_endpoint(
                client,
                check["url"],
                check["method"],
                check.get("data"),
                check.get("expected_status", 200)
            )
            results.append({**check, **result})

            if result["success"]:
                print(f"  OK - Status: {result['status_code']}")
            else:
                print(f"  FAILED - Status: {result.get('status_code', 'N/A')}, Error: {result['error']}")

            print()

        print("=" * 60)
        print("DEPLOYMENT CHECK SUMMARY")
        print("=" * 60)

        passed = sum(1 for r in results if r["success"])
        total = len(results)

        print(f"Checks Passed: {passed}/{total}")

        if passed == total:
            print("All checks passed. Deployment is working correctly.")
            return True

        print("Some checks failed. Check the deployment.")
        for check in (r for r in results if not r["success"]):
            print(f"  - {check['name']}: {check['error'] or 'HTTP ' + str(check['status_code'])}")
        return False


async def main():
    if len(sys.argv) != 2:
        print("Usage: python check_deployment.py <base_url>")
        print("Example: python check_deployment.py https://pigeon-sms-wallet.onrender.com")
        sys.exit(1)

    base_url = sys.argv[1].rstrip('/')
    success = await check_deployment(base_url)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    asyncio.run(main())
