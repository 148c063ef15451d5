import os
import sys
from datetime import date

import requests

base_url = os.getenv("STOCKLEDGER_BASE_URL", "http://localhost:8000").rstrip("/")
stock_date = os.getenv("STOCKLEDGER_DATE") or date.today().isoformat()


def main() -> int:
    ready_response = requests.get(f"{base_url}/ready", timeout=15)
    ready_response.raise_for_status()
    if not ready_response.json().get("ok"):
        print("Service is up but the database is not reachable", file=sys.stderr)
        return 1

    summary_response = requests.get(
        f"{base_url}/stock/summary",
        params={"stock_date": stock_date},
        timeout=15,
    )
    summary_response.raise_for_status()

    integrity_response = requests.get(
        f"{base_url}/stock/integrity",
        params={"stock_date": stock_date},
        timeout=30,
    )
    integrity_response.raise_for_status()

    summary = summary_response.json()
    integrity = integrity_response.json()
    print(f"Ledger date: {stock_date}")
    print(f"Products: {summary['total_products']}, closing stock: {summary['total_closing_stock']}")
    print(f"Stock value: {summary['total_stock_value']:.2f}")
    print(f"Integrity: {integrity['valid_records']}/{integrity['total_records']} records valid")
    for issue in integrity["issues"]:
        print(f"  {issue['product_id']}: {'; '.join(issue['issues'])}", file=sys.stderr)
    return 0 if integrity["valid"] else 2


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except requests.RequestException as exc:
        print(f"Ledger probe failed: {exc}", file=sys.stderr)
        raise SystemExit(1)
