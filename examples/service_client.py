"""Example: Using a running TokenGate service from another process.

Start the service first::

    TOKENGATE_CONFIG=examples/limits.yaml tokengate

then run this script.  It pushes a fresh configuration, spends a
client's budget through the forward-auth endpoint, and prints the
bucket state.
"""

import asyncio

import httpx

BASE_URL = "http://localhost:8000"


async def main() -> None:
    async with httpx.AsyncClient(base_url=BASE_URL) as client:
        resp = await client.put(
            "/config",
            json=[{"id": "partner-api", "intervalSeconds": 10, "tokensPerInterval": 3}],
        )
        resp.raise_for_status()
        print("Loaded:", resp.json())

        for attempt in range(1, 6):
            resp = await client.get("/check", headers={"X-Client-Id": "partner-api"})
            print(f"  request {attempt}: HTTP {resp.status_code}")

        bucket = (await client.get("/limits/partner-api")).json()
        print(f"\nRemaining {bucket['remaining']}/{bucket['capacity']}, "
              f"next refill at {bucket['next_refill_at_millis']}ms")


if __name__ == "__main__":
    asyncio.run(main())
