"""Async usage example for asanawise with OAuth token refresh."""

import asyncio
import os
import time

from asanawise import AsyncAsanaClient, Credential, OAuthConfig
from asanawise.exceptions import CredentialInvalid, RateLimited


def save_credential(credential: Credential) -> None:
    """Persist refreshed tokens somewhere durable."""
    print(f"Token refreshed, expires at {credential.expires_at}")


async def fetch_task(client: AsyncAsanaClient, gid: str) -> dict:
    """Fetch a single task."""
    return await client.get(f"tasks/{gid}", params={"opt_fields": "name,completed"})


async def main():
    """Demonstrate async asanawise usage."""
    credential = Credential(
        access_token=os.environ["ASANA_ACCESS_TOKEN"],
        refresh_token=os.environ["ASANA_REFRESH_TOKEN"],
        expires_at=time.time() + 30,
    )
    oauth = OAuthConfig(
        client_id=os.environ["ASANA_CLIENT_ID"],
        client_secret=os.environ["ASANA_CLIENT_SECRET"],
    )

    async with AsyncAsanaClient(credential=credential, oauth=oauth) as client:
        client.on_token_refresh(save_credential)

        # The token expires inside the refresh margin; these requests
        # share a single refresh before they are sent
        gids = os.environ.get("ASANA_TASK_GIDS", "").split(",")
        try:
            tasks = await asyncio.gather(*(fetch_task(client, gid) for gid in gids if gid))
            for task in tasks:
                print(f"  - {task['name']} (completed: {task['completed']})")
        except RateLimited as e:
            print(f"Rate limited after {e.attempts} attempts")
        except CredentialInvalid as e:
            print(f"Re-authorization required: {e}")

        stats = client.get_stats()
        print(f"\nRequests: {stats.total_requests}, token refreshes: {stats.token_refreshes}")


if __name__ == "__main__":
    asyncio.run(main())
