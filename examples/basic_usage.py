"""Basic usage example for asanawise."""

import os

from asanawise import AsanaClient, ResultShape
from asanawise.exceptions import ApiError, RateLimited
from asanawise.logging import setup_logging


def main():
    """Demonstrate basic asanawise usage."""
    setup_logging("DEBUG")

    # Personal access tokens never expire, so no refresh is configured
    client = AsanaClient(
        access_token=os.environ["ASANA_ACCESS_TOKEN"],
        max_retries=3,
        timeout=30.0,
    )

    try:
        # DATA shape: the "data" member of the response
        print("Fetching current user...")
        me = client.get("users/me", params={"opt_fields": "name,email,workspaces"})
        print(f"User: {me['name']}")

        workspace = me["workspaces"][0]["gid"]

        # NORMAL shape keeps next_page for pagination
        print("\nListing projects...")
        page = client.get(
            "projects",
            params=[("workspace", workspace), ("limit", 10)],
            result_shape=ResultShape.NORMAL,
        )
        for project in page["data"]:
            print(f"  - {project['name']}")
        if page.get("next_page"):
            print(f"  (more at offset {page['next_page']['offset']})")

        # FULL shape echoes the request with the token redacted
        print("\nFetching workspace with full response...")
        full = client.get(f"workspaces/{workspace}", result_shape=ResultShape.FULL)
        print(f"Status: {full.status} {full.reason}")
        print(f"Sent headers: {full.request.options['headers']}")

        stats = client.get_stats()
        print("\nStatistics:")
        print(f"  Total requests: {stats.total_requests}")
        print(f"  Successful: {stats.successful_requests}")
        print(f"  Total retries: {stats.total_retries}")

    except RateLimited as e:
        print(f"Rate limit exceeded after {e.attempts} attempts, retry after {e.retry_after}s")

    except ApiError as e:
        print(f"API error {e.status_code}: {e}")

    finally:
        client.close()


if __name__ == "__main__":
    main()
