#!/usr/bin/env python3
"""
Simple Static 404 Usage Example

This example wires the cache into a toy host: a dict of event listeners
stands in for the application's event system, and an httpx mock transport
stands in for the site answering the probe request.
"""

import asyncio
import logging
import tempfile
from pathlib import Path

import httpx

from static_404 import RequestContext, Static404, Static404Config


def not_found_site(request: httpx.Request) -> httpx.Response:
    """Every path is missing on this site."""
    return httpx.Response(404, html="<h1>Page not found</h1><nav>Home | Blog</nav>")


async def main():
    """Demonstrate the recache cycle, rule installation and serving."""
    logging.basicConfig(level=logging.INFO)

    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        config = Static404Config(
            home_url="https://example.com/",
            upload_dir=root / "uploads",
            upload_url="/uploads",
            rules_file=root / ".htaccess",
            recache_delay=0.5,
        )

        listeners: dict[str, list] = {}

        def add_action(name, callback):
            listeners.setdefault(name, []).append(callback)

        client = httpx.AsyncClient(transport=httpx.MockTransport(not_found_site))
        async with Static404(config, http_client=client) as site:
            print(f"Probe URL: {config.probe_url}")
            print(f"Registered {site.register_recache_actions(add_action)} recache actions")

            # Activation caches the page, then installs the rules
            print(f"Activation: {(await site.activate()).value}")

            # An editor saves a post a few times in a row
            for _ in range(5):
                for callback in listeners["save_post"]:
                    callback(123)
            await site.scheduler.drain()

            print("\n.htaccess:")
            print(config.rules_file.read_text())

            response = await site.handle_not_found(
                RequestContext.from_url("https://example.com/missing-page/")
            )
            print(f"Served from cache: {response.status_code} {response.body!r}")

            print("\nStatistics:")
            for key, value in (await site.get_statistics()).items():
                print(f"  {key}: {value}")

        await client.aclose()


if __name__ == "__main__":
    asyncio.run(main())
