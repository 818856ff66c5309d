import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from fairsettle.domain.errors import ExternalEntropyUnavailable
from fairsettle.domain.seed_combiner import combine, is_hex

RANDOM_ORG = "random_org"
BLOCK_HASH = "block_hash"
LOCAL = "local"

SEED_HEX_LENGTH = 64


@dataclass(frozen=True)
class EntropyResult:
    server_seed: str
    block_hash: Optional[str]
    hybrid_seed: str
    entropy_sources: List[str] = field(default_factory=list)

    @property
    def fully_hybrid(self) -> bool:
        return self.entropy_sources == [RANDOM_ORG, BLOCK_HASH]


class EntropySource:
    """Fetches external randomness with hard timeouts.

    The Random.org string is the secret half of a commitment and the public
    block hash is the half nobody controls in advance. When Random.org is
    unreachable a local ``secrets`` seed takes its place, and the commitment is
    tagged so that audits can tell degraded outcomes apart.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        random_org_api_key: str | None,
        random_org_url: str,
        block_hash_url: str,
        random_org_timeout: float = 5.0,
        block_hash_timeout: float = 3.0,
    ):
        self.client = client
        self.random_org_api_key = random_org_api_key
        self.random_org_url = random_org_url
        self.block_hash_url = block_hash_url
        self.random_org_timeout = random_org_timeout
        self.block_hash_timeout = block_hash_timeout

    async def fetch_external_random(self) -> str:
        """Get a 64 digit hex string from Random.org.

        Returns:
            str: Hex string generated by the true-random service

        Raises:
            ExternalEntropyUnavailable: no API key, timeout, HTTP or payload error
        """
        if not self.random_org_api_key:
            raise ExternalEntropyUnavailable("Random.org API key is not configured")
        payload = {
            "jsonrpc": "2.0",
            "method": "generateStrings",
            "params": {
                "apiKey": self.random_org_api_key,
                "n": 1,
                "length": SEED_HEX_LENGTH,
                "characters": "0123456789abcdef",
                "replacement": True,
            },
            "id": 1,
        }
        try:
            response = await asyncio.wait_for(
                self.client.post(
                    self.random_org_url, json=payload, timeout=self.random_org_timeout
                ),
                timeout=self.random_org_timeout,
            )
            response.raise_for_status()
            data = response.json()
            if "error" in data:
                raise ExternalEntropyUnavailable(
                    f"Random.org error: {data['error'].get('message')}"
                )
            value = data["result"]["random"]["data"][0]
        except ExternalEntropyUnavailable:
            raise
        except (httpx.HTTPError, asyncio.TimeoutError, ValueError, KeyError, IndexError, TypeError) as e:
            raise ExternalEntropyUnavailable(f"Random.org request failed: {e!r}") from e
        if not isinstance(value, str) or not is_hex(value):
            raise ExternalEntropyUnavailable("Random.org returned a non-hex string")
        return value.lower()

    async def fetch_block_hash(self) -> str:
        """Get the head block id of the EOS chain."""
        try:
            response = await asyncio.wait_for(
                self.client.get(self.block_hash_url, timeout=self.block_hash_timeout),
                timeout=self.block_hash_timeout,
            )
            response.raise_for_status()
            data = response.json()
            value = data.get("head_block_id") or data.get("last_irreversible_block_id")
        except (httpx.HTTPError, asyncio.TimeoutError, ValueError, AttributeError) as e:
            raise ExternalEntropyUnavailable(f"Block hash request failed: {e!r}") from e
        if not isinstance(value, str) or not is_hex(value):
            raise ExternalEntropyUnavailable("Block hash response has no hex block id")
        return value.lower()

    async def generate_hybrid_seed(self) -> EntropyResult:
        """Fetch both sources concurrently and combine whatever arrived.

        Returns:
            EntropyResult: server seed, block hash, hybrid seed and source tags
        """
        try:
            random_result, block_result = await asyncio.wait_for(
                asyncio.gather(
                    self.fetch_external_random(),
                    self.fetch_block_hash(),
                    return_exceptions=True,
                ),
                timeout=max(self.random_org_timeout, self.block_hash_timeout),
            )
        except asyncio.TimeoutError:
            random_result = block_result = ExternalEntropyUnavailable("entropy sources exceeded the overall timeout")
        for result in (random_result, block_result):
            if isinstance(result, BaseException) and not isinstance(
                result, ExternalEntropyUnavailable
            ):
                raise result

        sources = []
        if isinstance(random_result, ExternalEntropyUnavailable):
            logging.warning(f"Random.org unavailable, using local seed: {random_result.detail}")
            server_seed = secrets.token_hex(SEED_HEX_LENGTH // 2)
        else:
            server_seed = random_result
            sources.append(RANDOM_ORG)

        block_hash = None
        if isinstance(block_result, ExternalEntropyUnavailable):
            logging.warning(f"Block hash unavailable: {block_result.detail}")
        else:
            block_hash = block_result
            sources.append(BLOCK_HASH)

        if RANDOM_ORG not in sources:
            sources.append(LOCAL)
        return EntropyResult(
            server_seed=server_seed,
            block_hash=block_hash,
            hybrid_seed=combine(server_seed, block_hash),
            entropy_sources=sources,
        )
