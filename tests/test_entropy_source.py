import asyncio

import httpx
import pytest

from fairsettle.domain.errors import ExternalEntropyUnavailable
from fairsettle.domain.seed_combiner import combine
from fairsettle.entropy_source import BLOCK_HASH, LOCAL, RANDOM_ORG, EntropySource

RANDOM_ORG_URL = "https://random.test/json-rpc"
BLOCK_URL = "https://chain.test/v1/chain/get_info"
SERVER_SEED = "a1" * 32
BLOCK_ID = "0b" * 32


def make_source(handler, api_key="key", random_org_timeout=5.0, block_hash_timeout=3.0):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EntropySource(
        client,
        api_key,
        RANDOM_ORG_URL,
        BLOCK_URL,
        random_org_timeout=random_org_timeout,
        block_hash_timeout=block_hash_timeout,
    )


def healthy(request: httpx.Request) -> httpx.Response:
    if request.url.host == "random.test":
        return httpx.Response(200, json={"result": {"random": {"data": [SERVER_SEED]}}})
    return httpx.Response(200, json={"head_block_id": BLOCK_ID})


async def test_both_sources_available():
    result = await make_source(healthy).generate_hybrid_seed()
    assert result.server_seed == SERVER_SEED
    assert result.block_hash == BLOCK_ID
    assert result.hybrid_seed == combine(SERVER_SEED, BLOCK_ID)
    assert result.entropy_sources == [RANDOM_ORG, BLOCK_HASH]
    assert result.fully_hybrid


async def test_random_org_error_falls_back_to_local_seed():
    def handler(request):
        if request.url.host == "random.test":
            return httpx.Response(200, json={"error": {"message": "quota exceeded"}})
        return healthy(request)

    result = await make_source(handler).generate_hybrid_seed()
    assert result.entropy_sources == [BLOCK_HASH, LOCAL]
    assert len(result.server_seed) == 64
    assert result.server_seed != SERVER_SEED
    assert result.hybrid_seed == combine(result.server_seed, BLOCK_ID)
    assert not result.fully_hybrid


async def test_missing_api_key_never_calls_random_org():
    seen = []

    def handler(request):
        seen.append(request.url.host)
        return healthy(request)

    source = make_source(handler, api_key=None)
    with pytest.raises(ExternalEntropyUnavailable):
        await source.fetch_external_random()
    result = await source.generate_hybrid_seed()
    assert "random.test" not in seen
    assert LOCAL in result.entropy_sources


async def test_block_hash_failure_leaves_server_seed_alone():
    def handler(request):
        if request.url.host == "chain.test":
            return httpx.Response(500)
        return healthy(request)

    result = await make_source(handler).generate_hybrid_seed()
    assert result.block_hash is None
    assert result.hybrid_seed == SERVER_SEED
    assert result.entropy_sources == [RANDOM_ORG]


async def test_non_hex_payloads_are_rejected():
    def handler(request):
        if request.url.host == "random.test":
            return httpx.Response(200, json={"result": {"random": {"data": ["not-hex"]}}})
        return httpx.Response(200, json={"head_block_id": None})

    source = make_source(handler)
    with pytest.raises(ExternalEntropyUnavailable):
        await source.fetch_external_random()
    with pytest.raises(ExternalEntropyUnavailable):
        await source.fetch_block_hash()


async def test_slow_source_times_out():
    async def handler(request):
        if request.url.host == "chain.test":
            await asyncio.sleep(1)
        return healthy(request)

    result = await make_source(handler, block_hash_timeout=0.05).generate_hybrid_seed()
    assert result.block_hash is None
    assert result.entropy_sources == [RANDOM_ORG]


async def test_hanging_sources_fall_back_to_a_local_seed():
    async def handler(request):
        await asyncio.sleep(1)
        return healthy(request)

    result = await make_source(handler, random_org_timeout=0.05, block_hash_timeout=0.05).generate_hybrid_seed()
    assert result.block_hash is None
    assert result.entropy_sources == [LOCAL]
    assert result.hybrid_seed == result.server_seed
