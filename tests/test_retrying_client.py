from unittest.mock import AsyncMock

import pytest

from core.errors import (
    GenerationError,
    GeneratorOverloadedError,
    GeneratorUnavailableError,
)
from core.retrying_client import RetryingGeneratorClient
from core.usage import TokenUsage, TokenUsageTracker


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_backoff_doubles_and_caps():
    client = RetryingGeneratorClient(
        AsyncMock(), model_id="m", initial_delay=1.0, max_delay=5.0
    )
    assert [client.backoff_delay(i) for i in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_overload_is_retried_then_succeeds():
    generate = AsyncMock(
        side_effect=[
            GeneratorOverloadedError("overloaded", status_code=529),
            GeneratorOverloadedError("Overloaded"),
            ("text", TokenUsage(2, 3)),
        ]
    )
    sleep = RecordingSleep()
    tracker = TokenUsageTracker()
    client = RetryingGeneratorClient(
        generate,
        model_id="model-x",
        max_retries=5,
        initial_delay=0.5,
        max_delay=10,
        token_tracker=tracker,
        sleep=sleep,
    )

    text, usage = await client.call("prompt", "Outline")

    assert text == "text"
    assert usage == TokenUsage(2, 3)
    assert sleep.delays == [0.5, 1.0]
    assert generate.await_count == 3
    generate.assert_awaited_with("model-x", "prompt")
    assert tracker.get_operation_usage("Outline") == TokenUsage(2, 3)


@pytest.mark.asyncio
async def test_overload_gives_up_after_max_retries():
    generate = AsyncMock(side_effect=GeneratorOverloadedError("overloaded"))
    sleep = RecordingSleep()
    client = RetryingGeneratorClient(
        generate, model_id="m", max_retries=2, initial_delay=1, max_delay=60, sleep=sleep
    )

    with pytest.raises(GeneratorOverloadedError):
        await client.call("prompt")

    assert generate.await_count == 3
    assert sleep.delays == [1, 2]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error", [GenerationError("bad request"), GeneratorUnavailableError("dns")]
)
async def test_other_errors_propagate_immediately(error):
    generate = AsyncMock(side_effect=error)
    sleep = RecordingSleep()
    client = RetryingGeneratorClient(generate, model_id="m", sleep=sleep)

    with pytest.raises(type(error)):
        await client.call("prompt")

    assert generate.await_count == 1
    assert sleep.delays == []


class FakeAvailability:
    def __init__(self, available: bool, recovers: bool):
        self.available = available
        self.recovers = recovers
        self.waited: list[float] = []

    async def is_available(self) -> bool:
        return self.available

    async def wait_for_availability(self, timeout: float) -> bool:
        self.waited.append(timeout)
        if self.recovers:
            self.available = True
        return self.recovers


@pytest.mark.asyncio
async def test_waits_for_availability_before_calling():
    generate = AsyncMock(return_value=("ok", None))
    availability = FakeAvailability(available=False, recovers=True)
    client = RetryingGeneratorClient(
        generate, model_id="m", availability=availability, availability_timeout=42
    )

    assert await client.call("prompt") == ("ok", None)
    assert availability.waited == [42]


@pytest.mark.asyncio
async def test_unavailable_provider_is_not_called():
    generate = AsyncMock(return_value=("ok", None))
    availability = FakeAvailability(available=False, recovers=False)
    client = RetryingGeneratorClient(
        generate, model_id="m", availability=availability, availability_timeout=1
    )

    with pytest.raises(GeneratorUnavailableError):
        await client.call("prompt")
    generate.assert_not_awaited()
