import asyncio

import pytest

from mss_widget.single_flight import SingleFlight


def test_concurrent_callers_share_one_run():
	async def scenario():
		flight = SingleFlight()
		release = asyncio.Event()
		calls = []

		async def work():
			calls.append(1)
			await release.wait()
			return 42

		tasks = [asyncio.create_task(flight.run_exclusive("k", work)) for _ in range(10)]
		await asyncio.sleep(0)
		assert flight.in_flight_keys == ["k"]
		release.set()
		results = await asyncio.gather(*tasks)
		return calls, results, flight.in_flight_keys

	calls, results, remaining = asyncio.run(scenario())
	assert len(calls) == 1
	assert results == [42] * 10
	assert remaining == []


def test_different_keys_do_not_wait_for_each_other():
	async def scenario():
		flight = SingleFlight()
		gate = asyncio.Event()
		started = []

		async def blocked():
			started.append("a")
			await gate.wait()
			return "a"

		async def free():
			started.append("b")
			return "b"

		slow = asyncio.create_task(flight.run_exclusive("a", blocked))
		await asyncio.sleep(0)
		fast = await flight.run_exclusive("b", free)
		gate.set()
		return started, fast, await slow

	started, fast, slow = asyncio.run(scenario())
	assert sorted(started) == ["a", "b"]
	assert (fast, slow) == ("b", "a")


def test_sequential_calls_run_again():
	async def scenario():
		flight = SingleFlight()
		calls = []

		async def work():
			calls.append(1)
			return len(calls)

		return [await flight.run_exclusive("k", work) for _ in range(3)]

	assert asyncio.run(scenario()) == [1, 2, 3]


def test_failed_run_is_raised_to_its_starter_and_retried_by_waiters():
	async def scenario():
		flight = SingleFlight()
		release = asyncio.Event()
		calls = []

		async def work():
			calls.append(1)
			if len(calls) == 1:
				await release.wait()
				raise ConnectionError("store down")
			return "ok"

		owner = asyncio.create_task(flight.run_exclusive("k", work))
		await asyncio.sleep(0)
		waiters = [asyncio.create_task(flight.run_exclusive("k", work)) for _ in range(3)]
		await asyncio.sleep(0)
		release.set()
		owner_result = await asyncio.gather(owner, return_exceptions=True)
		return calls, owner_result[0], await asyncio.gather(*waiters)

	calls, owner_result, waiter_results = asyncio.run(scenario())
	assert isinstance(owner_result, ConnectionError)
	assert waiter_results == ["ok", "ok", "ok"]
	assert len(calls) == 2


def test_cancelled_starter_does_not_abort_the_shared_run():
	async def scenario():
		flight = SingleFlight()
		release = asyncio.Event()
		finished = []

		async def work():
			await release.wait()
			finished.append(1)
			return "id-1"

		owner = asyncio.create_task(flight.run_exclusive("k", work))
		await asyncio.sleep(0)
		waiter = asyncio.create_task(flight.run_exclusive("k", work))
		await asyncio.sleep(0)
		owner.cancel()
		await asyncio.sleep(0)
		release.set()
		with pytest.raises(asyncio.CancelledError):
			await owner
		return finished, await waiter

	finished, result = asyncio.run(scenario())
	assert finished == [1]
	assert result == "id-1"


def test_cancelled_waiter_leaves_others_untouched():
	async def scenario():
		flight = SingleFlight()
		release = asyncio.Event()

		async def work():
			await release.wait()
			return 7

		owner = asyncio.create_task(flight.run_exclusive("k", work))
		await asyncio.sleep(0)
		impatient = asyncio.create_task(asyncio.wait_for(flight.run_exclusive("k", work), timeout=0.01))
		with pytest.raises(asyncio.TimeoutError):
			await impatient
		release.set()
		return await owner

	assert asyncio.run(scenario()) == 7
