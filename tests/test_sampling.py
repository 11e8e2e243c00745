import threading

import pytest

from flowcollect.sampling import BasicSamplingRateSystem, SingleSamplingRateSystem


def test_basic_round_trip():
    system = BasicSamplingRateSystem()
    system.add_sampling_rate(9, 42, 1000)
    assert system.get_sampling_rate(9, 42) == 1000


def test_basic_missing_raises():
    system = BasicSamplingRateSystem()
    with pytest.raises(KeyError, match="sampling rate not found"):
        system.get_sampling_rate(10, 1)


def test_basic_keys_are_separate():
    system = BasicSamplingRateSystem()
    system.add_sampling_rate(9, 1, 100)
    system.add_sampling_rate(10, 1, 200)
    system.add_sampling_rate(9, 2, 300)
    assert system.get_sampling_rate(9, 1) == 100
    assert system.get_sampling_rate(10, 1) == 200
    assert system.get_sampling_rate(9, 2) == 300
    with pytest.raises(KeyError):
        system.get_sampling_rate(10, 2)


def test_basic_overwrite_keeps_latest():
    system = BasicSamplingRateSystem()
    system.add_sampling_rate(10, 5, 64)
    system.add_sampling_rate(10, 5, 128)
    assert system.get_sampling_rate(10, 5) == 128


def test_basic_concurrent_additions():
    system = BasicSamplingRateSystem()

    def add(domain):
        system.add_sampling_rate(10, domain, domain + 1)

    threads = [threading.Thread(target=add, args=(domain,)) for domain in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert [system.get_sampling_rate(10, domain) for domain in range(20)] == list(range(1, 21))


def test_single_returns_fixed_rate():
    system = SingleSamplingRateSystem(1)
    assert system.get_sampling_rate(9, 0) == 1
    assert system.get_sampling_rate(10, 99) == 1


def test_single_ignores_additions():
    system = SingleSamplingRateSystem(1)
    system.add_sampling_rate(9, 0, 500)
    assert system.get_sampling_rate(9, 0) == 1