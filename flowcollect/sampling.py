"""Sampling rates remembered per protocol version and observation domain."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass


class SamplingRateSystem(ABC):
    """Stores and retrieves sampling rates."""

    @abstractmethod
    def get_sampling_rate(self, version: int, obs_domain_id: int) -> int:
        """Return the sampling rate; raises KeyError when none is known."""

    @abstractmethod
    def add_sampling_rate(self, version: int, obs_domain_id: int, sampling_rate: int) -> None:
        """Remember a sampling rate."""


class BasicSamplingRateSystem(SamplingRateSystem):
    """Thread-safe store keyed by version and observation domain."""

    def __init__(self) -> None:
        self._rates: dict[tuple[int, int], int] = {}
        self._lock = threading.Lock()

    def add_sampling_rate(self, version: int, obs_domain_id: int, sampling_rate: int) -> None:
        with self._lock:
            self._rates[(version, obs_domain_id)] = sampling_rate

    def get_sampling_rate(self, version: int, obs_domain_id: int) -> int:
        with self._lock:
            try:
                return self._rates[(version, obs_domain_id)]
            except KeyError:
                raise KeyError("sampling rate not found") from None


@dataclass
class SingleSamplingRateSystem(SamplingRateSystem):
    """Always answers with one fixed sampling rate and ignores additions."""

    sampling: int = 0

    def add_sampling_rate(self, version: int, obs_domain_id: int, sampling_rate: int) -> None:
        """Additions are ignored."""

    def get_sampling_rate(self, version: int, obs_domain_id: int) -> int:
        return self.sampling