"""Tests for the startup capability probe."""

from __future__ import annotations

import pytest
import torch

from bgremover_service import config, environment
from bgremover_service.environment import EnvironmentReport, probe_environment
from bgremover_service.errors import UnsupportedEnvironment


@pytest.fixture
def no_accelerators(monkeypatch):
    monkeypatch.setattr(environment.torch.cuda, "is_available", lambda: False)
    monkeypatch.setattr(environment, "_mps_available", lambda: False)


def test_auto_falls_back_to_cpu(no_accelerators) -> None:
    report = probe_environment(config.Settings(required_device="auto"))

    assert report.supported
    assert report.device == torch.device("cpu")
    report.ensure_supported()


def test_auto_prefers_cuda(monkeypatch) -> None:
    monkeypatch.setattr(environment.torch.cuda, "is_available", lambda: True)

    report = probe_environment(config.Settings(required_device="auto"))

    assert report.device == torch.device("cuda")


def test_missing_required_accelerator_is_unsupported(no_accelerators) -> None:
    report = probe_environment(config.Settings(required_device="cuda"))

    assert not report.supported
    with pytest.raises(UnsupportedEnvironment):
        report.ensure_supported()


def test_forced_unsupported_environment() -> None:
    report = probe_environment(config.Settings(force_unsupported=True))

    with pytest.raises(UnsupportedEnvironment):
        report.ensure_supported()


def test_required_cpu_is_always_supported(no_accelerators) -> None:
    report = probe_environment(config.Settings(required_device="CPU"))

    assert report == EnvironmentReport(device=torch.device("cpu"), supported=True)


def test_unknown_device_is_rejected_by_settings() -> None:
    with pytest.raises(ValueError):
        config.Settings(required_device="tpu")
