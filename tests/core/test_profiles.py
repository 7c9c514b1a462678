from __future__ import annotations

import pytest

from voiceflow.errors import CatalogLookupError, InvalidSelectionError
from voiceflow.host import HostCapabilities
from voiceflow.profiles import EffectiveSelection, ProfileResolver

pytestmark = pytest.mark.core_headless


@pytest.fixture
def resolver(catalog):
    return ProfileResolver(catalog)


def test_profile_resolves_to_its_pair(resolver):
    assert resolver.resolve("lightweight") == EffectiveSelection("ms-test", "tiny-llm")
    assert resolver.resolve("recommended") == EffectiveSelection("asr-test", "tiny-llm")


def test_overrides_replace_profile_choices(resolver):
    assert resolver.resolve("recommended", stt_override="ms-test") == EffectiveSelection("ms-test", "tiny-llm")


def test_manual_selection_needs_both_models(resolver):
    assert resolver.resolve(None, "asr-test", "tiny-llm") == EffectiveSelection("asr-test", "tiny-llm")
    with pytest.raises(CatalogLookupError):
        resolver.resolve(None, "asr-test", None)
    with pytest.raises(CatalogLookupError):
        resolver.resolve(None, None, "tiny-llm")


def test_unknown_and_miscast_ids_are_rejected(resolver):
    with pytest.raises(CatalogLookupError):
        resolver.resolve("ultra")
    with pytest.raises(CatalogLookupError):
        resolver.resolve("lightweight", llm_override="missing-llm")
    with pytest.raises(InvalidSelectionError):
        resolver.resolve("lightweight", stt_override="tiny-llm")


@pytest.mark.parametrize(
    "memory_gb, expected",
    [
        (0, "lightweight"),
        (4, "lightweight"),
        (8, "lightweight"),
        (15, "lightweight"),
        (16, "recommended"),
        (23, "recommended"),
        (24, "quality"),
        (128, "quality"),
    ],
)
def test_auto_select_follows_memory_tiers(resolver, memory_gb, expected):
    assert resolver.auto_select(HostCapabilities(memory_gb, True)) == expected


def test_optional_runtime_follows_stt_family(resolver):
    assert resolver.requires_optional_runtime(EffectiveSelection("asr-test", "tiny-llm")) is True
    assert resolver.requires_optional_runtime(EffectiveSelection("ms-test", "tiny-llm")) is False


def test_preflight_warns_only_when_runtime_missing(resolver):
    consolidated = EffectiveSelection("asr-test", "tiny-llm")

    assert resolver.preflight(consolidated, HostCapabilities(16, True)) is None
    assert resolver.preflight(EffectiveSelection("ms-test", "tiny-llm"), HostCapabilities(16, False)) is None

    warning = resolver.preflight(consolidated, HostCapabilities(16, False))
    assert warning is not None
    assert warning.asset_id == "asr-test"
    assert "Python 3.10+" in warning.message
