from __future__ import annotations

import pytest

from bundleforge.build.platforms import (
    ALL_PLATFORMS,
    Platform,
    PlatformOrdering,
    ToolchainTarget,
    expand_platforms,
    parse_platform,
    platform_name,
    resolve_target,
    validate_toolchain_table,
)


def test_expand_flag_combination_in_declaration_order():
    combined = Platform.WebGL | Platform.StandaloneWindows64 | Platform.iOS
    assert expand_platforms(combined) == [
        Platform.StandaloneWindows64,
        Platform.iOS,
        Platform.WebGL,
    ]


def test_expand_drops_duplicates_across_overlapping_inputs():
    requested = [Platform.Android | Platform.iOS, "ios", Platform.Android]
    assert expand_platforms(requested) == [Platform.Android, Platform.iOS]


def test_expand_none_and_empty_mask():
    assert expand_platforms(None) == []
    assert expand_platforms([]) == []


def test_parse_platform_accepts_names_aliases_and_values():
    assert parse_platform("WebGL") is Platform.WebGL
    assert parse_platform("standalonewindows64") is Platform.StandaloneWindows64
    assert parse_platform("quest") is Platform.AndroidVR
    assert parse_platform(8) is Platform.StandaloneOSX
    with pytest.raises(ValueError):
        parse_platform("dreamcast")
    with pytest.raises(ValueError):
        parse_platform(1 << 12)


def test_every_single_platform_maps_to_a_target():
    for member in ALL_PLATFORMS:
        target = resolve_target(member)
        assert target is not None, platform_name(member)
    assert resolve_target(Platform.AndroidVR).target_id == "android"


def test_toolchain_table_rejects_combined_keys():
    with pytest.raises(ValueError):
        validate_toolchain_table(
            {Platform.Android | Platform.iOS: ToolchainTarget("android", "android")}
        )


def test_ordering_places_priority_first_and_terminal_last():
    ordering = PlatformOrdering()
    ordered = ordering.order(
        [Platform.WebGL, Platform.Android, Platform.iOS, Platform.StandaloneWindows64]
    )
    assert ordered[0] is Platform.iOS
    assert ordered[-1] is Platform.WebGL
    assert ordered[1:3] == [Platform.Android, Platform.StandaloneWindows64]


@pytest.mark.parametrize(
    "requested",
    [
        [Platform.iOS, Platform.WebGL, Platform.Android],
        [Platform.WebGL, Platform.Android, Platform.iOS],
        [Platform.Android, Platform.iOS, Platform.WebGL],
    ],
)
def test_ordering_is_independent_of_input_order(requested):
    ordered = PlatformOrdering().order(requested)
    assert ordered == [Platform.iOS, Platform.Android, Platform.WebGL]


def test_ordering_from_names_is_configurable():
    ordering = PlatformOrdering.from_names(["Android"], ["iOS"])
    ordered = ordering.order([Platform.iOS, Platform.WebGL, Platform.Android])
    assert ordered == [Platform.Android, Platform.WebGL, Platform.iOS]
