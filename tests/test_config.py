"""配置合并与校验测试。"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from webp_converter.core.config import (
    ConversionPolicy,
    load_policy_file,
    policy_from_mapping,
    validate_policy,
)
from webp_converter.core.exceptions import InvalidConfigurationError


def test_defaults_match_host_plugin() -> None:
    policy = policy_from_mapping({})

    assert policy == ConversionPolicy(
        quality=85,
        lossless=False,
        only_smaller_files=True,
        min_quality=70,
        process_stylesheets=True,
        process_imports=True,
    )


def test_host_keys_and_snake_case_keys_are_accepted() -> None:
    policy = policy_from_mapping(
        {"quality": 80, "minQuality": 60, "onlySmallerFiles": False, "process_stylesheets": False}
    )

    assert policy.quality == 80
    assert policy.min_quality == 60
    assert policy.only_smaller_files is False
    assert policy.process_stylesheets is False
    assert policy.process_imports is True


def test_unknown_key_is_rejected() -> None:
    with pytest.raises(InvalidConfigurationError):
        policy_from_mapping({"qualty": 80})


@pytest.mark.parametrize(
    "policy",
    [
        ConversionPolicy(quality=70, min_quality=80),
        ConversionPolicy(quality=101),
        ConversionPolicy(quality=85, min_quality=-1),
        ConversionPolicy(quality=True),  # type: ignore[arg-type]
        ConversionPolicy(lossless="yes"),  # type: ignore[arg-type]
    ],
)
def test_invalid_policies_are_fatal(policy: ConversionPolicy) -> None:
    with pytest.raises(InvalidConfigurationError):
        validate_policy(policy)


def test_equal_quality_bounds_are_valid() -> None:
    policy = ConversionPolicy(quality=70, min_quality=70)

    assert validate_policy(policy) is policy


def test_load_policy_file(tmp_path: Path) -> None:
    config_path = tmp_path / "webp.json"
    config_path.write_text(json.dumps({"quality": 80, "minQuality": 60, "processCss": False}), encoding="utf-8")

    policy = load_policy_file(config_path)

    assert policy.quality == 80
    assert policy.min_quality == 60
    assert policy.process_stylesheets is False


def test_load_policy_file_rejects_bad_json(tmp_path: Path) -> None:
    config_path = tmp_path / "webp.json"
    config_path.write_text("{quality: 80", encoding="utf-8")

    with pytest.raises(InvalidConfigurationError):
        load_policy_file(config_path)

    config_path.write_text("[80]", encoding="utf-8")
    with pytest.raises(InvalidConfigurationError):
        load_policy_file(config_path)
