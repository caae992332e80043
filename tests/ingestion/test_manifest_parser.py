"""Tests for the JSON manifest parser."""

import json
from pathlib import Path

import pytest

from ssgkb.errors import InvalidFormatError, IOReadError
from ssgkb.ingestion.manifest import parse_manifest, parse_manifest_filename

MANIFEST_PATH = Path(__file__).parents[1] / "fixtures" / "ssg" / "manifests" / "manifest-test.json"

SAMPLE_MANIFEST = {
    "product_name": "test-product",
    "rules": {},
    "profiles": {
        "cis": {
            "rules": [
                "aide_build_database",
                "account_disable_post_pw_expiration",
                "accounts_password_pam_minlen",
            ]
        },
        "stig": {"rules": ["aide_build_database", "auditd_data_retention_max_log_file"]},
    },
}


class TestParseManifestFilename:
    def test_valid(self) -> None:
        assert parse_manifest_filename("manifests/manifest-al2023.json") == ("manifest-al2023", "al2023")

    def test_invalid(self) -> None:
        with pytest.raises(InvalidFormatError):
            parse_manifest_filename("manifests/al2023.json")


class TestParseManifest:
    """Tests for parse_manifest."""

    def test_profiles_and_rules(self, tmp_path) -> None:
        path = tmp_path / "manifest-xyz.json"
        path.write_text(json.dumps(SAMPLE_MANIFEST))

        parsed = parse_manifest(path)

        assert parsed.manifest.id == "manifest-xyz"
        assert parsed.manifest.product == "test-product"
        assert len(parsed.profiles) == 2
        assert sorted(p.rule_count for p in parsed.profiles) == [2, 3]
        assert len(parsed.profile_rules) == 5

    def test_profile_keys(self, tmp_path) -> None:
        path = tmp_path / "manifest-xyz.json"
        path.write_text(json.dumps(SAMPLE_MANIFEST))

        parsed = parse_manifest(path)

        cis = parsed.profiles[0]
        assert cis.id == "xyz:cis"
        assert cis.profile_id == "cis"
        assert cis.manifest_id == "manifest-xyz"
        cis_rules = [r.rule_short_id for r in parsed.profile_rules if r.profile_id == cis.id]
        assert cis_rules == SAMPLE_MANIFEST["profiles"]["cis"]["rules"]

    def test_profile_keys_follow_the_file_name(self, tmp_path) -> None:
        ids = []
        for name in ("manifest-rhel9.json", "manifest-rhel9-beta.json"):
            path = tmp_path / name
            path.write_text(json.dumps({"product_name": "rhel9", "profiles": {"cis": {"rules": ["a"]}}}))
            parsed = parse_manifest(path)
            assert parsed.manifest.product == "rhel9"
            ids.append(parsed.profiles[0].id)

        assert ids == ["rhel9:cis", "rhel9-beta:cis"]

    def test_product_falls_back_to_filename(self, tmp_path) -> None:
        manifests = tmp_path / "manifests"
        manifests.mkdir()
        path = manifests / "manifest-al2023.json"
        path.write_text(json.dumps({"product_name": "", "rules": {}, "profiles": {}}))

        parsed = parse_manifest(path)

        assert parsed.manifest.id == "manifest-al2023"
        assert parsed.manifest.product == "al2023"
        assert parsed.profiles == []

    def test_ill_typed_keys_are_tolerated(self, tmp_path) -> None:
        path = tmp_path / "manifest-odd.json"
        path.write_text(json.dumps({"profiles": {"a": {"rules": "nope"}, "b": [], "c": {"rules": ["x", 3]}}}))

        parsed = parse_manifest(path)

        assert parsed.manifest.product == "odd"
        assert [p.rule_count for p in parsed.profiles] == [0, 0, 1]
        assert [r.rule_short_id for r in parsed.profile_rules] == ["x"]

    def test_fixture_manifest(self) -> None:
        parsed = parse_manifest(MANIFEST_PATH)
        assert parsed.manifest.product == "test"
        assert [p.id for p in parsed.profiles] == ["test:cis", "test:stig"]

    def test_invalid_json(self, tmp_path) -> None:
        path = tmp_path / "manifest-bad.json"
        path.write_text("{not json")
        with pytest.raises(InvalidFormatError):
            parse_manifest(path)

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(IOReadError):
            parse_manifest(tmp_path / "manifest-gone.json")
