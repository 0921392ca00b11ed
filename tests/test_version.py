"""Tests for version.py — parsing, precedence, bumping."""

import pytest

from release_tags.errors import ParseError
from release_tags.version import compare, latest, make, normalize_sub_path, parse, parse_for, tag_name


def test_parse_bare():
    v = parse("v1.2.3")
    assert v.full_version == "v1.2.3"
    assert v.sub_path == ""
    assert v.semver == "v1.2.3"
    assert (v.major, v.minor, v.patch) == (1, 2, 3)
    assert v.prerelease is None


def test_parse_sub_path_and_prerelease():
    v = parse("services/api/v2.0.0-rc.1")
    assert v.sub_path == "services/api"
    assert v.semver == "v2.0.0-rc.1"
    assert v.prerelease == "rc.1"
    assert v.is_prerelease


@pytest.mark.parametrize(
    "raw",
    ["1.2.3", "v1.2", "v1.2.3.4", "/v1.2.3", "api//v1.2.3", "api/v1.2.3/", "v1.2.3-", "v1.2.3-rc..1", "", "vx.y.z"],
)
def test_parse_rejects(raw):
    with pytest.raises(ParseError):
        parse(raw)


def test_parse_error_carries_tag():
    with pytest.raises(ParseError) as exc:
        parse("release-1")
    assert exc.value.tag == "release-1"
    assert exc.value.to_dict()["kind"] == "parse_error"


def test_parse_for_adds_v_and_sub_path():
    assert parse_for("api", "1.2.0").full_version == "api/v1.2.0"
    assert parse_for("/api/", "v1.2.0").full_version == "api/v1.2.0"
    assert parse_for("", "v1.2.0").full_version == "v1.2.0"


def test_normalize_sub_path():
    assert normalize_sub_path(None) == ""
    assert normalize_sub_path("api/") == "api"
    with pytest.raises(ParseError):
        normalize_sub_path("api//web")


def test_tag_name():
    assert tag_name("", "production") == "production"
    assert tag_name("api", "production") == "api/production"


def test_precedence_semver_spec_order():
    ordered = [
        "v1.0.0-alpha",
        "v1.0.0-alpha.1",
        "v1.0.0-alpha.beta",
        "v1.0.0-beta",
        "v1.0.0-beta.2",
        "v1.0.0-beta.11",
        "v1.0.0-rc.1",
        "v1.0.0",
        "v1.0.1",
        "v1.1.0",
        "v2.0.0",
    ]
    versions = [parse(v) for v in reversed(ordered)]
    assert [v.full_version for v in sorted(versions, key=lambda v: v.precedence)] == ordered


def test_numeric_compares_numerically():
    assert compare(parse("v1.10.0"), parse("v1.9.0")) == 1
    assert compare(parse("v1.0.0-rc.10"), parse("v1.0.0-rc.9")) == 1


def test_compare_ignores_sub_path():
    assert compare(parse("api/v1.0.0"), parse("web/v1.0.0")) == 0
    assert compare(parse("v1.0.0"), parse("v1.0.0-rc.1")) == 1
    assert compare(parse("v1.0.0-rc.1"), parse("v1.0.0")) == -1


def test_version_is_immutable():
    v = parse("v1.0.0")
    with pytest.raises(Exception):
        v.major = 2


@pytest.mark.parametrize(
    "start,kind,expected",
    [
        ("v1.2.3", "patch", "v1.2.4"),
        ("v1.2.3", "minor", "v1.3.0"),
        ("v1.2.3", "major", "v2.0.0"),
        ("v1.3.0-rc.1", "patch", "v1.3.0"),
        ("v1.3.0-rc.1", "minor", "v1.3.0"),
        ("v1.3.1-rc.1", "minor", "v1.4.0"),
        ("v2.0.0-rc.1", "major", "v2.0.0"),
        ("api/v0.0.0", "minor", "api/v0.1.0"),
    ],
)
def test_bump(start, kind, expected):
    assert parse(start).bump(kind).full_version == expected


def test_bump_unknown_kind():
    with pytest.raises(ParseError):
        parse("v1.0.0").bump("huge")


def test_with_prerelease():
    assert parse("api/v1.0.0").with_prerelease("rc.1").full_version == "api/v1.0.0-rc.1"
    with pytest.raises(ParseError):
        parse("v1.0.0").with_prerelease("rc..1")


def test_make_matches_parse():
    assert make("api", 1, 2, 3, "beta.1") == parse("api/v1.2.3-beta.1")


def test_latest():
    versions = [parse("v1.0.0"), parse("v1.1.0-rc.1"), parse("v0.9.0")]
    assert latest(versions).full_version == "v1.1.0-rc.1"
    assert latest(versions, include_prereleases=False).full_version == "v1.0.0"
    assert latest([]) is None
