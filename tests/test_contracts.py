"""Tests for cosmic_deb.contracts: pipeline models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from cosmic_deb.contracts import (
    BuildOutcome,
    BuildStage,
    Component,
    ComponentList,
    PackageSection,
    PackageSpec,
    RunSummary,
    ThermalProfile,
    ThermalSample,
)


class TestComponent:
    def test_blank_tag_and_branch_are_absent(self):
        c = Component(name="cosmic-bg", url="https://github.com/pop-os/cosmic-bg", tag="", branch="  ")
        assert c.tag is None
        assert c.branch is None

    def test_trailing_slash_stripped(self):
        c = Component(name="x", url="https://example.com/x/")
        assert c.url == "https://example.com/x"

    def test_to_dict_omits_unset_branch(self):
        c = Component(name="x", url="https://example.com/x", tag="epoch-1.0.7")
        assert c.to_dict() == {"name": "x", "url": "https://example.com/x", "tag": "epoch-1.0.7"}

    def test_to_dict_keeps_branch(self):
        c = Component(name="x", url="https://example.com/x", branch="master")
        assert c.to_dict()["branch"] == "master"
        assert c.to_dict()["tag"] == ""

    def test_frozen(self):
        c = Component(name="x", url="u")
        with pytest.raises(ValidationError):
            c.name = "y"  # type: ignore[misc]


class TestComponentList:
    def test_rejects_empty(self):
        with pytest.raises(ValidationError):
            ComponentList(repos=[])

    def test_rejects_duplicates(self):
        with pytest.raises(ValidationError, match="duplicate"):
            ComponentList(repos=[Component(name="a", url="u"), Component(name="a", url="v")])

    def test_names(self):
        cl = ComponentList(repos=[Component(name="a", url="u"), Component(name="b", url="v")])
        assert cl.names == ["a", "b"]

    def test_parses_repos_json_shape(self):
        raw = (
            '{"generated_at": "2026-02-22", "epoch_latest": "epoch-1.0.7", "repos": '
            '[{"name": "cosmic-bg", "url": "https://github.com/pop-os/cosmic-bg", "tag": ""}]}'
        )
        cl = ComponentList.model_validate_json(raw)
        assert cl.repos[0].tag is None
        assert cl.epoch_latest == "epoch-1.0.7"


class TestThermalModels:
    def test_profile_bounds(self):
        with pytest.raises(ValidationError):
            ThermalProfile(physical_cores=0, logical_threads=1, is_low_end=True, max_concurrent_jobs=1)

    def test_unavailable_sample(self):
        s = ThermalSample.unavailable()
        assert s.available is False
        assert s.temperature_c == 0.0


class TestPackageSpec:
    def _spec(self, **overrides) -> PackageSpec:
        fields = dict(
            name="cosmic-term",
            version="1.0.7~bookworm",
            arch="amd64",
            section=PackageSection.ADMIN,
            depends=("libc6 (>= 2.36)", "cosmic-icons"),
            maintainer="Jane Doe <jane@example.com>",
            description="COSMIC terminal\nA terminal emulator.\n\nBuilt from source.",
        )
        fields.update(overrides)
        return PackageSpec(**fields)

    def test_control_field_order(self):
        lines = self._spec().to_control().splitlines()
        keys = [line.split(":", 1)[0] for line in lines if not line.startswith(" ")]
        assert keys == [
            "Package", "Version", "Section", "Priority",
            "Architecture", "Depends", "Maintainer", "Description",
        ]

    def test_control_values(self):
        control = self._spec().to_control()
        assert "Package: cosmic-term\n" in control
        assert "Version: 1.0.7~bookworm\n" in control
        assert "Section: admin\n" in control
        assert "Priority: optional\n" in control
        assert "Depends: libc6 (>= 2.36), cosmic-icons\n" in control
        assert control.endswith("\n")

    def test_description_continuation_lines(self):
        control = self._spec().to_control()
        assert "Description: COSMIC terminal\n A terminal emulator.\n .\n Built from source.\n" in control

    def test_recommends_only_when_present(self):
        assert "Recommends" not in self._spec().to_control()
        control = self._spec(recommends=("adw-gtk3",)).to_control()
        assert "Recommends: adw-gtk3\n" in control

    def test_no_depends_line_when_empty(self):
        assert "Depends" not in self._spec(depends=()).to_control()

    def test_filename(self):
        assert self._spec().filename == "cosmic-term_1.0.7~bookworm_amd64.deb"


class TestOutcomes:
    def test_ok(self):
        o = BuildOutcome.ok("cosmic-bg")
        assert o.success is True
        assert o.package_name == "cosmic-bg"
        assert o.failing_stage is None

    def test_fail_accepts_string_stage(self):
        o = BuildOutcome.fail("cosmic-bg", "stage", "empty")
        assert o.success is False
        assert o.failing_stage is BuildStage.STAGE
        assert o.package_name is None

    def test_summary_failed(self):
        summary = RunSummary(
            attempted=2,
            packaged=["a"],
            outcomes=[BuildOutcome.ok("a"), BuildOutcome.fail("b", BuildStage.BUILD, "x")],
        )
        assert [o.component for o in summary.failed] == ["b"]
