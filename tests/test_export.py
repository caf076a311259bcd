import pytest
from lxml import etree

from clipforge.core.nodes import clip, image, music, render, speech, title
from clipforge.exceptions import SerializationError
from clipforge.export import (
    ExportSummary,
    build_timeline,
    export_timeline,
    normalize_format,
    read_layout,
    resolve_composition,
)

from conftest import CountingBinding, build_sample_timeline


def reference_scenario():
    return render(
        clip(image(prompt="harbour at dawn"), title("Chapter One"), duration=3),
        clip(image(prompt="fishing boats"), duration=5, transition={"name": "fade", "duration": 0.5}),
        clip(image(prompt="market stalls"), duration=4),
        width=1080,
        height=1920,
        fps=30,
    )


class TestFormats:

    @pytest.mark.parametrize("alias,expected", [
        ("interchange-json", "interchange-json"),
        ("otio", "interchange-json"),
        ("interchange-xml", "interchange-xml"),
        ("XML", "interchange-xml"),
        ("premiere", "interchange-xml"),
    ])
    def test_aliases(self, alias, expected):
        assert normalize_format(alias) == expected

    def test_unknown_format(self):
        with pytest.raises(SerializationError):
            normalize_format("edl")

    def test_build_and_read_xml(self):
        timeline = build_sample_timeline()
        layout = read_layout(build_timeline(timeline, "xml"), "xml")
        assert layout["V1"][2] == pytest.approx((7.5, 4.0))


class TestSummary:

    def test_camel_case_aliases(self):
        summary = ExportSummary.from_timeline(build_sample_timeline())
        data = summary.to_dict()
        assert data == {
            "clipCount": 3,
            "trackCount": 2,
            "transitionCount": 1,
            "placeholderCount": 1,
            "textItemCount": 2,
            "skippedClips": 0,
            "totalDuration": 11.5,
            "warnings": [],
        }

    def test_populate_by_alias(self):
        summary = ExportSummary.model_validate({"clipCount": 2, "totalDuration": 4.0})
        assert summary.clip_count == 2
        assert summary.track_count == 0


class TestExportTimeline:

    def test_preview_export_xml(self, make_context, tmp_path):
        ctx = make_context(mode="preview")
        result = export_timeline(reference_scenario(), "xml", context=ctx, output=tmp_path / "story.xml")

        assert result.timeline_path == tmp_path / "story.xml"
        assert result.format == "interchange-xml"
        assert len(result.assets) == 3
        assert all(asset.is_placeholder for asset in result.assets)

        summary = result.summary.to_dict()
        assert summary["clipCount"] == 3
        assert summary["trackCount"] == 1
        assert summary["transitionCount"] == 1
        assert summary["placeholderCount"] == 3
        assert summary["textItemCount"] == 1
        assert summary["totalDuration"] == pytest.approx(11.5)
        assert summary["warnings"] == []

        root = etree.parse(str(result.timeline_path)).getroot()
        assert root.tag == "xmeml"

    def test_warnings_surface_in_summary(self, make_context, tmp_path):
        ctx = make_context(defaults={"image": CountingBinding()})
        root = render(
            clip(image(prompt="first"), duration=3),
            clip(image(), duration=3),
            clip(image(prompt="third"), duration=3),
        )
        result = export_timeline(root, "xml", context=ctx, output=tmp_path / "out.xml")

        assert result.summary.skipped_clips == 1
        assert result.summary.clip_count == 2
        assert result.summary.total_duration == pytest.approx(6.0)
        codes = [w.code for w in result.summary.warnings]
        assert "skipped-clip" in codes
        assert result.warnings == ctx.warnings

    def test_output_directory(self, make_context, tmp_path):
        result = export_timeline(reference_scenario(), "xml", context=make_context(mode="preview"),
                                 output=tmp_path, name="harbour")
        assert result.timeline_path == tmp_path / "harbour.xml"
        assert result.timeline_path.exists()

    def test_default_output_from_settings(self, make_context, tmp_path):
        result = export_timeline(reference_scenario(), "premiere", context=make_context(mode="preview"))
        assert result.timeline_path == tmp_path / "output" / "ClipForge.xml"

    def test_context_from_settings(self, tmp_path):
        # Real Pillow placeholders, no ffmpeg needed for images
        result = export_timeline(
            render(clip(image(prompt="a quiet street"), duration=2)),
            "xml",
            mode="preview",
            cache_dir=tmp_path / "cache",
            output=tmp_path / "street.xml",
        )
        (asset,) = result.assets
        assert asset.is_placeholder
        assert (tmp_path / "cache" / "media").is_dir()

    def test_otio_export(self, make_context, tmp_path):
        otio = pytest.importorskip("opentimelineio")
        result = export_timeline(reference_scenario(), "otio", context=make_context(mode="preview"),
                                 output=tmp_path / "story.otio")
        loaded = otio.adapters.read_from_file(str(result.timeline_path))
        assert len(loaded.tracks) == 1
        assert result.format == "interchange-json"


STACKED_LANES = {
    "global-and-clip-music": lambda: render(
        clip(image(prompt="a"), music(prompt="sting"), duration=3),
        clip(image(prompt="b"), duration=3),
        music(prompt="bed"),
        fps=30,
    ),
    "two-musics-in-one-clip": lambda: render(
        clip(image(prompt="a"), music(prompt="drums"), music(prompt="strings"), duration=4),
        fps=30,
    ),
    "global-overlay-and-two-visuals": lambda: render(
        clip(image(prompt="main"), image(prompt="inset"), duration=3),
        image(prompt="logo"),
        fps=30,
    ),
    "second-global-speech": lambda: render(
        clip(image(prompt="a"), speech("Hello"), duration=3),
        speech("Narration"),
        speech("Second narration", start=1),
        fps=30,
    ),
}


class TestStackedLanes:

    @pytest.mark.parametrize("fmt", ["interchange-json", "interchange-xml"])
    @pytest.mark.parametrize("case", sorted(STACKED_LANES))
    def test_every_track_round_trips(self, make_context, case, fmt):
        if fmt == "interchange-json":
            pytest.importorskip("opentimelineio")
        timeline = resolve_composition(STACKED_LANES[case](), context=make_context(mode="preview"))

        layout = read_layout(build_timeline(timeline, fmt), fmt)

        assert set(layout) == {t.id for t in timeline.tracks}
        for t in timeline.tracks:
            assert len(layout[t.id]) == len(t.items)
            for placed, item in zip(layout[t.id], t.items):
                assert placed == pytest.approx((item.start_time, item.duration))

    def test_new_lane_is_a_separate_track(self, make_context):
        timeline = resolve_composition(STACKED_LANES["global-and-clip-music"](), context=make_context(mode="preview"))
        layout = read_layout(build_timeline(timeline, "xml"), "xml")
        assert layout["A2"] == [pytest.approx((0.0, 3.0))]
        assert layout["A4"] == [pytest.approx((0.0, 6.0))]


def test_resolve_composition(make_context):
    timeline = resolve_composition(reference_scenario(), context=make_context(mode="preview"))
    assert timeline.duration == pytest.approx(11.5)
    assert timeline.placed_clip_count == 3
