"""Tests for timeline edit operations and undo/redo."""

from __future__ import annotations

import pytest

from conftest import build_project


def _project(**kwargs):
    return build_project(duration_ms=10_000, **kwargs)


class TestZoomEdits:

    def test_manual_zoom_defaults(self):
        from screencut.timeline.editing import create_manual_zoom
        p = create_manual_zoom(_project(), 2000)
        z = p.timeline.zooms[0]
        assert (z.start_ms, z.end_ms, z.level) == (2000, 3400, 1.8)
        assert z.mode == "manual"
        assert (z.manual_target.x_norm, z.manual_target.y_norm) == (0.5, 0.5)

    def test_manual_zoom_near_start(self):
        from screencut.timeline.editing import create_manual_zoom
        z = create_manual_zoom(_project(), -300).timeline.zooms[0]
        assert z.start_ms == 0
        assert z.end_ms == 1100

    def test_instant_zoom(self):
        from screencut.timeline.editing import create_instant_zoom
        z = create_instant_zoom(_project(), 1000, level=9, x_norm=1.5, y_norm=0.2).timeline.zooms[0]
        assert (z.start_ms, z.end_ms) == (1000, 1800)
        assert z.level == 4
        assert z.instant is True
        assert z.source_signal == "click"
        assert z.manual_target.x_norm == 1

    def test_inputs_not_mutated(self):
        from screencut.timeline.editing import create_manual_zoom
        original = _project()
        create_manual_zoom(original, 100)
        assert original.timeline.zooms == []

    def test_update_zoom_validates(self):
        from pydantic import ValidationError
        from screencut.timeline.editing import create_manual_zoom, update_zoom
        p = create_manual_zoom(_project(), 1000)
        zid = p.timeline.zooms[0].id
        p2 = update_zoom(p, zid, level=3, disabled=True)
        assert p2.timeline.zooms[0].level == 3
        assert p2.timeline.zooms[0].disabled is True
        assert p2.timeline.zooms[0].id == zid
        with pytest.raises(ValidationError):
            update_zoom(p, zid, level=7)

    def test_unknown_segment(self):
        from screencut.timeline.editing import SegmentNotFound, remove_zoom, update_zoom
        with pytest.raises(SegmentNotFound):
            update_zoom(_project(), "missing", level=2)
        with pytest.raises(SegmentNotFound):
            remove_zoom(_project(), "missing")

    def test_remove_zoom(self):
        from screencut.timeline.editing import create_manual_zoom, remove_zoom
        p = create_manual_zoom(create_manual_zoom(_project(), 1000), 5000)
        first = p.timeline.zooms[0].id
        assert [z.start_ms for z in remove_zoom(p, first).timeline.zooms] == [5000]

    def test_move_boundary_keeps_min_length(self):
        from screencut.timeline.editing import create_manual_zoom, move_zoom_boundary
        p = create_manual_zoom(_project(), 1000)
        zid = p.timeline.zooms[0].id
        z = move_zoom_boundary(p, zid, "start", 2390).timeline.zooms[0]
        assert z.start_ms == 2300
        z = move_zoom_boundary(p, zid, "end", 0).timeline.zooms[0]
        assert z.end_ms == 1100
        z = move_zoom_boundary(p, zid, "end", 50_000).timeline.zooms[0]
        assert z.end_ms == 10_000
        z = move_zoom_boundary(p, zid, "start", -20).timeline.zooms[0]
        assert z.start_ms == 0

    def test_regenerate_replaces_zooms(self):
        from screencut.timeline.editing import create_manual_zoom, regenerate_auto_zooms
        from screencut.timeline.models import RecordingEvent
        from screencut.zoom.auto_zoom import AutoZoomOptions
        p = create_manual_zoom(_project(), 7000)
        events = [RecordingEvent(id="c", kind="click", at_ms=1000)]
        replaced = regenerate_auto_zooms(p, events, AutoZoomOptions())
        assert [z.id for z in replaced.timeline.zooms] == ["auto-c"]
        kept = regenerate_auto_zooms(p, events, AutoZoomOptions(), keep_manual=True)
        assert [z.mode.value for z in kept.timeline.zooms] == ["manual", "auto"]


class TestSpeedEdits:

    def test_create_and_update(self):
        from screencut.timeline.editing import create_speed_segment, update_speed
        p = create_speed_segment(_project(), 500)
        s = p.timeline.speed[0]
        assert (s.start_ms, s.end_ms, s.rate) == (500, 2300, 1.5)
        p = update_speed(p, s.id, rate=0.5, disable_smooth_mouse_movement=True)
        assert p.timeline.speed[0].rate == 0.5
        assert p.timeline.speed[0].disable_smooth_mouse_movement is True

    def test_move_and_remove(self):
        from screencut.timeline.editing import create_speed_segment, move_speed_boundary, remove_speed
        p = create_speed_segment(_project(), 500)
        sid = p.timeline.speed[0].id
        assert move_speed_boundary(p, sid, "end", 4000).timeline.speed[0].end_ms == 4000
        assert remove_speed(p, sid).timeline.speed == []


class TestSettingsEdits:

    @pytest.mark.parametrize("flag", [
        "always_use_default_system_cursor", "hide_when_idle", "loop_to_start",
        "rotate_while_moving", "stop_at_end", "remove_shakes",
        "optimize_cursor_type_transitions", "click_sound", "hidden",
    ])
    def test_cursor_flags(self, flag):
        from screencut.timeline.editing import set_cursor_flag
        on = set_cursor_flag(_project(), flag, True)
        off = set_cursor_flag(on, flag, False)
        assert getattr(on.timeline.cursor, flag) is True
        assert getattr(off.timeline.cursor, flag) is False

    def test_unknown_cursor_flag(self):
        from screencut.timeline.editing import set_cursor_flag
        with pytest.raises(ValueError):
            set_cursor_flag(_project(), "sparkles", True)

    def test_update_background_and_export(self):
        from pydantic import ValidationError
        from screencut.timeline.editing import update_background, update_export
        p = update_background(_project(), type="color", color="#ff0000", padding=10)
        assert p.timeline.background.color == "#ff0000"
        assert p.timeline.background.padding == 10
        assert update_export(p, fps=30).export.fps == 30
        with pytest.raises(ValidationError):
            update_background(p, padding=999)

    def test_apply_preset(self):
        from screencut.timeline.editing import apply_preset
        from screencut.timeline.models import BackgroundSettings, StylePreset, TimelinePatch
        preset = StylePreset(name="Solid", timeline_patch=TimelinePatch(
            background=BackgroundSettings(type="color", color="#000000")))
        p = apply_preset(_project(), preset)
        assert p.timeline.background.color == "#000000"
        assert p.timeline.cursor == _project().timeline.cursor

    def test_empty_preset_is_noop(self):
        from screencut.timeline.editing import apply_preset
        from screencut.timeline.models import StylePreset
        p = _project()
        assert apply_preset(p, StylePreset(name="Nothing")) is p


class TestHelpers:

    def test_snapped_time(self):
        from screencut.timeline.editing import compute_snapped_time
        assert compute_snapped_time(155, 100) == 1600
        assert compute_snapped_time(12, 100, snap_ms=250) == 0

    def test_crop_duration_by_cuts(self):
        from screencut.timeline.editing import crop_duration_by_cuts
        from screencut.timeline.models import CutSegment
        cuts = [CutSegment(start_ms=0, end_ms=1000), CutSegment(start_ms=2000, end_ms=2500, disabled=True)]
        assert crop_duration_by_cuts(5000, cuts) == 4000
        assert crop_duration_by_cuts(500, cuts) == 1

    def test_normalize_and_sort(self):
        from screencut.timeline.editing import normalize_range, sort_by_start
        from screencut.timeline.models import SpeedSegment
        assert normalize_range(5, 2) == (2, 5)
        segs = [SpeedSegment(start_ms=300, end_ms=400, rate=1), SpeedSegment(start_ms=100, end_ms=200, rate=1)]
        assert [s.start_ms for s in sort_by_start(segs)] == [100, 300]

    def test_update_duration(self):
        from screencut.timeline.editing import update_project_duration
        assert update_project_duration(_project(), 1234.6).meta.duration_ms == 1235
        assert update_project_duration(_project(), 0).meta.duration_ms == 1


class TestEditSession:

    def test_undo_redo(self):
        from screencut.timeline.editing import EditSession, create_manual_zoom
        s = EditSession(_project())
        assert not s.can_undo and not s.can_redo
        s.apply(create_manual_zoom, 1000)
        s.apply(create_manual_zoom, 4000)
        assert len(s.timeline.zooms) == 2
        assert s.undo() is True
        assert len(s.timeline.zooms) == 1
        assert s.redo() is True
        assert len(s.timeline.zooms) == 2
        assert s.redo() is False

    def test_new_edit_clears_redo(self):
        from screencut.timeline.editing import EditSession, create_manual_zoom, set_cursor_flag
        s = EditSession(_project())
        s.apply(create_manual_zoom, 1000)
        s.undo()
        s.apply(set_cursor_flag, "hidden", True)
        assert not s.can_redo
        assert s.timeline.zooms == []

    def test_history_bounded(self):
        from screencut.timeline.editing import EditSession, create_manual_zoom
        s = EditSession(_project(), max_undo=3)
        for i in range(5):
            s.apply(create_manual_zoom, i * 1000)
        undone = 0
        while s.undo():
            undone += 1
        assert undone == 3
        assert len(s.timeline.zooms) == 2

    def test_noop_not_recorded(self):
        from screencut.timeline.editing import EditSession, apply_preset
        from screencut.timeline.models import StylePreset
        s = EditSession(_project())
        s.apply(apply_preset, StylePreset(name="Nothing"))
        assert not s.can_undo
