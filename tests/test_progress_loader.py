"""
Unit tests for progress events and terminal loaders.
"""

import io

from repowiki.progress_loader import (
    LoaderConfig,
    LoaderStyle,
    ProgressEvent,
    ProgressLoader,
    ProgressManager,
    ProgressPhase,
)


def test_event_description():
    assert ProgressEvent(ProgressPhase.CHUNKING, "Chunked a.py", 42.4).describe() == \
        "chunking: Chunked a.py (42%)"
    assert ProgressEvent(ProgressPhase.DISCOVERY, "Scanning").describe() == "discovery: Scanning"


class TestProgressLoader:
    """Test a single animated loader."""

    def test_start_stop_writes_success_message(self):
        stream = io.StringIO()
        loader = ProgressLoader(LoaderConfig(task_name="Indexing", update_interval=0.01), stream=stream)

        loader.start()
        assert loader.is_running
        loader.stop("Done")

        assert not loader.is_running
        assert "✅ Done (" in stream.getvalue()

    def test_stop_without_start_is_a_no_op(self):
        stream = io.StringIO()
        ProgressLoader(LoaderConfig(task_name="Idle"), stream=stream).stop("Done")
        assert stream.getvalue() == ""

    def test_render_line_is_truncated(self):
        loader = ProgressLoader(LoaderConfig(task_name="x" * 200, show_elapsed=False), stream=io.StringIO())
        line = loader.render_line()
        assert len(line) == 115
        assert line.endswith("...")

    def test_progress_bar_frame(self):
        loader = ProgressLoader(LoaderConfig(task_name="t", style=LoaderStyle.PROGRESS_BAR), stream=io.StringIO())
        frame = loader._get_current_frame()
        assert frame.startswith("[█")
        assert len(frame) == 12

    def test_every_style_has_frames(self):
        for style in LoaderStyle:
            loader = ProgressLoader(LoaderConfig(task_name="t", style=style), stream=io.StringIO())
            if style is not LoaderStyle.PROGRESS_BAR:
                assert style in loader.ANIMATIONS
            assert loader._get_current_frame()

    def test_update_task_only_while_running(self):
        loader = ProgressLoader(LoaderConfig(task_name="first", update_interval=0.01), stream=io.StringIO())
        loader.update_task("ignored")
        assert loader.config.task_name == "first"

        loader.start()
        loader.update_task("second")
        loader.stop()
        assert loader.config.task_name == "second"


class TestProgressManager:
    """Test stacked loaders."""

    def test_nested_loader_pauses_outer(self):
        manager = ProgressManager()

        with manager.show_progress("outer") as outer:
            assert outer.is_running
            with manager.show_progress("inner") as inner:
                assert inner.is_running
                assert not outer.is_running
                manager.update_current_task("inner renamed")
                assert inner.config.task_name == "inner renamed"
            assert outer.is_running

        assert manager.loader_stack == []
        assert not outer.is_running

    def test_cleanup_all(self):
        manager = ProgressManager()
        with manager.indexing_progress("repo") as loader:
            manager.cleanup_all()
            assert not loader.is_running
            assert manager.loader_stack == []
