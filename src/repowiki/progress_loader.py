#!/usr/bin/env python3
"""
Progress Loader System

Progress events emitted by the indexing pipeline, and an animated terminal
loader that renders them so the terminal is never idle during long builds.
"""

import atexit
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional


class ProgressPhase(Enum):
    """Stages of an indexing run."""
    DISCOVERY = "discovery"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    INDEXING = "indexing"
    LOADING = "loading"


@dataclass
class ProgressEvent:
    """One progress update; percent is None when the total is unknown."""
    phase: ProgressPhase
    message: str
    percent: Optional[float] = None

    def describe(self) -> str:
        if self.percent is None:
            return f"{self.phase.value}: {self.message}"
        return f"{self.phase.value}: {self.message} ({self.percent:.0f}%)"


ProgressCallback = Callable[[ProgressEvent], None]


class LoaderStyle(Enum):
    """Different styles of progress loaders."""
    SPINNER = "spinner"
    PROGRESS_BAR = "progress_bar"
    PULSE = "pulse"


@dataclass
class LoaderConfig:
    """Configuration for a progress loader."""
    task_name: str
    style: LoaderStyle = LoaderStyle.SPINNER
    update_interval: float = 0.15
    show_elapsed: bool = True
    prefix: str = ""
    suffix: str = ""


class ProgressLoader:
    """
    Animated progress loader that keeps the terminal active.

    Features:
    - Multiple animation styles
    - Task name display
    - Elapsed time tracking
    - Thread-safe operation
    """

    ANIMATIONS = {
        LoaderStyle.SPINNER: ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"],
        LoaderStyle.PULSE: ["◐", "◓", "◑", "◒"],
    }

    def __init__(self, config: LoaderConfig, stream=None):
        self.config = config
        self.stream = stream or sys.stdout
        self.is_running = False
        self.thread: Optional[threading.Thread] = None
        self.start_time: Optional[float] = None
        self.current_frame = 0
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    def start(self):
        """Start the progress loader animation."""
        with self._lock:
            if self.is_running:
                return

            self.is_running = True
            self.start_time = time.time()
            self._stop_event.clear()
            self.current_frame = 0

            self.thread = threading.Thread(target=self._animate, daemon=True)
            self.thread.start()

    def stop(self, success_message: Optional[str] = None):
        """Stop the progress loader and optionally show a success message."""
        with self._lock:
            if not self.is_running:
                return
            self.is_running = False
            self._stop_event.set()

        # Join outside the lock, the animation thread takes it too
        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=0.5)

        self.stream.write("\r" + " " * 120 + "\r")
        if success_message:
            elapsed = time.time() - (self.start_time or 0)
            self.stream.write(f"✅ {success_message} ({elapsed:.1f}s)\n")
        self.stream.flush()

    def update_task(self, new_task_name: str):
        """Update the task name while the loader is running."""
        with self._lock:
            if self.is_running:
                self.config.task_name = new_task_name

    def render_line(self) -> str:
        frame = self._get_current_frame()
        elapsed = time.time() - (self.start_time or 0)

        with self._lock:
            task_name = self.config.task_name
            show_elapsed = self.config.show_elapsed
            prefix = self.config.prefix
            suffix = self.config.suffix

        elapsed_str = f" ({elapsed:.1f}s)" if show_elapsed else ""
        line = f"\r{prefix}{frame} {task_name}{elapsed_str}{suffix}"

        if len(line) > 115:
            line = line[:112] + "..."
        return line

    def _animate(self):
        """Animation loop that runs in a separate thread."""
        while not self._stop_event.is_set():
            line = self.render_line()

            if self.is_running and not self._stop_event.is_set():
                try:
                    self.stream.write(line)
                    self.stream.flush()
                except (OSError, ValueError):
                    # stdout closed under us
                    break

            self.current_frame += 1

            if self._stop_event.wait(self.config.update_interval):
                break

    def _get_current_frame(self) -> str:
        if self.config.style == LoaderStyle.PROGRESS_BAR:
            return self._get_progress_bar_frame()
        frames = self.ANIMATIONS.get(self.config.style, self.ANIMATIONS[LoaderStyle.SPINNER])
        return frames[self.current_frame % len(frames)]

    def _get_progress_bar_frame(self) -> str:
        """Oscillating progress bar frame."""
        bar_length = 10
        pos = self.current_frame % (bar_length * 2)
        if pos >= bar_length:
            pos = bar_length * 2 - pos - 1

        bar = "▁" * pos + "█" + "▁" * (bar_length - pos - 1)
        return f"[{bar}]"


class ProgressManager:
    """
    Central manager for progress loaders.

    Loaders are stacked: starting a nested one pauses the outer one, which is
    resumed when the nested one finishes.
    """

    def __init__(self):
        self.loader_stack: List[ProgressLoader] = []
        self._manager_lock = threading.Lock()

    @contextmanager
    def show_progress(self, task_name: str, style: LoaderStyle = LoaderStyle.SPINNER):
        """Context manager for showing progress during a task."""
        loader = ProgressLoader(LoaderConfig(task_name=task_name, style=style))

        try:
            with self._manager_lock:
                if self.loader_stack:
                    self.loader_stack[-1].stop()
                self.loader_stack.append(loader)

            loader.start()
            yield loader

        finally:
            loader.stop()

            with self._manager_lock:
                if loader in self.loader_stack:
                    self.loader_stack.remove(loader)
                if self.loader_stack and not self.loader_stack[-1].is_running:
                    self.loader_stack[-1].start()

    @contextmanager
    def indexing_progress(self, repo_name: str):
        """Specialized progress loader for an indexing run."""
        with self.show_progress(f"📚 Indexing {repo_name}", LoaderStyle.SPINNER) as loader:
            yield loader

    @contextmanager
    def search_progress(self, query: str):
        with self.show_progress(f"🔍 Searching for: {query[:60]}", LoaderStyle.PULSE) as loader:
            yield loader

    def update_current_task(self, new_task_name: str):
        """Update the current active loader's task name."""
        with self._manager_lock:
            if self.loader_stack:
                self.loader_stack[-1].update_task(new_task_name)

    def cleanup_all(self):
        """Emergency cleanup of all loaders."""
        with self._manager_lock:
            for loader in self.loader_stack[:]:
                loader.stop()
            self.loader_stack.clear()


# Global progress manager instance
progress_manager = ProgressManager()


@contextmanager
def indexing_progress(repo_name: str):
    with progress_manager.indexing_progress(repo_name) as loader:
        yield loader


@contextmanager
def search_progress(query: str):
    with progress_manager.search_progress(query) as loader:
        yield loader


def update_current_task(new_task_name: str):
    """Update the current task name."""
    progress_manager.update_current_task(new_task_name)


def cleanup_all_loaders():
    """Emergency cleanup function."""
    progress_manager.cleanup_all()


def terminal_progress_callback() -> ProgressCallback:
    """Callback that mirrors indexing events onto the active terminal loader."""
    def callback(event: ProgressEvent):
        update_current_task(f"📚 {event.describe()}")
    return callback


atexit.register(cleanup_all_loaders)
