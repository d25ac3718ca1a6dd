"""
==============================================================================
Scan Debouncer Tests
==============================================================================
"""

from scan_engine.scanning import ScanDebouncer


class TestScanDebouncer:
    """Repeat suppression within the interval."""

    def test_first_occurrence_passes(self, clock):
        debouncer = ScanDebouncer(0.5, clock=clock)
        assert debouncer.accept("WH967843EU2ZMM") is True
        assert debouncer.last_accepted_text == "WH967843EU2ZMM"
        assert debouncer.last_accepted_timestamp == clock.now

    def test_repeat_within_interval_suppressed(self, clock):
        debouncer = ScanDebouncer(0.5, clock=clock)
        debouncer.accept("X")
        clock.advance(0.1)
        assert debouncer.accept("X") is False

    def test_repeat_after_interval_passes(self, clock):
        debouncer = ScanDebouncer(0.5, clock=clock)
        debouncer.accept("X")
        clock.advance(0.6)
        assert debouncer.accept("X") is True

    def test_different_text_passes_immediately(self, clock):
        debouncer = ScanDebouncer(1.0, clock=clock)
        debouncer.accept("X")
        assert debouncer.accept("Y") is True
        assert debouncer.accept("X") is True

    def test_suppressed_repeat_does_not_extend_window(self, clock):
        debouncer = ScanDebouncer(0.5, clock=clock)
        debouncer.accept("X")
        clock.advance(0.4)
        assert debouncer.accept("X") is False
        clock.advance(0.2)
        assert debouncer.accept("X") is True

    def test_reset_forgets_last(self, clock):
        debouncer = ScanDebouncer(0.5, clock=clock)
        debouncer.accept("X")
        debouncer.reset()
        assert debouncer.last_accepted_text is None
        assert debouncer.accept("X") is True
