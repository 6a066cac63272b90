"""Tests for the chain channel layout and the chain monitor loop."""
from __future__ import annotations

import struct

import pytest

from conftest import ScriptedChild
from prereq_bootstrap.lib.chain import (
    CHANNEL_SIZE,
    E_FAIL,
    E_PENDING,
    OFF_DOWNLOAD_PROGRESS,
    OFF_EVENT_NAME,
    OFF_INSTALL_RESULT,
    OFF_UPDATE_SEQUENCE,
    S_OK,
    ChainChannel,
    blended_percent,
)
from prereq_bootstrap.lib.monitor import ChainMonitor


@pytest.fixture
def channel(tmp_path):
    ch = ChainChannel.create(tmp_path, name="test-chain")
    yield ch
    ch.close()


class TestLayout:
    def test_fixed_offsets(self):
        assert OFF_DOWNLOAD_PROGRESS == 548
        assert OFF_EVENT_NAME == 550
        assert OFF_UPDATE_SEQUENCE == 1072
        assert CHANNEL_SIZE == 1076

    def test_initialised_before_use(self, channel):
        assert not channel.download_finished
        assert not channel.install_finished
        assert not channel.download_abort
        assert not channel.install_abort
        assert channel.download_result == E_PENDING
        assert channel.install_result == E_PENDING
        assert channel.event_name == "test-chain"
        assert channel.update_sequence == 0

    def test_child_writes_visible_to_parent(self, channel):
        child = ChainChannel.open(channel.path)
        try:
            child.report_progress("Copying files", download_percent=100, install_percent=50)
            child.finish_install(S_OK)
        finally:
            child.close()

        assert channel.current_step == "Copying files"
        assert channel.download_progress == 100
        assert channel.install_progress == 50
        assert channel.install_finished
        assert channel.update_sequence == 2
        assert channel.path.exists()

        raw = channel.path.read_bytes()
        assert struct.unpack_from("<I", raw, OFF_INSTALL_RESULT)[0] == S_OK

    def test_owner_removes_file(self, tmp_path):
        ch = ChainChannel.create(tmp_path)
        path = ch.path
        ch.close()
        assert not path.exists()

    def test_result_precedence(self, channel):
        assert channel.result() == E_FAIL
        channel.finish_download(0x80070005)
        assert channel.result() == 0x80070005
        channel.finish_install(S_OK)
        assert channel.result() == S_OK

    def test_blended_percent(self):
        assert blended_percent(0, 0) == 0
        assert blended_percent(100, 100) == 85
        assert blended_percent(100, 0) == 42


class TestMonitor:
    def test_child_exits_early_returns_internal_error(self, channel):
        child = ScriptedChild([lambda: False, lambda: True])
        result = ChainMonitor(poll_interval_s=0.01).monitor(child, channel)
        assert result == E_FAIL
        assert child.waits == 2

    def test_child_exits_after_download_only_is_a_failure(self, channel):
        def download_then_exit():
            channel.finish_download(S_OK)
            return True

        result = ChainMonitor(poll_interval_s=0.01).monitor(ScriptedChild([download_then_exit]), channel)
        assert result == E_FAIL

    def test_completes_with_install_result(self, channel):
        def finish():
            channel.finish_download(S_OK)
            channel.finish_install(S_OK)
            return True

        assert ChainMonitor(poll_interval_s=0.01).monitor(ScriptedChild([finish]), channel) == S_OK

    def test_download_result_when_install_pending(self, channel):
        def fail_download():
            channel.finish_download(0x80072EE7)
            return True

        assert ChainMonitor().monitor(ScriptedChild([fail_download]), channel) == 0x80072EE7

    def test_progress_reported_on_update(self, channel):
        seen = []

        def progress():
            channel.report_progress("Installing runtime", download_percent=100, install_percent=40)
            return False

        def quiet():
            return False

        def finish():
            channel.finish_download(S_OK)
            channel.finish_install(S_OK)
            return False

        child = ScriptedChild([progress, quiet, finish])
        ChainMonitor(poll_interval_s=0.01).monitor(child, channel, lambda step, pct: seen.append((step, pct)))
        # one report for the progress write, one for the finish writes, none for the quiet poll
        assert seen == [("Installing runtime", 59), ("Installing runtime", 59)]

    def test_cancel_sets_abort_flags_without_killing(self, channel):
        cancelled = {"flag": False}

        def request_cancel():
            cancelled["flag"] = True
            return False

        def child_honours_abort():
            assert channel.download_abort and channel.install_abort
            channel.finish_download(S_OK)
            channel.finish_install(0x80004004)
            return True

        child = ScriptedChild([request_cancel, child_honours_abort])
        monitor = ChainMonitor(poll_interval_s=0.01, is_cancelled=lambda: cancelled["flag"])
        assert monitor.monitor(child, channel) == 0x80004004
