"""Unit tests for BuildLogger and PrefixWriter."""

from __future__ import annotations

import io

from packforge.output import BuildLogger, PrefixWriter


class TestPrefixWriter:
    def test_prefixes_complete_lines(self):
        stream = io.StringIO()
        writer = PrefixWriter(stream, "[detector] ")
        writer.write(b"one\ntw")
        assert stream.getvalue() == "[detector] one\n"
        writer.write("o\n")
        assert stream.getvalue() == "[detector] one\n[detector] two\n"

    def test_flush_emits_partial_line(self):
        stream = io.StringIO()
        writer = PrefixWriter(stream, "[x] ")
        writer.write("no newline")
        writer.flush()
        assert stream.getvalue() == "[x] no newline\n"

    def test_multibyte_character_split_across_chunks(self):
        stream = io.StringIO()
        writer = PrefixWriter(stream, "[builder] ")
        data = "héllo\n".encode()
        writer.write(data[:2])
        writer.write(data[2:])
        assert stream.getvalue() == "[builder] héllo\n"

    def test_flush_replaces_truncated_character(self):
        stream = io.StringIO()
        writer = PrefixWriter(stream, "[x] ")
        writer.write("é".encode()[:1])
        writer.flush()
        assert stream.getvalue() == "[x] �\n"

    def test_disabled_writer_drops_output(self):
        stream = io.StringIO()
        writer = PrefixWriter(stream, "[x] ", enabled=False)
        assert writer.write("hidden\n") == len("hidden\n")
        writer.flush()
        assert stream.getvalue() == ""


class TestBuildLogger:
    def test_info_always_written(self):
        out = io.StringIO()
        BuildLogger(out, io.StringIO()).info("hello %s", "world")
        assert out.getvalue() == "hello world\n"

    def test_verbose_suppressed_by_default(self):
        out = io.StringIO()
        logger = BuildLogger(out, io.StringIO())
        logger.verbose("details")
        logger.step("DETECTING")
        assert out.getvalue() == ""

    def test_verbose_mode(self):
        out = io.StringIO()
        logger = BuildLogger(out, io.StringIO(), verbose=True)
        logger.step("DETECTING")
        assert out.getvalue() == "===> DETECTING\n"

    def test_error_goes_to_err_stream(self):
        out, err = io.StringIO(), io.StringIO()
        BuildLogger(out, err).error("boom")
        assert out.getvalue() == ""
        assert err.getvalue() == "ERROR: boom\n"

    def test_phase_writers_follow_verbosity(self):
        out, err = io.StringIO(), io.StringIO()
        quiet = BuildLogger(out, err)
        quiet.verbose_writer("builder").write("x\n")
        quiet.verbose_error_writer("builder").write("y\n")
        assert out.getvalue() == err.getvalue() == ""

        loud = BuildLogger(out, err, verbose=True)
        loud.verbose_writer("builder").write("x\n")
        loud.verbose_error_writer("builder").write("y\n")
        assert out.getvalue() == "[builder] x\n"
        assert err.getvalue() == "[builder] y\n"
