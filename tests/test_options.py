"""Tests for option parsing, configuration and the command entry point."""

import argparse
import os
import sys
from datetime import date
from unittest.mock import Mock, patch

import pytest
import responses
from pydantic import ValidationError
from tumblr_chat_export import (
    CONVERSATIONS_URL,
    LOGIN_MODE_URL,
    LOGIN_URL,
    MESSAGES_URL,
    TOKEN_URL,
    AuthRejectedError,
    CapabilityMissingError,
    ExportOptions,
    build_parser,
    check_transport,
    load_env_file,
    main,
    normalize_blog,
    parse_cutoff_date,
    resolve_credentials,
    run_export,
)


class TestParseCutoffDate:
    """Test cutoff date parsing."""

    def test_dashed(self):
        assert parse_cutoff_date("2025-06-01") == date(2025, 6, 1)

    def test_compact(self):
        assert parse_cutoff_date("20250601") == date(2025, 6, 1)

    def test_leap_day(self):
        assert parse_cutoff_date("2024-02-29") == date(2024, 2, 29)

    @pytest.mark.parametrize("value", ["", "01/06/2025", "2025-13-01", "yesterday"])
    def test_invalid(self, value):
        with pytest.raises(ValueError) as exc_info:
            parse_cutoff_date(value)
        assert "Invalid date format" in str(exc_info.value)


class TestNormalizeBlog:
    """Test blog hostname normalization."""

    @pytest.mark.parametrize("value", [
        "myblog", "MyBlog", "myblog.tumblr.com", " myblog ", "https://myblog.tumblr.com/",
    ])
    def test_variants(self, value):
        assert normalize_blog(value) == "myblog.tumblr.com"

    def test_name_ending_in_suffix_letters_is_kept(self):
        """Test only the literal suffix is removed, not trailing letters."""
        assert normalize_blog("comics") == "comics.tumblr.com"

    def test_empty(self):
        with pytest.raises(ValueError):
            normalize_blog(".tumblr.com")


class TestExportOptions:
    """Test options validation."""

    def base(self, **overrides):
        values = {"email": "me@example.com", "password": "secret", "blog": "me"}
        values.update(overrides)
        return values

    def test_defaults(self):
        options = ExportOptions(**self.base())
        assert options.blog == "me.tumblr.com"
        assert options.date_cutoff is None
        assert options.rate_limit is None
        assert options.split is False
        assert options.verbose is True

    def test_date_string_is_parsed(self):
        options = ExportOptions(**self.base(date_cutoff="20240101"))
        assert options.date_cutoff == date(2024, 1, 1)

    def test_blank_strings_become_none(self):
        options = ExportOptions(**self.base(tfa_code="", partner="  ", date_cutoff=""))
        assert options.tfa_code is None
        assert options.partner is None
        assert options.date_cutoff is None

    @pytest.mark.parametrize("overrides", [
        {"split": True},
        {"only_day": True},
        {"save": True, "output": "out.txt"},
        {"rate_limit": 0},
        {"date_cutoff": "not-a-date"},
        {"password": ""},
    ])
    def test_invalid_combinations(self, overrides):
        with pytest.raises(ValidationError):
            ExportOptions(**self.base(**overrides))


class TestConfiguration:
    """Test .env loading and credential resolution."""

    def test_load_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text('TUMBLR_EMAIL="file@example.com"\nTUMBLR_BLOG=fileblog\n')
        monkeypatch.delenv("TUMBLR_EMAIL", raising=False)
        monkeypatch.setenv("TUMBLR_BLOG", "envblog")

        assert load_env_file(str(env_file)) is True

        assert os.environ["TUMBLR_EMAIL"] == "file@example.com"
        assert os.environ["TUMBLR_BLOG"] == "envblog"
        monkeypatch.delenv("TUMBLR_EMAIL")

    def test_missing_env_file(self, tmp_path):
        assert load_env_file(str(tmp_path / "absent.env")) is False

    def test_flags_win_over_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TUMBLR_EMAIL", "env@example.com")
        monkeypatch.setenv("TUMBLR_PASSWORD", "envpass")
        monkeypatch.setenv("TUMBLR_BLOG", "envblog")
        args = argparse.Namespace(
            username=None, password="flagpass", blog=None,
            env_file=str(tmp_path / "absent.env"),
        )

        assert resolve_credentials(args) == ("env@example.com", "flagpass", "envblog")

    def test_prompts_for_missing_values(self, tmp_path, monkeypatch):
        for name in ("TUMBLR_EMAIL", "TUMBLR_PASSWORD", "TUMBLR_BLOG"):
            monkeypatch.delenv(name, raising=False)
        args = argparse.Namespace(
            username=None, password=None, blog=None,
            env_file=str(tmp_path / "absent.env"),
        )

        with patch("builtins.input", side_effect=["promptblog", "prompt@example.com"]), \
                patch("tumblr_chat_export.getpass.getpass", return_value="hidden") as getpass:
            result = resolve_credentials(args)

        assert result == ("prompt@example.com", "hidden", "promptblog")
        getpass.assert_called_once()


class TestMain:
    """Test the command entry point."""

    ARGS = ["-u", "me@example.com", "-p", "secret", "-b", "me", "--env-file", "/nonexistent/.env"]
    TRANSCRIPT = (
        "01/01/2024, 08:00:00 me: hello\n"
        "01/01/2024, 12:00:00 alice: reply\n"
    )

    def test_parser_rejects_conversation_and_partner(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["-c", "1", "-n", "alice"])

    def test_invalid_options_exit_1(self, capsys):
        assert main(self.ARGS + ["--split"]) == 1
        assert "--split requires --output" in capsys.readouterr().err

    def test_auth_failure_exit_1(self, capsys):
        with patch("tumblr_chat_export.run_export", side_effect=AuthRejectedError("Login failed. nope")):
            assert main(self.ARGS) == 1
        assert "Authentication error: Login failed. nope" in capsys.readouterr().err

    def test_success_exit_0(self):
        with patch("tumblr_chat_export.run_export", return_value=0) as run:
            assert main(self.ARGS + ["--rate", "4", "-d", "2024-01-01"]) == 0
        options = run.call_args[0][0]
        assert options.rate_limit == 4
        assert options.date_cutoff == date(2024, 1, 1)

    def mock_tumblr(self):
        responses.add(responses.GET, LOGIN_URL, body='{"API_TOKEN":"tok"}')
        responses.add(responses.POST, LOGIN_MODE_URL, json={})
        responses.add(responses.POST, TOKEN_URL, json={"access_token": "x"})
        responses.add(responses.GET, CONVERSATIONS_URL, json={"response": {"conversations": [
            {"id": "c1", "participants": [
                {"name": "me", "uuid": "t:me"}, {"name": "alice", "uuid": "t:alice"},
            ]},
        ]}})
        responses.add(responses.GET, MESSAGES_URL, json={"response": {"messages": {
            "data": [
                {"type": "TEXT", "ts": 1704110400000, "participant": "t:alice", "message": "reply"},
                {"type": "TEXT", "ts": 1704096000000, "participant": "t:me", "message": "hello"},
            ],
        }}})

    def options(self, **overrides):
        values = {
            "email": "me@example.com", "password": "secret", "blog": "me",
            "partner": "alice", "verbose": False,
        }
        values.update(overrides)
        return ExportOptions(**values)

    @responses.activate
    def test_run_export_end_to_end(self, tmp_path):
        """Test login, resolution and collection against a mocked Tumblr."""
        self.mock_tumblr()
        output = tmp_path / "chat.txt"

        assert run_export(self.options(output=str(output))) == 0

        assert output.read_text(encoding="utf-8") == self.TRANSCRIPT
        assert "conversation_id=c1" in responses.calls[-1].request.url

    @responses.activate
    def test_run_export_quiet_file_output(self, tmp_path, capsys):
        self.mock_tumblr()
        output = tmp_path / "chat.txt"

        assert run_export(self.options(output=str(output))) == 0

        assert capsys.readouterr().err == ""

    @responses.activate
    def test_save_flag_captures_transcript(self, tmp_path, monkeypatch, capsys):
        """Test --save writes the transcript to <conversation id>.txt."""
        self.mock_tumblr()
        monkeypatch.chdir(tmp_path)

        with patch("tumblr_chat_export._ask") as ask:
            assert run_export(self.options(save=True)) == 0

        ask.assert_not_called()
        assert (tmp_path / "c1.txt").read_text(encoding="utf-8") == self.TRANSCRIPT
        out = capsys.readouterr().out
        assert out == "Conversation output saved to c1.txt\n"

    @pytest.mark.parametrize("answer", ["y", "YES"])
    @responses.activate
    def test_prompt_yes_captures_transcript(self, answer, tmp_path, monkeypatch):
        self.mock_tumblr()
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr("sys.stdin", Mock(isatty=Mock(return_value=True)))

        with patch("tumblr_chat_export._ask", return_value=answer) as ask:
            assert run_export(self.options()) == 0

        ask.assert_called_once_with("Do you want to save the conversation to a file? (y/N): ")
        assert (tmp_path / "c1.txt").read_text(encoding="utf-8") == self.TRANSCRIPT

    @responses.activate
    def test_prompt_no_prints_transcript(self, tmp_path, monkeypatch, capsys):
        self.mock_tumblr()
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr("sys.stdin", Mock(isatty=Mock(return_value=True)))

        with patch("tumblr_chat_export._ask", return_value="n"):
            assert run_export(self.options()) == 0

        assert capsys.readouterr().out == self.TRANSCRIPT
        assert not (tmp_path / "c1.txt").exists()

    @responses.activate
    def test_no_prompt_without_terminal(self, tmp_path, monkeypatch, capsys):
        self.mock_tumblr()
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr("sys.stdin", Mock(isatty=Mock(return_value=False)))

        with patch("tumblr_chat_export._ask") as ask:
            assert run_export(self.options()) == 0

        ask.assert_not_called()
        assert capsys.readouterr().out == self.TRANSCRIPT
        assert not (tmp_path / "c1.txt").exists()

    @responses.activate
    def test_no_prompt_with_output_file(self, tmp_path, monkeypatch):
        self.mock_tumblr()
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr("sys.stdin", Mock(isatty=Mock(return_value=True)))

        with patch("tumblr_chat_export._ask") as ask:
            assert run_export(self.options(output="chat.txt")) == 0

        ask.assert_not_called()
        assert (tmp_path / "chat.txt").read_text(encoding="utf-8") == self.TRANSCRIPT
        assert not (tmp_path / "c1.txt").exists()

    @responses.activate
    def test_missing_ssl_exit_1(self, capsys):
        """Test a Python without ssl stops before any request is sent."""
        with patch.dict(sys.modules, {"ssl": None}):
            assert main(self.ARGS) == 1

        assert "SSL support" in capsys.readouterr().err
        assert len(responses.calls) == 0


class TestCheckTransport:
    """Test the HTTPS capability check."""

    def test_ssl_available(self):
        check_transport()

    def test_ssl_missing(self):
        with patch.dict(sys.modules, {"ssl": None}):
            with pytest.raises(CapabilityMissingError) as exc_info:
                check_transport()
        assert "HTTPS is required" in str(exc_info.value)
