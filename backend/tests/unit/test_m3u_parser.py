"""
Unit tests for the m3u_parser module.

Tests directive handling, quoted-comma splitting, URL validation and the
empty / no-entries failure modes.
"""
import time

import pytest

from m3u_parser import (
    EmptyPlaylistError,
    M3UParser,
    NoValidEntriesError,
    PlaylistParseError,
    decode_playlist,
    fallback_entry_name,
    find_title_separator,
    is_valid_stream_url,
    parse_attributes,
    parse_extinf,
    parse_vlc_option,
)
from tests.fixtures.factories import SAMPLE_PLAYLIST, large_playlist


@pytest.fixture
def parser():
    return M3UParser()


class TestFindTitleSeparator:
    """Tests for the quote-aware comma search."""

    def test_plain_comma(self):
        assert find_title_separator('-1 tvg-id="a",Title') == 13

    def test_skips_comma_in_double_quotes(self):
        content = '-1 tvg-name="News, Weather",Title'
        assert content[find_title_separator(content) + 1:] == "Title"

    def test_skips_comma_in_single_quotes(self):
        content = "-1 group-title='A, B',Title"
        assert content[find_title_separator(content) + 1:] == "Title"

    def test_no_comma(self):
        assert find_title_separator('-1 tvg-id="a"') == -1


class TestParseAttributes:
    """Tests for key="value" parsing."""

    def test_keys_lowercased(self):
        assert parse_attributes('TVG-ID="x" Group-Title="Y"') == {"tvg-id": "x", "group-title": "Y"}

    def test_single_quotes(self):
        assert parse_attributes("tvg-logo='http://l/x.png'") == {"tvg-logo": "http://l/x.png"}

    def test_empty_value(self):
        assert parse_attributes('tvg-id=""') == {"tvg-id": ""}

    def test_mismatched_quote_not_terminated_early(self):
        attrs = parse_attributes('tvg-name="It\'s On" tvg-id="x"')
        assert attrs["tvg-name"] == "It's On"
        assert attrs["tvg-id"] == "x"


class TestParseExtinf:
    """Tests for #EXTINF line parsing."""

    def test_duration_attributes_and_title(self):
        info = parse_extinf('#EXTINF:-1 tvg-id="cnn.us" group-title="News",CNN')
        assert info.duration == -1
        assert info.attributes == {"tvg-id": "cnn.us", "group-title": "News"}
        assert info.title == "CNN"

    def test_positive_duration(self):
        assert parse_extinf("#EXTINF:120,Movie").duration == 120

    def test_title_keeps_later_commas(self):
        assert parse_extinf("#EXTINF:-1,News, Sport and Weather").title == "News, Sport and Weather"

    def test_missing_comma_uses_unknown_title(self):
        info = parse_extinf("#EXTINF:-1")
        assert info.title == "Unknown"
        assert info.duration == -1

    def test_non_numeric_duration(self):
        assert parse_extinf("#EXTINF:abc,Title").duration is None


class TestParseVlcOption:

    def test_user_agent(self):
        assert parse_vlc_option("#EXTVLCOPT:http-user-agent=VLC/3.0") == ("http-user-agent", "VLC/3.0")

    def test_referer_alias(self):
        assert parse_vlc_option("#EXTVLCOPT:http-referer=http://site/") == ("http-referrer", "http://site/")

    def test_value_may_contain_equals(self):
        assert parse_vlc_option("#EXTVLCOPT:http-referrer=http://a/?x=1") == ("http-referrer", "http://a/?x=1")

    def test_without_equals(self):
        assert parse_vlc_option("#EXTVLCOPT:garbage") is None


class TestUrlValidation:

    @pytest.mark.parametrize("url", [
        "http://example.com/live.m3u8",
        "https://example.com:8080/a/b.ts?token=1",
        "rtmp://media.example/live",
        "udp://@239.0.0.1:1234",
        "file:///media/local.ts",
    ])
    def test_accepts_absolute_urls(self, url):
        assert is_valid_stream_url(url)

    @pytest.mark.parametrize("url", [
        "not a url",
        "example.com/stream",
        "/relative/path.ts",
        "C:/videos/file.ts",
        "http://exa mple.com/x",
        "http://example.com:abc/live.ts",
        "http://example.com:99999/live.ts",
        "",
    ])
    def test_rejects_non_urls(self, url):
        assert not is_valid_stream_url(url)

    def test_fallback_name_from_path(self):
        assert fallback_entry_name("http://example.com/live/My%20Channel.ts") == "My Channel.ts"

    def test_fallback_name_from_host(self):
        assert fallback_entry_name("http://example.com/") == "example.com"


class TestDecode:

    def test_utf8_with_bom(self):
        assert decode_playlist("\ufeff#EXTM3U".encode("utf-8")) == "#EXTM3U"

    def test_latin1_fallback(self):
        assert decode_playlist("Caf\xe9".encode("latin-1")) == "Caf\xe9"


class TestM3UParser:
    """Tests for whole-playlist parsing."""

    def test_sample_playlist(self, parser):
        playlist = parser.parse_text(SAMPLE_PLAYLIST)

        assert len(playlist.entries) == 2
        assert playlist.errors == []
        first = playlist.entries[0]
        assert first.name == "Channel 1"
        assert first.tvg_id == "test1"
        assert first.group_title == "Sports"
        assert first.url == "http://example.com/stream1.m3u8"
        assert playlist.entries[1].group_title == "News"

    def test_quoted_comma_produces_single_entry(self, parser):
        content = (
            "#EXTM3U\n"
            '#EXTINF:-1 tvg-name="News, Weather & Sport" group-title="UK, National",BBC One\n'
            "http://example.com/bbc1.m3u8\n"
        )
        playlist = parser.parse_text(content)

        assert len(playlist.entries) == 1
        entry = playlist.entries[0]
        assert entry.name == "BBC One"
        assert entry.tvg_name == "News, Weather & Sport"
        assert entry.group_title == "UK, National"

    def test_effective_name_prefers_tvg_name(self, parser):
        content = '#EXTINF:-1 tvg-name="CNN International",cnn\nhttp://example.com/cnn\n'
        entry = parser.parse_text(content).entries[0]
        assert entry.effective_name == "CNN International"

    def test_attributes_mapped(self, parser):
        content = (
            '#EXTINF:-1 tvg-id="x" tvg-logo="http://l/x.png" tvg-language="English" '
            'tvg-country="US" tvg-shift="2",X\n'
            "http://example.com/x\n"
        )
        entry = parser.parse_text(content).entries[0]
        assert entry.logo_url == "http://l/x.png"
        assert entry.language == "English"
        assert entry.country == "US"
        assert entry.extra_attributes["tvg-shift"] == "2"

    def test_empty_logo_is_none(self, parser):
        entry = parser.parse_text('#EXTINF:-1 tvg-logo="",X\nhttp://example.com/x\n').entries[0]
        assert entry.logo_url is None

    def test_vlc_options_attach_to_next_url(self, parser):
        content = (
            "#EXTINF:-1,Protected\n"
            "#EXTVLCOPT:http-user-agent=Mozilla/5.0\n"
            "#EXTVLCOPT:http-referrer=http://portal.example/\n"
            "http://example.com/protected.m3u8\n"
            "#EXTINF:-1,Open\n"
            "http://example.com/open.m3u8\n"
        )
        protected, open_entry = parser.parse_text(content).entries
        assert protected.user_agent == "Mozilla/5.0"
        assert protected.referrer == "http://portal.example/"
        assert open_entry.user_agent is None
        assert open_entry.referrer is None

    def test_extgrp_overrides_group_for_next_entry_only(self, parser):
        content = (
            '#EXTINF:-1 group-title="Original",A\n'
            "#EXTGRP:Override\n"
            "http://example.com/a\n"
            '#EXTINF:-1 group-title="Original",B\n'
            "http://example.com/b\n"
        )
        a, b = parser.parse_text(content).entries
        assert a.group_title == "Override"
        assert b.group_title == "Original"

    def test_other_comments_ignored(self, parser):
        content = "#EXTM3U\n# just a comment\n#EXT-X-VERSION:3\nhttp://example.com/a.ts\n"
        assert len(parser.parse_text(content).entries) == 1

    def test_bare_url_gets_synthesized_name(self, parser):
        entry = parser.parse_text("http://example.com/live/sports.ts\n").entries[0]
        assert entry.name == "sports.ts"
        assert entry.tvg_id is None

    def test_invalid_url_after_extinf_is_diagnostic(self, parser):
        content = (
            "#EXTM3U\n"
            "#EXTINF:-1,Broken\n"
            "not a url\n"
            "#EXTINF:-1,Good\n"
            "http://example.com/good\n"
        )
        playlist = parser.parse_text(content)

        assert [e.name for e in playlist.entries] == ["Good"]
        assert len(playlist.errors) == 1
        diag = playlist.errors[0]
        assert diag.line == 3
        assert diag.message == "Invalid URL after EXTINF"
        assert diag.raw_content == "not a url"

    def test_non_numeric_port_is_diagnostic(self, parser):
        content = "#EXTM3U\n#EXTINF:-1,Bad Port\nhttp://example.com:abc/live.ts\n#EXTINF:-1,Good\nhttp://example.com/good\n"
        playlist = parser.parse_text(content)

        assert [e.name for e in playlist.entries] == ["Good"]
        assert playlist.errors[0].raw_content == "http://example.com:abc/live.ts"

    def test_invalid_url_clears_pending_metadata(self, parser):
        content = '#EXTINF:-1 tvg-id="lost",Lost\nbad line\nhttp://example.com/bare.ts\n'
        entry = parser.parse_text(content).entries[0]
        assert entry.tvg_id is None
        assert entry.name == "bare.ts"

    def test_stray_invalid_line_without_extinf_is_silent(self, parser):
        playlist = parser.parse_text("garbage\nhttp://example.com/a.ts\n")
        assert playlist.errors == []
        assert len(playlist.entries) == 1

    def test_crlf_line_endings(self, parser):
        content = "#EXTM3U\r\n#EXTINF:-1,A\r\nhttp://example.com/a\r\n"
        playlist = parser.parse_text(content)
        assert playlist.entries[0].name == "A"
        assert playlist.entries[0].url == "http://example.com/a"

    def test_parse_bytes_with_bom(self, parser):
        playlist = parser.parse_bytes(("\ufeff" + SAMPLE_PLAYLIST).encode("utf-8"))
        assert len(playlist.entries) == 2

    def test_unique_facets(self, parser):
        content = (
            '#EXTINF:-1 group-title="Sports" tvg-country="US" tvg-language="English",A\nhttp://e.com/a\n'
            '#EXTINF:-1 group-title="Sports" tvg-country="UK",B\nhttp://e.com/b\n'
            '#EXTINF:-1 group-title="News",C\nhttp://e.com/c\n'
        )
        playlist = parser.parse_text(content)
        assert playlist.unique_groups == {"Sports", "News"}
        assert playlist.unique_countries == {"US", "UK"}
        assert playlist.unique_languages == {"English"}

    def test_parsing_is_deterministic(self, parser):
        data = (SAMPLE_PLAYLIST + "\n#EXTINF:-1,Bad\nnope\n").encode("utf-8")
        first = parser.parse_bytes(data)
        second = parser.parse_bytes(data)
        assert first.entries == second.entries
        assert first.errors == second.errors


class TestDegenerateInput:

    def test_empty_string(self, parser):
        with pytest.raises(EmptyPlaylistError):
            parser.parse_text("")

    def test_whitespace_only(self, parser):
        with pytest.raises(EmptyPlaylistError):
            parser.parse_text("  \n\n \t\n")

    def test_header_only(self, parser):
        with pytest.raises(NoValidEntriesError) as exc_info:
            parser.parse_text("#EXTM3U\n")
        assert not isinstance(exc_info.value, EmptyPlaylistError)

    def test_comment_only(self, parser):
        with pytest.raises(NoValidEntriesError):
            parser.parse_text("#EXTM3U\n# nothing here\n#EXTINF:-1,Dangling\n")

    def test_empty_is_a_no_entries_error(self, parser):
        with pytest.raises(NoValidEntriesError):
            parser.parse_bytes(b"")

    def test_errors_share_base_class(self):
        assert issubclass(EmptyPlaylistError, PlaylistParseError)


class TestPerformance:

    def test_ten_thousand_entries(self, parser):
        content = large_playlist(10_000)
        start = time.perf_counter()
        playlist = parser.parse_text(content)
        elapsed = time.perf_counter() - start

        assert len(playlist.entries) == 10_000
        assert elapsed < 5.0
