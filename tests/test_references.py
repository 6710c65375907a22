import pytest

from sourcechat_client.references import (
    CITATION, INVALID, MEDIA_REF, TEXT,
    MediaRef, format_timestamp, parse_media_ref, parse_references, render_plain, youtube_url,
)


class TestParseMediaRef:
    def test_valid(self):
        assert parse_media_ref("video://abc123/125") == MediaRef(media_id="abc123", timestamp=125)

    @pytest.mark.parametrize("link", [
        "video://abc123",
        "video://abc123/",
        "video://abc123/12s",
        "video:///125",
        "video://a/b/125",
    ])
    def test_invalid(self, link):
        assert parse_media_ref(link) is None

    def test_formatted(self):
        assert parse_media_ref("video://abc123/125").formatted == "2:05"
        assert parse_media_ref("video://abc123/125").url == "https://www.youtube.com/watch?v=abc123&t=125s"


class TestFormatting:
    @pytest.mark.parametrize("seconds,expected", [
        (0, "0:00"),
        (59, "0:59"),
        (125, "2:05"),
        (3599, "59:59"),
        (3600, "1:00:00"),
        (3725, "1:02:05"),
    ])
    def test_format_timestamp(self, seconds, expected):
        assert format_timestamp(seconds) == expected

    def test_youtube_url(self):
        assert youtube_url("abc123", 125) == "https://www.youtube.com/watch?v=abc123&t=125s"


class TestParseReferences:
    def test_mixed_markers(self):
        text = "Attention [^1](video://abc123/125) is key [^2]. Also video://xyz/5 here."
        segments = parse_references(text)

        assert [s.kind for s in segments] == [TEXT, MEDIA_REF, TEXT, CITATION, TEXT, MEDIA_REF, TEXT]
        labelled = segments[1].payload
        assert labelled == MediaRef(media_id="abc123", timestamp=125, label="^1")
        assert segments[3].payload == "^2"
        assert segments[5].payload.media_id == "xyz"
        assert segments[5].payload.label is None

    def test_invalid_media_marker(self):
        segments = parse_references("See [^1](video://abc123/soon).")
        assert [s.kind for s in segments] == [TEXT, INVALID, TEXT]
        assert segments[1].text == "[^1](video://abc123/soon)"

    @pytest.mark.parametrize("text,tail", [
        ("Jump to video://abc123/125.", "."),
        ("See video://abc123/125, then", ", then"),
        ("Ask (video://abc123/125)", ")"),
        ("Really? video://abc123/125!", "!"),
    ])
    def test_bare_marker_before_punctuation(self, text, tail):
        segments = parse_references(text)
        assert [s.kind for s in segments] == [TEXT, MEDIA_REF, TEXT]
        assert segments[1].text == "video://abc123/125"
        assert segments[1].payload == MediaRef(media_id="abc123", timestamp=125)
        assert segments[2].text == tail

    @pytest.mark.parametrize("marker", ["video://abc123/12s", "video://a/b/125", "video://abc123/125/"])
    def test_malformed_bare_marker(self, marker):
        segments = parse_references(f"at {marker} now")
        assert [s.kind for s in segments] == [TEXT, INVALID, TEXT]
        assert segments[1].text == marker

    def test_non_media_link_keeps_citation(self):
        segments = parse_references("[^1](https://example.com)")
        assert segments[0].kind == CITATION
        assert segments[1].text == "(https://example.com)"

    def test_plain_text(self):
        assert [s.kind for s in parse_references("no markers")] == [TEXT]
        assert parse_references("") == []

    @pytest.mark.parametrize("text", [
        "Attention [^1](video://abc123/125) is key [^2].",
        "[^1][^2][^3]",
        "bad video://abc/ and [^x] and [^1](video://a/1",
        "unicode ▶ [^10] café video://q/0",
        "Jump to video://abc123/125. Then video://abc123/12s.",
    ])
    def test_lossless(self, text):
        assert "".join(s.text for s in parse_references(text)) == text


class TestRenderPlain:
    def test_render(self):
        text = "Attention [^1](video://abc123/125) is key [^2]. Bad [^3](video://x/y)"
        rendered = render_plain(parse_references(text))
        assert rendered == "Attention [▶ 2:05] is key [2]. Bad [^3](video://x/y)"

    def test_unknown_citation_kept_verbatim(self):
        rendered = render_plain(parse_references("A [^1] B [^2]"), citation_map={"^1": {}})
        assert rendered == "A [1] B [^2]"
