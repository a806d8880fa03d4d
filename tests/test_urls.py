from license_resolver.core.urls import (
    account_of,
    album_slug_of,
    decode_html_entities,
    hostname_of,
    normalize_cc_license_url,
    strip_numeric_suffix,
)


def test_hostname_and_account() -> None:
    assert hostname_of(" https://Artist.Bandcamp.com/album/x ") == "artist.bandcamp.com"
    assert hostname_of("not a url") is None
    assert hostname_of(None) is None
    assert account_of("https://artist.bandcamp.com/album/x") == "artist"
    assert account_of("https://music.example.org/album/x") == "music.example.org"


def test_album_slug_requires_album_path() -> None:
    assert album_slug_of("https://artist.bandcamp.com/album/My-Record?from=x") == "my-record"
    assert album_slug_of("https://artist.bandcamp.com/track/song") is None
    assert album_slug_of("https://artist.bandcamp.com/") is None


def test_strip_numeric_suffix() -> None:
    assert strip_numeric_suffix("my-record-2") == "my-record"
    assert strip_numeric_suffix("my-record") is None


def test_normalize_cc_license_url() -> None:
    assert normalize_cc_license_url("http://CreativeCommons.org/licenses/BY-NC/3.0") == {
        "slug": "by-nc",
        "version": "3.0",
        "canonical": "https://creativecommons.org/licenses/by-nc/3.0/",
    }
    assert normalize_cc_license_url("https://creativecommons.org/publicdomain/zero/1.0/") is None
    assert normalize_cc_license_url("https://example.org/licenses/by/3.0/") is None


def test_decode_html_entities() -> None:
    assert decode_html_entities("a&amp;b &quot;c&quot; &#39;d&#39;") == "a&b \"c\" 'd'"
