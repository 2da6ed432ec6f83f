import pytest
import requests

from ingest import profile, urls
from etl.errors import FetchError, ProfileTimeoutError, ValidationError

PID = "c341f338-94be-42d8-9fc8-460695c15e34"
URL = f"https://www.skills.google/public_profiles/{PID}"


class FakeResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response or FakeResponse()
        self.exc = exc
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.exc:
            raise self.exc
        return self.response


def test_valid_profile_urls():
    assert urls.is_valid_profile_url(URL)
    assert urls.is_valid_profile_url(f"https://www.cloudskillsboost.google/public_profiles/{PID}")
    assert urls.is_valid_profile_url(f"https://skills.google/public_profiles/{PID.upper()}?x=1")


@pytest.mark.parametrize("bad", [
    None,
    "",
    "not a url",
    f"https://evil.example.com/public_profiles/{PID}",
    f"https://www.skills.google.evil.com/public_profiles/{PID}",
    f"https://www.skills.google/profiles/{PID}",
    "https://www.skills.google/public_profiles/",
    "https://www.skills.google/public_profiles/zzzz",
    f"ftp://www.skills.google/public_profiles/{PID}",
])
def test_invalid_profile_urls(bad):
    assert not urls.is_valid_profile_url(bad)
    with pytest.raises(ValidationError):
        urls.validate_profile_url(bad)


def test_profile_id_ignores_host_and_case():
    old = f"https://www.cloudskillsboost.google/public_profiles/{PID.upper()}"
    assert urls.extract_profile_id(old) == PID
    assert urls.same_profile(old, URL)
    assert not urls.same_profile(URL, "https://www.skills.google/public_profiles/abc123")
    assert not urls.same_profile(None, None)


def test_fetch_direct():
    session = FakeSession(FakeResponse(200, "<title>Ada | Google Skills</title>"))
    html = profile.fetch_profile_html(URL, session=session, relay_url="")
    assert "Ada" in html
    assert session.calls[0][0] == URL


def test_fetch_via_relay():
    session = FakeSession(FakeResponse(200, "ok"))
    profile.fetch_profile_html(URL, session=session, relay_url="https://relay.local/api/proxy-profile")
    called_url, kwargs = session.calls[0]
    assert called_url == "https://relay.local/api/proxy-profile"
    assert kwargs["params"] == {"url": URL}


def test_invalid_url_never_hits_network():
    session = FakeSession()
    with pytest.raises(ValidationError):
        profile.fetch_profile_html("https://example.com/public_profiles/abc", session=session)
    assert session.calls == []


def test_non_2xx_is_fetch_error():
    session = FakeSession(FakeResponse(404, "gone"))
    with pytest.raises(FetchError) as info:
        profile.fetch_profile_html(URL, session=session, relay_url="")
    assert info.value.status == 404


def test_timeout_and_transport_errors():
    with pytest.raises(ProfileTimeoutError):
        profile.fetch_profile_html(URL, session=FakeSession(exc=requests.Timeout()), relay_url="")
    with pytest.raises(FetchError):
        profile.fetch_profile_html(URL, session=FakeSession(exc=requests.ConnectionError()), relay_url="")


def test_empty_page_is_returned_not_raised():
    assert profile.fetch_profile_html(URL, session=FakeSession(FakeResponse(200, "")), relay_url="") == ""


def test_fetch_profile_parses_and_stamps_url():
    session = FakeSession(FakeResponse(200, "<title>Ada | Google Skills</title><p>4 labs completed</p>"))
    m = profile.fetch_profile(URL, session=session, relay_url="")
    assert m.name == "Ada"
    assert m.labs_completed == 4
    assert m.profile_url == URL
