import pytest
import requests

from app.services.firms_client import FirmsClient, FirmsError

CSV = (
    "latitude,longitude,bright_ti4,scan,track,acq_date,acq_time,satellite,instrument,"
    "confidence,version,bright_ti5,frp,daynight\n"
    "37.7749,-122.4194,335.2,0.39,0.36,2026-08-15,1030,N,VIIRS,h,2.0NRT,291.4,12.5,D\n"
    "37.8,-122.5,330.1,0.4,0.37,2026-08-15,1031,N,VIIRS,n,2.0NRT,290.0,3.0,D\n"
)


class _FakeResponse:
    def __init__(self, text="", status_code=200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Server Error")


class _FakeSession:
    """Answers by FIRMS source name found in the requested URL."""

    def __init__(self, responses):
        self.responses = responses
        self.headers = {}
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        for source, response in self.responses.items():
            if f"/{source}/" in url:
                if isinstance(response, Exception):
                    raise response
                return response
        raise AssertionError(f"unexpected url {url}")


def _client(responses):
    return FirmsClient(
        api_key="KEY123",
        base_url="https://firms.example/api/",
        area="world",
        timeout=5,
        session=_FakeSession(responses),
    )


def test_build_url():
    client = _client({})

    assert (
        client.build_url("VIIRS_NOAA20_NRT", 2)
        == "https://firms.example/api/area/csv/KEY123/VIIRS_NOAA20_NRT/world/2"
    )


def test_fetch_rows_parses_csv():
    client = _client({"VIIRS_SNPP_NRT": _FakeResponse(CSV)})

    rows = client.fetch_rows("VIIRS_SNPP_NRT", 1)

    assert len(rows) == 2
    assert rows[0]["latitude"] == "37.7749"
    assert client.session.headers["User-Agent"]


def test_fetch_rows_rejects_plain_text_payload():
    client = _client({"VIIRS_SNPP_NRT": _FakeResponse("Invalid MAP_KEY.")})

    with pytest.raises(FirmsError) as exc_info:
        client.fetch_rows("VIIRS_SNPP_NRT", 1)

    assert exc_info.value.source == "VIIRS_SNPP_NRT"
    assert "unexpected payload" in exc_info.value.reason


def test_fetch_rows_wraps_http_errors():
    client = _client({"VIIRS_SNPP_NRT": _FakeResponse("", status_code=503)})

    with pytest.raises(FirmsError):
        client.fetch_rows("VIIRS_SNPP_NRT", 1)


@pytest.mark.parametrize("days_back", [0, 11])
def test_fetch_rows_validates_days_back(days_back):
    client = _client({})

    with pytest.raises(FirmsError):
        client.fetch_rows("VIIRS_SNPP_NRT", days_back)
    assert client.session.urls == []


def test_fetch_rows_requires_api_key():
    client = _client({})
    client.api_key = None

    with pytest.raises(FirmsError):
        client.fetch_rows("VIIRS_SNPP_NRT", 1)


def test_fetch_all_reports_partial_failures():
    client = _client(
        {
            "VIIRS_SNPP_NRT": _FakeResponse(CSV),
            "VIIRS_NOAA20_NRT": requests.exceptions.ConnectTimeout("timed out"),
            "VIIRS_NOAA21_NRT": _FakeResponse(CSV),
        }
    )

    result = client.fetch_all(
        ["VIIRS_SNPP_NRT", "VIIRS_NOAA20_NRT", "VIIRS_NOAA21_NRT"], days_back=1
    )

    assert len(result.rows) == 4
    assert result.rows_by_source == {"VIIRS_SNPP_NRT": 2, "VIIRS_NOAA21_NRT": 2}
    assert set(result.errors) == {"VIIRS_NOAA20_NRT"}
    assert result.all_failed is False


def test_fetch_all_flags_total_failure():
    client = _client({"VIIRS_SNPP_NRT": _FakeResponse("", status_code=500)})

    result = client.fetch_all(["VIIRS_SNPP_NRT"], days_back=1)

    assert result.rows == []
    assert result.all_failed is True
