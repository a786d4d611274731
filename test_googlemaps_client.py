from unittest.mock import Mock

import pytest
from googlemaps.exceptions import ApiError

from googlemaps_client import GoogleMapsClient, ServiceAreaError
from proximity_ranker import ServiceArea


def geocode_result(lat, lng, address="632 W 6th Ave, Anchorage, AK 99501, USA"):
    return [{"geometry": {"location": {"lat": lat, "lng": lng}}, "formatted_address": address}]


def make_client(result=None, error=None, **kwargs):
    gmaps = Mock()
    if error is not None:
        gmaps.geocode.side_effect = error
    else:
        gmaps.geocode.return_value = result
    return GoogleMapsClient(api_key="", client=gmaps, **kwargs), gmaps


def test_api_key_required():
    with pytest.raises(ValueError):
        GoogleMapsClient("")


def test_geocode_inside_service_area():
    client, gmaps = make_client(geocode_result(61.2176, -149.8997))

    location = client.geocode_address("632 W 6th Ave")

    assert (location.latitude, location.longitude) == (61.2176, -149.8997)
    assert location.address.startswith("632 W 6th Ave")
    gmaps.geocode.assert_called_once_with(
        "632 W 6th Ave", region="us", components={"administrative_area": "AK"}
    )


def test_geocode_outside_service_area():
    client, _ = make_client(geocode_result(64.8378, -147.7164, "Fairbanks, AK"))

    with pytest.raises(ServiceAreaError):
        client.geocode_address("Fairbanks")


def test_geocode_no_result():
    client, _ = make_client([])

    with pytest.raises(ValueError):
        client.geocode_address("nowhere at all")


def test_geocode_api_error_propagates():
    client, _ = make_client(error=ApiError("REQUEST_DENIED"))

    with pytest.raises(ApiError):
        client.geocode_address("632 W 6th Ave")


def test_custom_service_area():
    fairbanks = ServiceArea(north=65.0, south=64.7, west=-148.0, east=-147.5)
    client, gmaps = make_client(geocode_result(64.8378, -147.7164), service_area=fairbanks, region_component=None)

    assert client.geocode_address("Fairbanks").latitude == 64.8378
    assert gmaps.geocode.call_args.kwargs["components"] is None
    assert not client.validate_vendor_location(61.2176, -149.8997, "Anchorage shop")
    assert client.validate_vendor_location(64.8378, -147.7164, "Fairbanks shop")
