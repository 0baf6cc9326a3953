import dataclasses

import pytest

from bagtools.rd2wgs84 import WGS84Pos, rd2wgs84


def test_origin_is_near_reference_point():
    pos = rd2wgs84(155000.0, 463000.0)
    assert abs(pos.lat - 52.156160556) < 0.01
    assert abs(pos.lon - 5.387638889) < 0.01


def test_north_increases_latitude():
    south = rd2wgs84(155000.0, 400000.0)
    north = rd2wgs84(155000.0, 500000.0)
    assert north.lat > south.lat


def test_east_increases_longitude():
    west = rd2wgs84(100000.0, 463000.0)
    east = rd2wgs84(200000.0, 463000.0)
    assert east.lon > west.lon


def test_meridian_through_origin_keeps_longitude():
    a = rd2wgs84(155000.0, 400000.0)
    b = rd2wgs84(155000.0, 500000.0)
    assert abs(a.lon - b.lon) < 1e-4


def test_parallel_through_origin_keeps_latitude_roughly():
    a = rd2wgs84(120000.0, 463000.0)
    b = rd2wgs84(190000.0, 463000.0)
    assert abs(a.lat - b.lat) < 0.02


def test_amsterdam():
    pos = rd2wgs84(121000, 487000)
    assert pos.lat == pytest.approx(52.37, abs=0.02)
    assert pos.lon == pytest.approx(4.89, abs=0.02)


def test_integer_and_float_inputs_agree():
    assert rd2wgs84(85000, 446000) == rd2wgs84(85000.0, 446000.0)


def test_position_is_immutable():
    pos = rd2wgs84(155000.0, 463000.0)
    with pytest.raises(dataclasses.FrozenInstanceError):
        pos.lat = 0.0
    assert pos == WGS84Pos(pos.lat, pos.lon)