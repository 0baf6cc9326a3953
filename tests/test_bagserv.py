import json
import sqlite3
import threading
import urllib.error
import urllib.request

import pytest

from bagtools.bagserv import handle_path, make_server, rows_to_json
from bagtools.sqlwriter import SQLiteWriter, SQLWFlag
from bagtools.thingpool import ThingPool

ROWS = [
    ("v1", 84000.0, 447000.0, "Kerkstraat", "Delft", "1234AB", 10, "", "", 80,
     4.3, 52.0, '["woonfunctie"]', 1930, "in gebruik", "in gebruik"),
    ("v2", 84100.0, 447200.0, "Kerkstraat", "Delft", "1234AB", 12, "A", "bis", 95,
     4.3, 52.002, '["woonfunctie","winkelfunctie"]', 1955, "in gebruik", "in gebruik"),
    ("v3", 84200.0, 447300.0, "Kerkstraat", "Delft", "1234AB", 14, None, None, 60,
     4.31, 52.003, "[]", 2001, "in gebruik", "in gebruik"),
    ("v4", 90000.0, 450000.0, "Molenweg", "Delft", "9999ZZ", 1, "", "", 10,
     4.5, 52.1, "not json", 1900, "in gebruik", "in gebruik"),
]


@pytest.fixture
def pool(tmp_path):
    db = tmp_path / "bag.sqlite"
    conn = sqlite3.connect(db)
    conn.execute(
        "create table alllabel (vbo_id TEXT, x REAL, y REAL, straat TEXT, woonplaats TEXT, "
        "postcode TEXT, huisnummer INT, huisletter TEXT, huistoevoeging TEXT, oppervlakte INT, "
        "lon REAL, lat REAL, gebruiksdoelen TEXT, bouwjaar INT, num_status TEXT, vbo_status TEXT)"
    )
    conn.execute(
        "create table geoindex (vbo_id TEXT, minLat REAL, maxLat REAL, minLon REAL, maxLon REAL)"
    )
    conn.executemany("insert into alllabel values (" + ",".join("?" * 16) + ")", ROWS)
    for row in ROWS:
        lat, lon = row[11], row[10]
        conn.execute(
            "insert into geoindex values (?,?,?,?,?)",
            (row[0], lat - 0.0001, lat + 0.0001, lon - 0.0001, lon + 0.0001),
        )
    conn.commit()
    conn.close()
    things = ThingPool(SQLiteWriter, str(db), SQLWFlag.READ_ONLY)
    yield things
    things.close()


def _json(response):
    assert response.status == 200
    assert response.content_type == "application/json"
    return json.loads(response.body)


def test_postcode_lookup(pool):
    rows = _json(handle_path(pool, "/1234AB"))
    assert sorted(r["huisnummer"] for r in rows) == [10, 12, 14]
    assert all(r["straat"] == "Kerkstraat" for r in rows)


def test_gebruiksdoelen_is_decoded(pool):
    rows = _json(handle_path(pool, "/1234AB/12"))
    assert rows[0]["gebruiksdoelen"] == ["woonfunctie", "winkelfunctie"]
    assert rows[0]["rdX"] == 84100.0
    assert rows[0]["rdY"] == 447200.0


def test_null_fields_become_empty_strings(pool):
    rows = _json(handle_path(pool, "/1234AB/14"))
    assert rows[0]["huisletter"] == ""
    assert rows[0]["huistoevoeging"] == ""


def test_letter_is_uppercased(pool):
    rows = _json(handle_path(pool, "/1234AB/12/a"))
    assert [r["huisletter"] for r in rows] == ["A"]


def test_toevoeging_route(pool):
    rows = _json(handle_path(pool, "/1234AB/12/a/bis"))
    assert [r["huistoevoeging"] for r in rows] == ["bis"]
    assert _json(handle_path(pool, "/1234AB/12/a/other")) == []


def test_empty_letter_and_toevoeging(pool):
    rows = _json(handle_path(pool, "/1234AB/10//"))
    assert [r["huisnummer"] for r in rows] == [10]


def test_coordinates_return_nearest(pool):
    rows = _json(handle_path(pool, "/52.0005/4.3"))
    assert len(rows) == 1
    assert rows[0]["postcode"] == "1234AB"
    assert rows[0]["huisnummer"] == 10


def test_coordinates_far_away_give_nothing(pool):
    assert _json(handle_path(pool, "/10.0/10.0")) == []


def test_unknown_path_has_no_route(pool):
    assert handle_path(pool, "/nothing/here") is None
    assert handle_path(pool, "/1234ab") is None


def test_bad_stored_json_gives_error_page(pool):
    response = handle_path(pool, "/9999ZZ")
    assert response.status == 500
    assert response.content_type == "text/html"
    assert response.body.startswith("<h1>Error 500</h1><p>")
    assert pool.outstanding == 0


def test_rows_to_json_directly():
    rows = [{"gebruiksdoelen": '["woonfunctie"]', "naam": None, "n": 3}]
    assert json.loads(rows_to_json(rows)) == [{"gebruiksdoelen": ["woonfunctie"], "naam": "", "n": 3}]


def test_rows_to_json_without_gebruiksdoelen():
    assert json.loads(rows_to_json([{"a": "x"}])) == [{"a": "x"}]


@pytest.fixture
def server(pool, tmp_path, monkeypatch):
    html = tmp_path / "html"
    html.mkdir()
    (html / "index.html").write_text("<p>hello</p>")
    monkeypatch.chdir(tmp_path)
    srv = make_server(pool, "127.0.0.1", 0)
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{srv.server_address[1]}"
    srv.shutdown()
    srv.server_close()
    thread.join()


def test_server_answers_lookup(server):
    with urllib.request.urlopen(server + "/1234AB/10") as reply:
        assert reply.headers["Content-Type"] == "application/json"
        rows = json.loads(reply.read())
    assert [r["huisnummer"] for r in rows] == [10]


def test_server_serves_static_index(server):
    with urllib.request.urlopen(server + "/") as reply:
        assert reply.read() == b"<p>hello</p>"


def test_server_unknown_path_is_404(server):
    with pytest.raises(urllib.error.HTTPError) as info:
        urllib.request.urlopen(server + "/nothing")
    assert info.value.code == 404