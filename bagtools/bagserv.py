"""HTTP lookup service for addresses stored in a BAG SQLite database."""

from __future__ import annotations

import json
import logging
import math
import mimetypes
import re
import sys
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Optional
from urllib.parse import unquote, urlsplit

from .jsonhelper import pack_results_json
from .sqlwriter import SQLiteWriter, SQLWFlag
from .thingpool import ThingPool

DATABASE = "bag.sqlite"
HTML_DIR = "html"
DEFAULT_PORT = 8080
THREAD_COUNT = 32

_log = logging.getLogger(__name__)

_Q_LETTER = (
    "select x as rdX, y as rdY,straat,woonplaats,huisnummer,huisletter,huistoevoeging,"
    "oppervlakte,lon,lat,gebruiksdoelen,bouwjaar,num_status,vbo_status from alllabel "
    "where postcode=? and huisnummer=? and huisletter=?"
)
_Q_TOEVOEGING = (
    "select x as rdX, y as rdY, straat,woonplaats,huisnummer,huisletter,huistoevoeging,"
    "oppervlakte,lon,lat,gebruiksdoelen,bouwjaar,num_status,vbo_status from alllabel "
    "where postcode=? and huisnummer=? and huisletter=? and huistoevoeging=?"
)
_Q_NUMBER = (
    "select x as rdX, y as rdY, straat,woonplaats,huisnummer,huisletter,huistoevoeging,"
    "oppervlakte,lon,lat,gebruiksdoelen,bouwjaar,num_status,vbo_status from alllabel "
    "where postcode=? and huisnummer=?"
)
_Q_POSTCODE = (
    "select x as rdX, y as rdY,straat,woonplaats,huisnummer,huisletter,huistoevoeging,"
    "oppervlakte,bouwjaar,lon,lat,gebruiksdoelen,num_status,vbo_status from alllabel "
    "where postcode=?"
)
_Q_COORDS = (
    "select x as rdX, y as rdY,straat,woonplaats,huisnummer,huisletter,huistoevoeging,"
    "postcode,oppervlakte,bouwjaar,lon,lat,gebruiksdoelen,num_status,vbo_status, "
    "(lat-?)*(lat-?)+(lon-?)*(lon-?) as deg2dist from geoindex,alllabel "
    "where alllabel.vbo_id = geoindex.vbo_id and minLat > ? and maxLat < ? "
    "and minLon > ? and maxLon < ? order by deg2dist asc limit 1"
)


@dataclass(frozen=True)
class Response:
    """An HTTP reply produced by a route."""

    status: int
    content_type: str
    body: str


def _finite(obj: Any) -> Any:
    if isinstance(obj, float) and not math.isfinite(obj):
        return None
    if isinstance(obj, list):
        return [_finite(item) for item in obj]
    if isinstance(obj, dict):
        return {key: _finite(value) for key, value in obj.items()}
    return obj


def _atof(text: str) -> float:
    match = re.match(r"\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", text)
    return float(match.group(0)) if match else 0.0


def _atoi(text: str) -> int:
    match = re.match(r"\s*[+-]?\d+", text)
    return int(match.group(0)) if match else 0


def rows_to_json(rows):
    """Render query rows as JSON text, decoding the gebruiksdoelen column."""
    packed = pack_results_json(rows)
    for row in packed:
        if isinstance(row, dict) and "gebruiksdoelen" in row:
            row["gebruiksdoelen"] = json.loads(row["gebruiksdoelen"])
    return json.dumps(_finite(packed), separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def _query(pool, sql, params):
    with pool.get_lease() as lease:
        rows = lease.query_typed(sql, params)
    return rows_to_json(rows)


def _upper_first(letter: str) -> str:
    return letter[:1].upper() + letter[1:]


def _by_letter(pool, m):
    return _query(pool, _Q_LETTER, [m[1], m[2], _upper_first(m[3])])


def _by_toevoeging(pool, m):
    return _query(pool, _Q_TOEVOEGING, [m[1], m[2], _upper_first(m[3]), m[4]])


def _by_number(pool, m):
    return _query(pool, _Q_NUMBER, [m[1], m[2]])


def _by_postcode(pool, m):
    return _query(pool, _Q_POSTCODE, [m[1]])


def _by_coords(pool, m):
    lat = _atof(m[1])
    lon = _atof(m[2])
    params = [lat, lat, lon, lon, lat - 0.005, lat + 0.005, lon - 0.005, lon + 0.005]
    return _query(pool, _Q_COORDS, params)


_ROUTES = (
    (re.compile(r"/(\d\d\d\d[A-Z][A-Z])/(\d+)/([a-zA-Z])"), _by_letter),
    (re.compile(r"/(\d\d\d\d[A-Z][A-Z])/(\d+)/([a-zA-Z]?)/([a-zA-Z0-9]*)"), _by_toevoeging),
    (re.compile(r"/(\d\d\d\d[A-Z][A-Z])/(\d+)"), _by_number),
    (re.compile(r"/(\d\d\d\d[A-Z][A-Z])"), _by_postcode),
    (re.compile(r"/(\d*\.\d*)/(\d*\.\d*)"), _by_coords),
)


def handle_path(pool, path):
    """Answer a lookup path, or return None when no route matches it."""
    for pattern, handler in _ROUTES:
        match = pattern.fullmatch(path)
        if match is None:
            continue
        try:
            body = handler(pool, match)
        except Exception as exc:
            message = f"<h1>Error 500</h1><p>{exc}</p>"
            print(f"Error: '{message}'")
            return Response(500, "text/html", message)
        return Response(200, "application/json", body)
    return None


def _static_file(path: str) -> Optional[Path]:
    base = Path(HTML_DIR).resolve()
    target = (base / path.lstrip("/")).resolve()
    if path.endswith("/"):
        target = target / "index.html"
    if target != base and base not in target.parents:
        return None
    return target if target.is_file() else None


class _Handler(BaseHTTPRequestHandler):
    def _send(self, status: int, content_type: str, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        path = unquote(urlsplit(self.path).path)
        static = _static_file(path)
        if static is not None:
            content_type = mimetypes.guess_type(static.name)[0] or "application/octet-stream"
            self._send(200, content_type, static.read_bytes())
            return
        response = handle_path(self.server.pool, path)
        if response is None:
            self._send(404, "text/plain", b"Not Found")
            return
        self._send(response.status, response.content_type, response.body.encode("utf-8"))

    def log_message(self, format, *args):
        _log.debug("%s - %s", self.address_string(), format % args)


def make_server(pool, host, port):
    """Create a threaded HTTP server answering lookups from the pool."""
    server = ThreadingHTTPServer((host, port), _Handler)
    server.daemon_threads = True
    server.pool = pool
    return server


def main(argv=None):
    args = sys.argv[1:] if argv is None else list(argv)
    port = _atoi(args[0]) if args else DEFAULT_PORT
    pool = ThingPool(SQLiteWriter, DATABASE, SQLWFlag.READ_ONLY)
    print(f"Will listen on http://127.0.0.1:{port} using {THREAD_COUNT} threads")
    server = make_server(pool, "0.0.0.0", port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
    print("Exiting (somehow)")
    return 0