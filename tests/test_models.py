"""Tests for inventory records."""
from __future__ import annotations

import pytest

from cwkit.models import Application, SchemaError, Server, webroot_for


def test_application_from_api_maps_fields() -> None:
    """API field names are mapped onto application attributes."""
    app = Application.from_api(
        {
            "id": 55,
            "application": "wordpress",
            "cname": "blog.example.com",
            "app_fqdn": "wordpress-1-2.cloudwaysapps.com",
            "mysql_db_name": "qwerty",
            "label": "Blog",
        }
    )
    assert app.app_type == "wordpress"
    assert app.domain == "blog.example.com"
    assert app.database == "qwerty"
    assert app.app_id == "55"
    assert app.webroot == "/home/master/applications/qwerty/public_html/"


@pytest.mark.parametrize(
    ("cname", "fqdn", "app_id", "database", "expected"),
    [
        ("  ", "gen.cloudwaysapps.com", "", "db", "gen.cloudwaysapps.com"),
        ("", "", "9", "db", "app-9"),
        ("", "", "", "db", "db"),
        ("", "", "", "", "unknown-app"),
    ],
)
def test_application_domain_is_never_empty(
    cname: str,
    fqdn: str,
    app_id: str,
    database: str,
    expected: str,
) -> None:
    """Domain falls back through the FQDN and identifiers."""
    app = Application(app_type="phpstack", cname=cname, app_fqdn=fqdn, database=database, app_id=app_id)
    assert app.domain == expected


def test_webroot_template() -> None:
    """Web roots follow the fixed hosting layout."""
    assert webroot_for("abc") == "/home/master/applications/abc/public_html/"


def test_server_from_api_builds_apps() -> None:
    """Servers carry their applications in API order."""
    server = Server.from_api(
        {
            "id": 1234,
            "public_ip": "203.0.113.5",
            "master_user": "master_x",
            "status": "running",
            "label": "prod",
            "apps": [
                {"application": "wordpress", "app_fqdn": "a.example", "mysql_db_name": "a"},
                {"application": "phpstack", "app_fqdn": "b.example", "mysql_db_name": "b"},
            ],
        }
    )
    assert server.id == "1234"
    assert server.is_running
    assert server.ssh_command == "master_x@203.0.113.5"
    assert [app.database for app in server.apps] == ["a", "b"]


def test_server_without_apps_is_valid() -> None:
    """Missing or null app lists yield an empty tuple."""
    server = Server.from_api({"id": "7", "status": "stopped", "apps": None})
    assert server.apps == ()
    assert not server.is_running


@pytest.mark.parametrize(
    "raw",
    [
        "not-a-mapping",
        {"public_ip": "1.2.3.4"},
        {"id": "1", "apps": "wordpress"},
        {"id": "1", "apps": ["wordpress"]},
    ],
)
def test_server_from_api_rejects_malformed_entries(raw: object) -> None:
    """Malformed server entries raise SchemaError with the raw body attached."""
    with pytest.raises(SchemaError) as excinfo:
        Server.from_api(raw, body='{"servers": "..."}')
    assert excinfo.value.body == '{"servers": "..."}'
