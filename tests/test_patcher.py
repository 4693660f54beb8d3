import pytest
import yaml

from ztd.errors import PublishError
from ztd.patcher import pair_ids, patch_document, patch_file


A1 = "a1a1a1a1a1a1" + "0" * 52
B2 = "b2b2b2b2b2b2" + "0" * 52
C3 = "c3c3c3c3c3c3" + "0" * 52
D4 = "d4d4d4d4d4d4" + "0" * 52


def _doc(*urls, extra=None):
    doc = {
        "http": {
            "routers": {"api": {"rule": "Host(`a.com`)", "service": "api", "middlewares": ["auth"]}},
            "services": {
                "api": {
                    "loadBalancer": {
                        "servers": [{"url": u} for u in urls],
                        "healthCheck": {"path": "/health"},
                    }
                }
            },
        }
    }
    if extra:
        doc.update(extra)
    return doc


def _urls(doc, service="api"):
    return [s["url"] for s in doc["http"]["services"][service]["loadBalancer"]["servers"]]


def test_pairing_is_positional_and_uses_short_ids():
    assert pair_ids([A1, B2], [C3, D4]) == {"a1a1a1a1a1a1": "c3c3c3c3c3c3", "b2b2b2b2b2b2": "d4d4d4d4d4d4"}


def test_short_new_list_only_replaces_matched_prefix():
    doc = _doc("http://a1a1a1a1a1a1:80", "http://b2b2b2b2b2b2:80")

    patched, changed = patch_document(doc, [A1, B2], [C3])

    assert changed == 1
    assert _urls(patched) == ["http://c3c3c3c3c3c3:80", "http://b2b2b2b2b2b2:80"]


def test_patch_is_pure_and_idempotent():
    doc = _doc("http://a1a1a1a1a1a1:80", "http://b2b2b2b2b2b2:8080")

    once, changed_once = patch_document(doc, [A1, B2], [C3, D4])
    twice, changed_twice = patch_document(once, [A1, B2], [C3, D4])

    assert _urls(doc) == ["http://a1a1a1a1a1a1:80", "http://b2b2b2b2b2b2:8080"]
    assert changed_once == 2
    assert changed_twice == 0
    assert twice == once
    assert _urls(once) == ["http://c3c3c3c3c3c3:80", "http://d4d4d4d4d4d4:8080"]


def test_other_fields_are_preserved_verbatim():
    doc = _doc("https://a1a1a1a1a1a1:443", extra={"tls": {"options": {"default": {"minVersion": "VersionTLS12"}}}})

    patched, _ = patch_document(doc, [A1], [C3])

    assert _urls(patched) == ["https://c3c3c3c3c3c3:443"]
    assert patched["tls"] == doc["tls"]
    assert patched["http"]["routers"] == doc["http"]["routers"]
    assert patched["http"]["services"]["api"]["loadBalancer"]["healthCheck"] == {"path": "/health"}


def test_unparseable_addresses_are_left_alone():
    doc = _doc("a1a1a1a1a1a1:80", "http://a1a1a1a1a1a1", "http://a1a1a1a1a1a1:80/path", "http://a1a1a1a1a1a1:80")

    patched, changed = patch_document(doc, [A1], [C3])

    assert changed == 1
    assert _urls(patched) == ["a1a1a1a1a1a1:80", "http://a1a1a1a1a1a1", "http://a1a1a1a1a1a1:80/path", "http://c3c3c3c3c3c3:80"]


def test_all_services_are_patched():
    doc = _doc("http://a1a1a1a1a1a1:80")
    doc["http"]["services"]["admin"] = {"loadBalancer": {"servers": [{"url": "http://a1a1a1a1a1a1:9000"}]}}

    patched, changed = patch_document(doc, [A1], [C3])

    assert changed == 2
    assert _urls(patched, "admin") == ["http://c3c3c3c3c3c3:9000"]


def test_tcp_addresses_are_patched():
    doc = {"tcp": {"services": {"db": {"loadBalancer": {"servers": [{"address": "a1a1a1a1a1a1:5432"}]}}}}}

    patched, changed = patch_document(doc, [A1], [C3])

    assert changed == 1
    assert patched["tcp"]["services"]["db"]["loadBalancer"]["servers"] == [{"address": "c3c3c3c3c3c3:5432"}]


def test_patch_file_rewrites_in_place(tmp_path):
    path = tmp_path / "dynamic_conf.yml"
    path.write_text(yaml.safe_dump(_doc("http://a1a1a1a1a1a1:80", "http://b2b2b2b2b2b2:80"), sort_keys=False))

    changed = patch_file(str(path), [A1, B2], [C3, D4], log=lambda *a, **k: None)

    assert changed == 2
    assert _urls(yaml.safe_load(path.read_text())) == ["http://c3c3c3c3c3c3:80", "http://d4d4d4d4d4d4:80"]


def test_patch_file_leaves_file_untouched_when_nothing_matches(tmp_path):
    path = tmp_path / "dynamic_conf.yml"
    original = "# hand written\nhttp:\n  services: {}\n"
    path.write_text(original)

    assert patch_file(str(path), [A1], [C3], log=lambda *a, **k: None) == 0
    assert path.read_text() == original


def test_patch_file_missing_document_is_a_publish_error(tmp_path):
    with pytest.raises(PublishError):
        patch_file(str(tmp_path / "missing.yml"), [A1], [C3], log=lambda *a, **k: None)
