from ztd.settings import _env_bool, _env_float, _env_int


def test_env_helpers_fall_back_on_missing_or_bad_values(monkeypatch):
    monkeypatch.delenv("ZTD_X", raising=False)
    assert _env_int("ZTD_X", 7) == 7
    assert _env_float("ZTD_X", 1.5) == 1.5
    assert _env_bool("ZTD_X", True) is True

    monkeypatch.setenv("ZTD_X", "nope")
    assert _env_int("ZTD_X", 7) == 7
    assert _env_float("ZTD_X", 1.5) == 1.5
    assert _env_bool("ZTD_X", True) is False


def test_env_helpers_parse_values(monkeypatch):
    monkeypatch.setenv("ZTD_X", "30")
    assert _env_int("ZTD_X", 0) == 30
    assert _env_float("ZTD_X", 0.0) == 30.0
    monkeypatch.setenv("ZTD_X", " Yes ")
    assert _env_bool("ZTD_X") is True
